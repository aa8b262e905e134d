"""
Tests for sales and scan statistics
"""
from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from apps.tickets.models import Ticket
from apps.tickets.services import ScanValidator, generate_ticket_id
from core.exceptions import Forbidden, NotFoundError
from .services import StatisticsService, percentage, rounded_ratio

User = get_user_model()


def make_user(username, role=User.Role.VENDOR):
    return User.objects.create_user(
        username=username,
        password='secret123',
        name=username.title(),
        role=role,
    )


def make_ticket(issuer, order_id, category='standard', **extra):
    return Ticket.objects.create(
        id=generate_ticket_id(),
        order_id=order_id,
        attendee_name=extra.pop('attendee_name', 'Guest'),
        attendee_phone='+22500000000',
        category=category,
        price=10000 if category == 'vip' else 5000,
        client_name=extra.pop('client_name', 'Client'),
        client_phone='+22500000000',
        created_by=issuer,
        **extra
    )


class RoundingTestCase(TestCase):

    def test_halves_round_up(self):
        self.assertEqual(percentage(1, 8), 13)
        self.assertEqual(rounded_ratio(3, 2), 2)
        self.assertEqual(rounded_ratio(5, 2), 3)

    def test_regular_rounding(self):
        self.assertEqual(percentage(1, 3), 33)
        self.assertEqual(percentage(2, 3), 67)
        self.assertEqual(rounded_ratio(20000, 3), 6667)

    def test_zero_denominator(self):
        self.assertEqual(percentage(5, 0), 0)
        self.assertEqual(rounded_ratio(0, 0), 0)


class StatisticsServiceTestCase(TestCase):
    """
    Fixture: vendor sold ORD-1 (VIP + Standard), other sold ORD-2 (Standard).
    One ticket of ORD-1 has been scanned and one has been sent.
    """

    def setUp(self):
        self.admin = make_user('admin', role=User.Role.ADMIN)
        self.vendor = make_user('vendor')
        self.other = make_user('other')
        self.gate = make_user('gate', role=User.Role.CONTROLLER)

        self.vip = make_ticket(self.vendor, 'ORD-1', 'vip', attendee_name='Amina')
        self.standard = make_ticket(self.vendor, 'ORD-1', 'standard', attendee_name='Koffi')
        self.foreign = make_ticket(self.other, 'ORD-2', 'standard')

        ScanValidator.scan(self.vip.pk, self.gate)
        ScanValidator.scan(self.vip.pk, self.gate)
        Ticket.objects.filter(pk=self.standard.pk).update(sent_at=timezone.now())

    def test_global_stats_for_admin(self):
        stats = StatisticsService.global_stats(self.admin)

        self.assertEqual(stats['total'], 3)
        self.assertEqual(stats['used'], 1)
        self.assertEqual(stats['available'], 2)
        self.assertEqual(stats['sent'], 1)
        self.assertEqual(stats['categories'], {'vip': 1, 'standard': 2})
        self.assertEqual(stats['revenue'], 20000)
        self.assertEqual(stats['orders'], 2)
        self.assertEqual(stats['usage_rate'], 33)
        self.assertEqual(stats['sent_rate'], 33)
        self.assertEqual(stats['average_ticket_price'], 6667)
        self.assertEqual(stats['average_order_size'], 2)

    def test_global_stats_scoped_to_vendor(self):
        stats = StatisticsService.global_stats(self.vendor)

        self.assertEqual(stats['total'], 2)
        self.assertEqual(stats['revenue'], 15000)
        self.assertEqual(stats['orders'], 1)
        self.assertEqual(stats['usage_rate'], 50)
        self.assertEqual(stats['average_ticket_price'], 7500)

    def test_empty_stats(self):
        stats = StatisticsService.global_stats(make_user('newcomer'))

        self.assertEqual(stats['total'], 0)
        self.assertEqual(stats['revenue'], 0)
        self.assertEqual(stats['usage_rate'], 0)
        self.assertEqual(stats['average_order_size'], 0)

    def test_controller_has_no_stats(self):
        with self.assertRaises(Forbidden):
            StatisticsService.global_stats(self.gate)

    def test_category_stats(self):
        categories = StatisticsService.category_stats(self.admin)

        self.assertEqual(categories['vip']['count'], 1)
        self.assertEqual(categories['vip']['percentage'], 33)
        self.assertEqual(categories['vip']['revenue'], 10000)
        self.assertEqual(categories['standard']['count'], 2)
        self.assertEqual(categories['standard']['percentage'], 67)
        self.assertEqual(categories['standard']['name'], 'Standard')

    def test_vendor_stats_sorted_by_revenue(self):
        vendors = StatisticsService.vendor_stats(self.admin)

        self.assertEqual([v['username'] for v in vendors], ['vendor', 'other'])
        self.assertEqual(vendors[0]['revenue'], 15000)
        self.assertEqual(vendors[0]['categories'], {'vip': 1, 'standard': 1})
        self.assertEqual(vendors[0]['used'], 1)
        self.assertEqual(vendors[1]['tickets'], 1)

    def test_vendor_stats_admin_only(self):
        with self.assertRaises(Forbidden):
            StatisticsService.vendor_stats(self.vendor)

    def test_user_stats_admin_only(self):
        with self.assertRaises(Forbidden):
            StatisticsService.user_stats(self.vendor)

        stats = StatisticsService.user_stats(self.admin)
        self.assertEqual(stats['total'], 4)
        self.assertEqual(stats['vendors'], 2)
        self.assertEqual(stats['controllers'], 1)

    def test_order_stats(self):
        order = StatisticsService.order_stats('ORD-1', self.vendor)

        self.assertEqual(order['ticket_count'], 2)
        self.assertEqual(order['total'], 15000)
        self.assertEqual(order['used'], 1)
        self.assertEqual(order['sent'], 1)
        self.assertEqual(order['categories'], {'vip': 1, 'standard': 1})
        self.assertEqual(order['vendor_name'], 'Vendor')

    def test_order_stats_ownership(self):
        with self.assertRaises(Forbidden):
            StatisticsService.order_stats('ORD-2', self.vendor)

        self.assertEqual(StatisticsService.order_stats('ORD-2', self.admin)['ticket_count'], 1)

    def test_order_stats_unknown_order(self):
        with self.assertRaises(NotFoundError):
            StatisticsService.order_stats('ORD-404', self.admin)

    def test_orders_paginated(self):
        orders, pagination = StatisticsService.orders(self.admin, page=1, limit=1)

        self.assertEqual(len(orders), 1)
        self.assertEqual(pagination['total'], 2)
        self.assertEqual(pagination['total_pages'], 2)

    def test_orders_scoped_to_vendor(self):
        orders, _ = StatisticsService.orders(self.vendor)

        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0]['order_id'], 'ORD-1')
        self.assertEqual(orders[0]['ticket_count'], 2)
        self.assertEqual(orders[0]['total'], 15000)

    def test_scan_stats(self):
        stats = StatisticsService.scan_stats(self.admin)

        self.assertEqual(stats['total'], 2)
        self.assertEqual(stats['successful'], 1)
        self.assertEqual(stats['failed'], 1)
        self.assertEqual(stats['success_rate'], 50)
        self.assertEqual(stats['scanners'][0]['username'], 'gate')
        self.assertEqual(stats['scanners'][0]['already_used'], 1)

    def test_dashboard(self):
        admin_view = StatisticsService.dashboard(self.admin)
        vendor_view = StatisticsService.dashboard(self.vendor)

        self.assertEqual(len(admin_view['vendors']), 2)
        self.assertEqual(len(admin_view['recent_orders']), 2)
        self.assertIsNone(vendor_view['vendors'])
        self.assertEqual(vendor_view['global']['total'], 2)


class StatsAPITestCase(APITestCase):
    """HTTP tests for /api/stats/"""

    def setUp(self):
        self.url = '/api/stats/'
        self.admin = make_user('admin', role=User.Role.ADMIN)
        self.vendor = make_user('vendor')
        make_ticket(self.vendor, 'ORD-1', 'vip')

    def get_auth_headers(self, user):
        refresh = RefreshToken.for_user(user)
        return {'HTTP_AUTHORIZATION': f'Bearer {refresh.access_token}'}

    def test_global_stats(self):
        response = self.client.get(self.url, **self.get_auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['data']['revenue'], 10000)

    def test_vendor_stats_forbidden_for_vendor(self):
        response = self.client.get(f'{self.url}vendors/', **self.get_auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(response.data['success'])

    def test_orders_endpoint(self):
        response = self.client.get(f'{self.url}orders/?page=1&limit=10', **self.get_auth_headers(self.admin))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['pagination']['total'], 1)
        self.assertEqual(response.data['data'][0]['order_id'], 'ORD-1')

    def test_order_endpoint(self):
        response = self.client.get(f'{self.url}orders/ORD-1/', **self.get_auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['total'], 10000)

    def test_dashboard_requires_authentication(self):
        response = self.client.get(f'{self.url}dashboard/')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
