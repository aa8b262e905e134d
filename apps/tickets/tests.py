"""
Tests for ticket issuance, entry scanning and ticket management
"""
import importlib
import json
import os
import threading
from io import StringIO
from unittest.mock import Mock, patch

from django.contrib.auth import get_user_model
from django.core.files.storage import default_storage
from django.core.management import call_command
from django.db import OperationalError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken

from apps.accounts.models import AuditLog, ImmutableRecordError
from core.exceptions import (
    ArtifactUnavailable,
    BusinessRuleError,
    Forbidden,
    NotFoundError,
    StorageUnavailable,
    ValidationError,
)
from .models import ScanLog, Ticket
from .renderer import ArtifactRenderer, RenderError, RenderedArtifact
from .services import (
    OrderIssuanceService,
    ScanValidator,
    TicketService,
    generate_ticket_id,
)
from .storage import TicketStore, with_storage_retry

User = get_user_model()

AMINA = {'name': 'Amina', 'phone': '+22501020304', 'category': 'vip'}
KOFFI = {'name': 'Koffi', 'phone': '+22505060708', 'category': 'standard'}


def make_user(username, role=User.Role.VENDOR):
    return User.objects.create_user(
        username=username,
        password='secret123',
        name=username.title(),
        role=role,
    )


def make_ticket(issuer, category='standard', **extra):
    defaults = {
        'id': generate_ticket_id(),
        'order_id': 'ORD-TEST',
        'attendee_name': 'Guest',
        'attendee_phone': '+22500000000',
        'category': category,
        'price': 10000 if category == 'vip' else 5000,
        'client_name': 'Client',
        'client_phone': '+22500000000',
        'created_by': issuer,
    }
    defaults.update(extra)
    return Ticket.objects.create(**defaults)


def auth_headers(user):
    refresh = RefreshToken.for_user(user)
    return {'HTTP_AUTHORIZATION': f'Bearer {refresh.access_token}'}


class StubRenderer:
    """Records calls instead of drawing PDFs"""

    def __init__(self, fail=False):
        self.fail = fail
        self.rendered = []
        self.discarded = []

    def render(self, ticket):
        if self.fail:
            raise RenderError('renderer offline')
        self.rendered.append(ticket.pk)
        return RenderedArtifact(
            qr_payload=json.dumps({'ticketId': ticket.pk}),
            document_ref=f'tickets/ticket-{ticket.pk}.pdf',
        )

    def discard(self, document_ref):
        self.discarded.append(document_ref)
        return True


class FlakyStore(TicketStore):
    """Store whose reads fail a fixed number of times before succeeding"""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.calls = 0

    @with_storage_retry
    def get(self, ticket_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError('server closed the connection unexpectedly')
        return Ticket.objects.filter(pk=ticket_id).first()


class OrderIssuanceTestCase(TestCase):
    """Issuing orders through OrderIssuanceService"""

    def setUp(self):
        self.vendor = make_user('vendor')
        self.controller = make_user('gate', role=User.Role.CONTROLLER)
        self.renderer = StubRenderer()

    def issue(self, attendees, **kwargs):
        return OrderIssuanceService.issue_order(
            kwargs.pop('client_name', 'Awa Traore'),
            kwargs.pop('client_phone', '+22507070707'),
            attendees,
            kwargs.pop('issuer', self.vendor),
            renderer=self.renderer,
            **kwargs
        )

    def test_vendor_issues_two_ticket_order(self):
        """Amina (VIP) and Koffi (Standard) share one order worth 15000"""
        order = self.issue([AMINA, KOFFI], payment_method='cash')

        self.assertEqual(order.total, 15000)
        self.assertEqual(len(order.tickets), 2)
        self.assertEqual(order.rendered, 2)

        tickets = Ticket.objects.filter(order_id=order.order_id).order_by('price')
        self.assertEqual([t.attendee_name for t in tickets], ['Koffi', 'Amina'])
        self.assertEqual([t.price for t in tickets], [5000, 10000])
        for ticket in tickets:
            self.assertFalse(ticket.used)
            self.assertIsNone(ticket.sent_at)
            self.assertEqual(ticket.created_by, self.vendor)
            self.assertEqual(ticket.payment_method, 'cash')
            self.assertTrue(ticket.id.startswith('TKT-'))
            self.assertEqual(ticket.artifact_ref, f'tickets/ticket-{ticket.id}.pdf')

        self.assertTrue(
            AuditLog.objects.filter(action='TICKETS_CREATE', entity_id=order.order_id).exists()
        )

    def test_ticket_ids_are_unique(self):
        order = self.issue([AMINA, KOFFI, AMINA])

        self.assertEqual(len({t.id for t in order.tickets}), 3)

    def test_every_violation_is_reported_and_nothing_written(self):
        attendees = [
            {'name': 'A', 'phone': '123', 'category': 'gold'},
            KOFFI,
            {'name': 'Moussa', 'phone': '+22501020304', 'category': 'balcony'},
        ]

        with self.assertRaises(ValidationError) as ctx:
            self.issue(attendees, client_name='X', payment_method='barter')

        self.assertEqual(
            set(ctx.exception.details),
            {
                'client_name',
                'payment_method',
                'attendees[0].name',
                'attendees[0].phone',
                'attendees[0].category',
                'attendees[2].category',
            },
        )
        self.assertEqual(Ticket.objects.count(), 0)
        self.assertEqual(self.renderer.rendered, [])

    def test_non_text_attendee_fields_are_violations(self):
        attendees = [
            {'name': 12345, 'phone': '+22501020304', 'category': 'vip'},
            {'name': 'Koffi', 'phone': 22505060708, 'category': ['vip']},
        ]

        with self.assertRaises(ValidationError) as ctx:
            self.issue(attendees, client_name=['Awa'])

        self.assertEqual(
            set(ctx.exception.details),
            {'client_name', 'attendees[0].name', 'attendees[1].phone', 'attendees[1].category'},
        )
        self.assertEqual(Ticket.objects.count(), 0)

    def test_empty_order_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.issue([])

        self.assertIn('attendees', ctx.exception.details)

    @override_settings(TICKET_MAX_PER_ORDER=2)
    def test_attendee_limit(self):
        with self.assertRaises(ValidationError) as ctx:
            self.issue([AMINA, KOFFI, AMINA])

        self.assertIn('attendees', ctx.exception.details)
        self.assertEqual(Ticket.objects.count(), 0)

    def test_phone_whitespace_is_normalized(self):
        order = self.issue([{'name': 'Amina', 'phone': '+225 0102 0304', 'category': 'vip'}])

        self.assertEqual(order.tickets[0].attendee_phone, '+22501020304')

    def test_controller_cannot_issue(self):
        with self.assertRaises(Forbidden):
            self.issue([AMINA], issuer=self.controller)

        self.assertEqual(Ticket.objects.count(), 0)

    def test_render_failure_keeps_tickets(self):
        self.renderer = StubRenderer(fail=True)

        order = self.issue([AMINA, KOFFI])

        self.assertEqual(order.rendered, 0)
        self.assertEqual(Ticket.objects.filter(order_id=order.order_id).count(), 2)
        self.assertEqual(
            Ticket.objects.filter(order_id=order.order_id, artifact_ref__isnull=True).count(),
            2,
        )

    def test_failed_insert_writes_nothing(self):
        with patch.object(TicketStore, 'insert_order', side_effect=StorageUnavailable()):
            with self.assertRaises(StorageUnavailable):
                self.issue([AMINA, KOFFI])

        self.assertEqual(Ticket.objects.count(), 0)


class ScanValidatorTestCase(TestCase):
    """At-most-once entry through ScanValidator"""

    def setUp(self):
        self.vendor = make_user('vendor')
        self.gate = make_user('gate', role=User.Role.CONTROLLER)
        self.ticket = make_ticket(self.vendor)

    def test_second_scan_reports_first_use(self):
        """First scan admits, second is refused with the first scan's details"""
        first = ScanValidator.scan(self.ticket.pk, self.gate)
        second = ScanValidator.scan(self.ticket.pk, self.gate)

        self.assertTrue(first.success)
        self.assertEqual(first.message, 'valid ticket')

        self.assertFalse(second.success)
        self.assertEqual(second.message, 'already used')
        self.assertEqual(second.reason, ScanLog.REASON_ALREADY_USED)
        self.assertEqual(second.first_scan['scanned_by']['id'], self.gate.pk)
        self.assertEqual(second.first_scan['used_at'], first.ticket.used_at)

        self.ticket.refresh_from_db()
        self.assertTrue(self.ticket.used)
        self.assertEqual(self.ticket.scanned_by, self.gate)

    def test_failed_success_log_leaves_ticket_unused(self):
        """The claim and its log commit together or not at all"""
        with patch.object(TicketStore, '_log', side_effect=OperationalError('disk I/O error')):
            with self.assertRaises(StorageUnavailable):
                ScanValidator.scan(self.ticket.pk, self.gate)

        self.ticket.refresh_from_db()
        self.assertFalse(self.ticket.used)
        self.assertFalse(ScanLog.objects.exists())

        outcome = ScanValidator.scan(self.ticket.pk, self.gate)
        self.assertTrue(outcome.success)

    def test_holder_admitted_when_success_log_hits_transient_error(self):
        log = TicketStore._log
        calls = []

        def flaky_log(store, *args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise OperationalError('database is locked')
            return log(store, *args, **kwargs)

        with patch.object(TicketStore, '_log', flaky_log):
            outcome = ScanValidator.scan(self.ticket.pk, self.gate)

        self.assertTrue(outcome.success)
        self.assertEqual(outcome.message, 'valid ticket')
        self.assertEqual(len(calls), 2)
        self.assertEqual(ScanLog.objects.filter(result=ScanLog.RESULT_SUCCESS).count(), 1)
        self.ticket.refresh_from_db()
        self.assertTrue(self.ticket.used)
        self.assertEqual(self.ticket.scanned_by, self.gate)

    def test_unknown_ticket(self):
        outcome = ScanValidator.scan('TKT-DOESNOTEXIST', self.gate)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.message, 'ticket not found')
        self.assertIsNone(outcome.ticket)

    def test_every_attempt_is_logged(self):
        ScanValidator.scan(self.ticket.pk, self.gate)
        ScanValidator.scan(self.ticket.pk, self.gate)
        ScanValidator.scan('TKT-DOESNOTEXIST', self.gate)

        results = list(ScanLog.objects.order_by('pk').values_list('result', 'failure_reason'))
        self.assertEqual(
            results,
            [
                (ScanLog.RESULT_SUCCESS, None),
                (ScanLog.RESULT_FAILED, ScanLog.REASON_ALREADY_USED),
                (ScanLog.RESULT_FAILED, ScanLog.REASON_NOT_FOUND),
            ],
        )
        self.assertEqual(AuditLog.objects.filter(action='TICKET_SCAN').count(), 1)

    def test_scan_log_is_append_only(self):
        ScanValidator.scan(self.ticket.pk, self.gate)
        entry = ScanLog.objects.get()

        entry.result = ScanLog.RESULT_FAILED
        with self.assertRaises(ImmutableRecordError):
            entry.save()
        with self.assertRaises(ImmutableRecordError):
            entry.delete()

    def test_any_scanner_can_scan_any_ticket(self):
        other_vendor = make_user('other')

        outcome = ScanValidator.scan(self.ticket.pk, other_vendor)

        self.assertTrue(outcome.success)

    def test_pre_claimed_ticket_is_refused(self):
        """A ticket claimed by another caller between read and write stays theirs"""
        TicketStore().claim_for_entry(self.ticket.pk, self.vendor.pk)

        outcome = ScanValidator.scan(self.ticket.pk, self.gate)

        self.assertFalse(outcome.success)
        self.assertEqual(outcome.first_scan['scanned_by']['id'], self.vendor.pk)

    def test_claim_matches_only_once(self):
        store = TicketStore()

        self.assertTrue(store.claim_for_entry(self.ticket.pk, self.gate.pk))
        self.assertFalse(store.claim_for_entry(self.ticket.pk, self.vendor.pk))

        self.ticket.refresh_from_db()
        self.assertEqual(self.ticket.scanned_by_id, self.gate.pk)

    def test_used_never_reverts(self):
        store = TicketStore()
        store.claim_for_entry(self.ticket.pk, self.gate.pk)

        store.mark_sent(self.ticket.pk)
        store.attach_artifact(self.ticket.pk, '{}', 'tickets/x.pdf')
        TicketService.mark_sent(self.ticket.pk, self.vendor)

        self.ticket.refresh_from_db()
        self.assertTrue(self.ticket.used)
        self.assertIsNotNone(self.ticket.used_at)

    def test_blank_ticket_id(self):
        with self.assertRaises(ValidationError):
            ScanValidator.scan('  ', self.gate)


class ConcurrentScanTestCase(TransactionTestCase):

    def test_only_one_concurrent_scan_succeeds(self):
        vendor = make_user('vendor')
        ticket = make_ticket(vendor)
        scanners = [make_user(f'gate{i}', role=User.Role.CONTROLLER) for i in range(6)]

        barrier = threading.Barrier(len(scanners))
        outcomes = []
        errors = []
        lock = threading.Lock()

        def worker(scanner):
            try:
                barrier.wait()
                outcome = ScanValidator.scan(ticket.pk, scanner)
                with lock:
                    outcomes.append((scanner, outcome))
            except Exception as e:
                with lock:
                    errors.append(e)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker, args=(s,)) for s in scanners]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        winners = [(scanner, outcome) for scanner, outcome in outcomes if outcome.success]
        losers = [outcome for _, outcome in outcomes if not outcome.success]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), len(scanners) - 1)

        winner, _ = winners[0]
        ticket.refresh_from_db()
        self.assertTrue(ticket.used)
        self.assertEqual(ticket.scanned_by_id, winner.pk)
        for outcome in losers:
            self.assertEqual(outcome.message, 'already used')
            self.assertEqual(outcome.first_scan['used_at'], ticket.used_at)
            self.assertEqual(outcome.first_scan['scanned_by']['id'], winner.pk)

        self.assertEqual(ScanLog.objects.filter(result=ScanLog.RESULT_SUCCESS).count(), 1)
        self.assertEqual(ScanLog.objects.count(), len(scanners))

class TicketServiceTestCase(TestCase):

    def setUp(self):
        self.admin = make_user('admin', role=User.Role.ADMIN)
        self.vendor = make_user('vendor')
        self.other_vendor = make_user('other')
        self.gate = make_user('gate', role=User.Role.CONTROLLER)
        self.ticket = make_ticket(self.vendor, category='vip', attendee_name='Amina')

    def test_owner_and_admin_can_read(self):
        self.assertEqual(TicketService.get_ticket(self.ticket.pk, self.vendor), self.ticket)
        self.assertEqual(TicketService.get_ticket(self.ticket.pk, self.admin), self.ticket)

    def test_other_vendor_cannot_read(self):
        with self.assertRaises(Forbidden):
            TicketService.get_ticket(self.ticket.pk, self.other_vendor)

    def test_controller_cannot_read(self):
        with self.assertRaises(Forbidden):
            TicketService.get_ticket(self.ticket.pk, self.gate)

    def test_missing_ticket(self):
        with self.assertRaises(NotFoundError):
            TicketService.get_ticket('TKT-NOPE', self.admin)

    def test_list_is_scoped_to_issuer(self):
        make_ticket(self.other_vendor)

        own, pagination = TicketService.list_tickets(self.vendor)
        everything, _ = TicketService.list_tickets(self.admin)

        self.assertEqual([t.pk for t in own], [self.ticket.pk])
        self.assertEqual(pagination['total'], 1)
        self.assertEqual(len(everything), 2)

    def test_vendor_cannot_list_other_issuer(self):
        with self.assertRaises(Forbidden):
            TicketService.list_tickets(self.vendor, {'created_by': self.other_vendor.pk})

    def test_list_filters(self):
        make_ticket(self.vendor, category='standard', attendee_name='Koffi')
        TicketStore().claim_for_entry(self.ticket.pk, self.gate.pk)

        used, _ = TicketService.list_tickets(self.vendor, {'used': True})
        standard, _ = TicketService.list_tickets(self.vendor, {'category': 'standard'})
        found, _ = TicketService.list_tickets(self.vendor, {'search': 'koff'})

        self.assertEqual([t.pk for t in used], [self.ticket.pk])
        self.assertEqual([t.attendee_name for t in standard], ['Koffi'])
        self.assertEqual([t.attendee_name for t in found], ['Koffi'])

    def test_mark_sent_is_idempotent(self):
        first = TicketService.mark_sent(self.ticket.pk, self.vendor)
        second = TicketService.mark_sent(self.ticket.pk, self.vendor)

        self.assertIsNotNone(first.sent_at)
        self.assertEqual(first.sent_at, second.sent_at)
        self.assertEqual(AuditLog.objects.filter(action='TICKET_SENT').count(), 1)

    def test_mark_sent_requires_ownership(self):
        with self.assertRaises(Forbidden):
            TicketService.mark_sent(self.ticket.pk, self.other_vendor)

    def test_mark_sent_batch_collects_failures(self):
        foreign = make_ticket(self.other_vendor)

        result = TicketService.mark_sent_batch(
            [self.ticket.pk, 'TKT-NOPE', foreign.pk],
            self.vendor,
        )

        self.assertEqual(result['success'], [self.ticket.pk])
        self.assertEqual(
            result['failed'],
            [
                {'ticket_id': 'TKT-NOPE', 'error': 'Ticket not found'},
                {'ticket_id': foreign.pk, 'error': 'Access to this resource is not allowed'},
            ],
        )

    def test_mark_sent_batch_size_limit(self):
        with self.assertRaises(ValidationError):
            TicketService.mark_sent_batch([self.ticket.pk] * 101, self.vendor)

    def test_delete_unused_ticket(self):
        """Deleting an unused ticket removes it and its artifact"""
        renderer = StubRenderer()
        Ticket.objects.filter(pk=self.ticket.pk).update(artifact_ref='tickets/old.pdf')

        TicketService.delete_ticket(self.ticket.pk, self.admin, renderer=renderer)

        self.assertFalse(Ticket.objects.filter(pk=self.ticket.pk).exists())
        self.assertEqual(renderer.discarded, ['tickets/old.pdf'])
        self.assertTrue(AuditLog.objects.filter(action='TICKET_DELETE', entity_id=self.ticket.pk).exists())

    def test_delete_used_ticket_refused(self):
        """A used ticket is kept as the entry record"""
        ScanValidator.scan(self.ticket.pk, self.gate)

        with self.assertRaises(BusinessRuleError):
            TicketService.delete_ticket(self.ticket.pk, self.admin, renderer=StubRenderer())

        self.ticket.refresh_from_db()
        self.assertTrue(self.ticket.used)

    def test_vendor_cannot_delete(self):
        with self.assertRaises(Forbidden):
            TicketService.delete_ticket(self.ticket.pk, self.vendor, renderer=StubRenderer())

    def test_share_message(self):
        message = TicketService.share_message(self.ticket.pk, self.vendor)

        self.assertIn(self.ticket.pk, message)
        self.assertIn('Amina', message)
        self.assertIn('VIP', message)
        self.assertIn('10,000', message)

    def test_retry_render(self):
        ticket = TicketService.retry_render(self.ticket.pk, self.vendor, renderer=StubRenderer())

        self.assertEqual(ticket.artifact_ref, f'tickets/ticket-{self.ticket.pk}.pdf')

    def test_retry_render_failure(self):
        with self.assertRaises(ArtifactUnavailable):
            TicketService.retry_render(self.ticket.pk, self.vendor, renderer=StubRenderer(fail=True))

    def test_render_missing_artifacts(self):
        make_ticket(self.vendor, artifact_ref='tickets/done.pdf')
        make_ticket(self.vendor)

        rendered, failed = TicketService.render_missing_artifacts(renderer=StubRenderer())

        self.assertEqual((rendered, failed), (2, 0))
        self.assertFalse(Ticket.objects.filter(artifact_ref__isnull=True).exists())


class StorageRetryTestCase(TestCase):

    def setUp(self):
        self.ticket = make_ticket(make_user('vendor'))

    def test_transient_error_is_retried(self):
        store = FlakyStore(failures=1)

        self.assertEqual(store.get(self.ticket.pk), self.ticket)
        self.assertEqual(store.calls, 2)

    @override_settings(STORAGE_RETRY_ATTEMPTS=3)
    def test_exhausted_retries_raise_storage_unavailable(self):
        store = FlakyStore(failures=10)

        with self.assertRaises(StorageUnavailable):
            store.get(self.ticket.pk)
        self.assertEqual(store.calls, 3)


class ArtifactRendererTestCase(TestCase):

    def setUp(self):
        self.ticket = make_ticket(make_user('vendor'), category='vip', attendee_name='Amina')

    def test_qr_payload(self):
        payload = json.loads(ArtifactRenderer.qr_payload(self.ticket))

        self.assertEqual(payload['ticketId'], self.ticket.pk)
        self.assertEqual(payload['orderId'], 'ORD-TEST')
        self.assertEqual(payload['name'], 'Amina')
        self.assertEqual(payload['category'], 'vip')

    def test_render_stores_pdf(self):
        artifact = ArtifactRenderer().render(self.ticket)

        self.assertTrue(default_storage.exists(artifact.document_ref))
        with default_storage.open(artifact.document_ref, 'rb') as f:
            self.assertTrue(f.read(5).startswith(b'%PDF'))

        self.assertTrue(ArtifactRenderer().discard(artifact.document_ref))
        self.assertFalse(default_storage.exists(artifact.document_ref))

    def test_storage_error_becomes_render_error(self):
        storage = Mock()
        storage.exists.return_value = False
        storage.save.side_effect = OSError('disk full')

        with self.assertRaises(RenderError):
            ArtifactRenderer(storage=storage).render(self.ticket)

    def test_render_missing_artifacts_command(self):
        out = StringIO()
        with patch('apps.tickets.services.ArtifactRenderer', StubRenderer):
            call_command('render_missing_artifacts', stdout=out)

        self.assertIn('Rendered: 1', out.getvalue())


@patch('apps.tickets.services.ArtifactRenderer', StubRenderer)
class TicketAPITestCase(APITestCase):
    """HTTP tests for /api/tickets/"""

    def setUp(self):
        self.url = '/api/tickets/'
        self.admin = make_user('admin', role=User.Role.ADMIN)
        self.vendor = make_user('vendor')
        self.other_vendor = make_user('other')
        self.gate = make_user('gate', role=User.Role.CONTROLLER)

    def issue_order(self, user, attendees):
        return self.client.post(
            self.url,
            {'client_name': 'Awa Traore', 'client_phone': '+22507070707', 'attendees': attendees},
            format='json',
            **auth_headers(user)
        )

    def test_issue_order(self):
        response = self.issue_order(self.vendor, [AMINA, KOFFI])

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['success'])
        self.assertEqual(response.data['data']['total'], 15000)
        self.assertEqual(response.data['data']['count'], 2)
        self.assertEqual(
            {t['category'] for t in response.data['data']['tickets']},
            {'vip', 'standard'},
        )

    def test_issue_order_lists_every_violation(self):
        response = self.issue_order(
            self.vendor,
            [{'name': '', 'phone': 'abc', 'category': 'vip'}, {'name': 'Ok', 'phone': '+22501020304'}],
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['category'], 'validation_error')
        self.assertEqual(
            set(response.data['error']['details']),
            {'attendees[0].name', 'attendees[0].phone', 'attendees[1].category'},
        )
        self.assertEqual(Ticket.objects.count(), 0)

    def test_issue_order_rejects_non_text_fields(self):
        response = self.issue_order(
            self.vendor,
            [
                {'name': 12345, 'phone': '+22501020304', 'category': 'vip'},
                {'name': 'Koffi', 'phone': '+22505060708', 'category': ['vip']},
            ],
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error']['category'], 'validation_error')
        self.assertEqual(
            set(response.data['error']['details']),
            {'attendees[0].name', 'attendees[1].category'},
        )
        self.assertEqual(Ticket.objects.count(), 0)

    def test_controller_cannot_issue(self):
        response = self.issue_order(self.gate, [AMINA])

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_scan_twice(self):
        """First scan 200, second scan 400 naming the first scanner"""
        ticket = make_ticket(self.vendor)
        scan_url = f'{self.url}{ticket.pk}/scan/'

        first = self.client.post(scan_url, {}, format='json', **auth_headers(self.gate))
        second = self.client.post(scan_url, {}, format='json', **auth_headers(self.gate))

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertTrue(first.data['success'])
        self.assertEqual(first.data['message'], 'valid ticket')

        self.assertEqual(second.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(second.data['success'])
        self.assertEqual(second.data['message'], 'already used')
        self.assertEqual(second.data['data']['first_scan']['scanned_by']['id'], self.gate.pk)

    def test_scan_unknown_ticket(self):
        response = self.client.post(f'{self.url}TKT-UNKNOWN/scan/', {}, format='json', **auth_headers(self.gate))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'ticket not found')

    def test_scan_storage_outage(self):
        ticket = make_ticket(self.vendor)

        with patch.object(TicketStore, 'redeem', side_effect=StorageUnavailable()):
            response = self.client.post(f'{self.url}{ticket.pk}/scan/', {}, format='json', **auth_headers(self.gate))

        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertEqual(response.data['error']['category'], 'storage_unavailable')
        ticket.refresh_from_db()
        self.assertFalse(ticket.used)

    def test_delete_unused_then_used(self):
        """Unused tickets can be deleted; used ones answer 409 and remain"""
        unused = make_ticket(self.vendor)
        used = make_ticket(self.vendor)
        ScanValidator.scan(used.pk, self.gate)

        deleted = self.client.delete(f'{self.url}{unused.pk}/', **auth_headers(self.admin))
        refused = self.client.delete(f'{self.url}{used.pk}/', **auth_headers(self.admin))

        self.assertEqual(deleted.status_code, status.HTTP_200_OK)
        self.assertFalse(Ticket.objects.filter(pk=unused.pk).exists())

        self.assertEqual(refused.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(refused.data['error']['category'], 'business_rule_violation')
        self.assertTrue(Ticket.objects.filter(pk=used.pk, used=True).exists())

    def test_cross_vendor_read(self):
        """Another vendor is refused; an admin can read the ticket"""
        ticket = make_ticket(self.vendor)
        detail_url = f'{self.url}{ticket.pk}/'

        foreign = self.client.get(detail_url, **auth_headers(self.other_vendor))
        admin = self.client.get(detail_url, **auth_headers(self.admin))

        self.assertEqual(foreign.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(foreign.data['error']['category'], 'authorization_error')
        self.assertEqual(admin.status_code, status.HTTP_200_OK)
        self.assertEqual(admin.data['data']['id'], ticket.pk)

    def test_list_scoped_and_paginated(self):
        make_ticket(self.vendor)
        make_ticket(self.vendor)
        make_ticket(self.other_vendor)

        response = self.client.get(f'{self.url}?limit=1', **auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['data']), 1)
        self.assertEqual(response.data['pagination']['total'], 2)
        self.assertEqual(response.data['pagination']['total_pages'], 2)

    def test_list_rejects_bad_boolean(self):
        response = self.client.get(f'{self.url}?used=maybe', **auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_order_tickets(self):
        order = self.issue_order(self.vendor, [AMINA, KOFFI]).data['data']

        own = self.client.get(f"{self.url}order/{order['order_id']}/", **auth_headers(self.vendor))
        foreign = self.client.get(f"{self.url}order/{order['order_id']}/", **auth_headers(self.other_vendor))

        self.assertEqual(own.status_code, status.HTTP_200_OK)
        self.assertEqual(len(own.data['data']), 2)
        self.assertEqual(foreign.status_code, status.HTTP_403_FORBIDDEN)

    def test_mark_sent_and_batch(self):
        first = make_ticket(self.vendor)
        second = make_ticket(self.vendor)

        single = self.client.post(f'{self.url}{first.pk}/mark-sent/', {}, format='json', **auth_headers(self.vendor))
        batch = self.client.post(
            f'{self.url}mark-sent-batch/',
            {'ticket_ids': [first.pk, second.pk, 'TKT-NOPE']},
            format='json',
            **auth_headers(self.vendor)
        )

        self.assertEqual(single.status_code, status.HTTP_200_OK)
        self.assertTrue(single.data['data']['is_sent'])
        self.assertEqual(batch.status_code, status.HTTP_200_OK)
        self.assertEqual(batch.data['data']['success'], [first.pk, second.pk])
        self.assertEqual(len(batch.data['data']['failed']), 1)

    def test_share_message(self):
        ticket = make_ticket(self.vendor)

        response = self.client.get(f'{self.url}{ticket.pk}/share-message/', **auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn(ticket.pk, response.data['data']['message'])

    def test_render_endpoint(self):
        ticket = make_ticket(self.vendor)

        response = self.client.post(f'{self.url}{ticket.pk}/render/', {}, format='json', **auth_headers(self.vendor))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['data']['artifact_url'])


class ProductionSettingsTestCase(SimpleTestCase):

    def load(self, env):
        keys = ('MEDIA_ROOT', 'TICKET_ARTIFACT_DIR', 'STORAGE_RETRY_ATTEMPTS', 'STORAGE_RETRY_MAX_WAIT')
        with patch.dict(os.environ):
            for key in keys:
                os.environ.pop(key, None)
            os.environ.update(env)
            return importlib.reload(importlib.import_module('core.settings.prod'))

    def test_defaults(self):
        prod = self.load({})

        self.assertEqual(prod.MEDIA_ROOT, '/var/lib/ticketing/media')
        self.assertEqual(prod.STORAGE_RETRY_ATTEMPTS, 5)
        self.assertEqual(prod.STORAGE_RETRY_MAX_WAIT, 5.0)
        self.assertEqual(prod.TICKET_ARTIFACT_DIR, 'tickets')

    def test_environment_overrides(self):
        prod = self.load({
            'MEDIA_ROOT': '/srv/artifacts',
            'TICKET_ARTIFACT_DIR': 'passes',
            'STORAGE_RETRY_ATTEMPTS': '8',
        })

        self.assertEqual(prod.MEDIA_ROOT, '/srv/artifacts')
        self.assertEqual(prod.TICKET_ARTIFACT_DIR, 'passes')
        self.assertEqual(prod.STORAGE_RETRY_ATTEMPTS, 8)
