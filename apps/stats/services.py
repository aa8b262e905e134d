"""
Read-side rollups over tickets, scans and users.

Everything is aggregated fresh on every call. Callers without
``stats.read_all`` only ever see figures for tickets they issued.
"""
import logging
from datetime import timedelta

from django.conf import settings
from django.db.models import Count, IntegerField, Max, Min, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.accounts.models import User
from apps.accounts.policy import (
    Permission,
    has_permission,
    require,
    require_owner_or_admin,
    sees_all,
)
from apps.tickets.models import ScanLog, Ticket
from core.exceptions import NotFoundError
from core.pagination import paginate

logger = logging.getLogger(__name__)

RECENT_ORDERS = 5
ACTIVE_WINDOW_DAYS = 7


def rounded_ratio(part, whole, scale=1):
    """
    ``round(part * scale / whole)`` with halves rounded up; 0 when whole is 0
    """
    if not whole:
        return 0
    return (2 * part * scale + whole) // (2 * whole)


def percentage(part, whole):
    return rounded_ratio(part, whole, scale=100)


def revenue_sum():
    return Coalesce(Sum('price'), 0, output_field=IntegerField())


class StatisticsService:

    @staticmethod
    def _require_stats_access(user):
        if not (has_permission(user, Permission.STATS_READ_ALL)
                or has_permission(user, Permission.STATS_READ_OWN)):
            require(user, Permission.STATS_READ_OWN)

    @staticmethod
    def scoped_tickets(user):
        """Tickets visible to ``user`` for reporting"""
        StatisticsService._require_stats_access(user)
        queryset = Ticket.objects.all()
        if not sees_all(user, Permission.STATS_READ_ALL):
            queryset = queryset.filter(created_by=user)
        return queryset

    @staticmethod
    def _category_counts(queryset):
        rows = queryset.order_by().values('category').annotate(
            count=Count('pk'),
            revenue=revenue_sum(),
        )
        return {row['category']: row for row in rows}

    @staticmethod
    def global_stats(user):
        queryset = StatisticsService.scoped_tickets(user)

        totals = queryset.aggregate(
            total=Count('pk'),
            used=Count('pk', filter=Q(used=True)),
            sent=Count('pk', filter=Q(sent_at__isnull=False)),
            revenue=revenue_sum(),
            orders=Count('order_id', distinct=True),
        )
        by_category = StatisticsService._category_counts(queryset)

        total = totals['total']
        stats = {
            'total': total,
            'used': totals['used'],
            'available': total - totals['used'],
            'sent': totals['sent'],
            'categories': {
                key: by_category.get(key, {}).get('count', 0)
                for key in settings.TICKET_CATEGORIES
            },
            'revenue': totals['revenue'],
            'orders': totals['orders'],
        }
        stats['usage_rate'] = percentage(stats['used'], total)
        stats['sent_rate'] = percentage(stats['sent'], total)
        stats['average_ticket_price'] = rounded_ratio(stats['revenue'], total)
        stats['average_order_size'] = rounded_ratio(total, stats['orders'])
        return stats

    @staticmethod
    def category_stats(user):
        queryset = StatisticsService.scoped_tickets(user)
        by_category = StatisticsService._category_counts(queryset)
        total = sum(row['count'] for row in by_category.values())

        result = {}
        for key, info in settings.TICKET_CATEGORIES.items():
            row = by_category.get(key, {})
            count = row.get('count', 0)
            result[key] = {
                'name': info.get('name', key),
                'count': count,
                'percentage': percentage(count, total),
                'price': info.get('price', 0),
                'currency': info.get('currency'),
                'revenue': row.get('revenue', 0),
            }
        return result

    @staticmethod
    def vendor_stats(user):
        """
        Per-issuer rollups sorted by revenue (highest first)
        """
        require(user, Permission.STATS_READ_ALL)

        rows = Ticket.objects.order_by().values('created_by').annotate(
            tickets=Count('pk'),
            revenue=revenue_sum(),
            used=Count('pk', filter=Q(used=True)),
            sent=Count('pk', filter=Q(sent_at__isnull=False)),
            orders=Count('order_id', distinct=True),
        )
        by_issuer = {row['created_by']: row for row in rows}

        categories = {}
        for row in Ticket.objects.order_by().values('created_by', 'category').annotate(count=Count('pk')):
            categories.setdefault(row['created_by'], {})[row['category']] = row['count']

        issuers = User.objects.filter(
            Q(role=User.Role.VENDOR) | Q(pk__in=list(by_issuer))
        ).order_by('name')

        result = []
        for issuer in issuers:
            row = by_issuer.get(issuer.pk, {})
            tickets = row.get('tickets', 0)
            used = row.get('used', 0)
            revenue = row.get('revenue', 0)
            issuer_categories = categories.get(issuer.pk, {})
            result.append({
                'id': issuer.pk,
                'username': issuer.username,
                'name': issuer.name,
                'phone': issuer.phone,
                'role': issuer.role,
                'is_active': issuer.is_active,
                'tickets': tickets,
                'revenue': revenue,
                'categories': {key: issuer_categories.get(key, 0) for key in settings.TICKET_CATEGORIES},
                'used': used,
                'sent': row.get('sent', 0),
                'orders': row.get('orders', 0),
                'average_ticket_price': rounded_ratio(revenue, tickets),
                'usage_rate': percentage(used, tickets),
            })

        result.sort(key=lambda vendor: vendor['revenue'], reverse=True)
        return result

    @staticmethod
    def user_stats(user):
        require(user, Permission.USERS_MANAGE)

        since = timezone.now() - timedelta(days=ACTIVE_WINDOW_DAYS)
        return User.objects.aggregate(
            total=Count('pk'),
            admins=Count('pk', filter=Q(role=User.Role.ADMIN)),
            vendors=Count('pk', filter=Q(role=User.Role.VENDOR)),
            controllers=Count('pk', filter=Q(role=User.Role.CONTROLLER)),
            active=Count('pk', filter=Q(is_active=True)),
            inactive=Count('pk', filter=Q(is_active=False)),
            active_last_week=Count('pk', filter=Q(last_login__gte=since)),
        )

    @staticmethod
    def order_stats(order_id, user):
        StatisticsService._require_stats_access(user)

        tickets = list(
            Ticket.objects.select_related('created_by')
            .filter(order_id=order_id)
            .order_by('created_at', 'pk')
        )
        if not tickets:
            raise NotFoundError('Order not found')

        first = tickets[0]
        require_owner_or_admin(user, first.created_by_id, all_permission=Permission.STATS_READ_ALL)

        category_counts = {key: 0 for key in settings.TICKET_CATEGORIES}
        for ticket in tickets:
            category_counts[ticket.category] = category_counts.get(ticket.category, 0) + 1

        return {
            'order_id': order_id,
            'ticket_count': len(tickets),
            'total': sum(t.price for t in tickets),
            'used': sum(1 for t in tickets if t.used),
            'sent': sum(1 for t in tickets if t.sent_at is not None),
            'categories': category_counts,
            'client_name': first.client_name,
            'client_phone': first.client_phone,
            'payment_method': first.payment_method,
            'created_at': first.created_at,
            'created_by': first.created_by_id,
            'vendor_name': first.created_by.name,
        }

    @staticmethod
    def orders(user, page=1, limit=20):
        """
        Paginated order rollups, newest first
        """
        queryset = (
            StatisticsService.scoped_tickets(user)
            .order_by()
            .values(
                'order_id', 'client_name', 'client_phone', 'payment_method',
                'created_by', 'created_by__name',
            )
            .annotate(
                ticket_count=Count('pk'),
                total=revenue_sum(),
                used=Count('pk', filter=Q(used=True)),
                placed_at=Min('created_at'),
            )
            .order_by('-placed_at', 'order_id')
        )
        rows, pagination = paginate(queryset, page, limit)

        orders = [
            {
                'order_id': row['order_id'],
                'client_name': row['client_name'],
                'client_phone': row['client_phone'],
                'payment_method': row['payment_method'],
                'created_at': row['placed_at'],
                'created_by': row['created_by'],
                'vendor_name': row['created_by__name'],
                'ticket_count': row['ticket_count'],
                'used': row['used'],
                'total': row['total'],
            }
            for row in rows
        ]
        return orders, pagination

    @staticmethod
    def scan_stats(user):
        """
        Scan attempts per scanner account
        """
        require(user, Permission.STATS_READ_ALL)

        rows = (
            ScanLog.objects.order_by()
            .values('scanned_by', 'scanned_by__username', 'scanned_by__name', 'scanned_by__role')
            .annotate(
                total=Count('pk'),
                successful=Count('pk', filter=Q(result=ScanLog.RESULT_SUCCESS)),
                already_used=Count('pk', filter=Q(failure_reason=ScanLog.REASON_ALREADY_USED)),
                not_found=Count('pk', filter=Q(failure_reason=ScanLog.REASON_NOT_FOUND)),
                last_scan=Max('scanned_at'),
            )
            .order_by('-total')
        )

        scanners = [
            {
                'id': row['scanned_by'],
                'username': row['scanned_by__username'],
                'name': row['scanned_by__name'],
                'role': row['scanned_by__role'],
                'total': row['total'],
                'successful': row['successful'],
                'failed': row['total'] - row['successful'],
                'already_used': row['already_used'],
                'not_found': row['not_found'],
                'last_scan': row['last_scan'],
            }
            for row in rows
        ]

        total = sum(s['total'] for s in scanners)
        successful = sum(s['successful'] for s in scanners)
        return {
            'total': total,
            'successful': successful,
            'failed': total - successful,
            'success_rate': percentage(successful, total),
            'scanners': scanners,
        }

    @staticmethod
    def dashboard(user):
        """
        Everything the back-office home page shows in one call
        """
        recent_orders, _ = StatisticsService.orders(user, page=1, limit=RECENT_ORDERS)
        vendors = None
        if sees_all(user, Permission.STATS_READ_ALL):
            vendors = StatisticsService.vendor_stats(user)

        logger.debug("Building dashboard for user %s", user.pk)
        return {
            'global': StatisticsService.global_stats(user),
            'categories': StatisticsService.category_stats(user),
            'recent_orders': recent_orders,
            'vendors': vendors,
            'last_updated': timezone.now(),
        }
