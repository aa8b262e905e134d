import logging
import re
import secrets
import string
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from django.conf import settings
from django.db.models import Q

from apps.accounts.policy import (
    Permission,
    has_permission,
    require,
    require_owner_or_admin,
    sees_all,
)
from apps.accounts.services import AuditService
from core.exceptions import (
    AppError,
    ArtifactUnavailable,
    BusinessRuleError,
    Forbidden,
    NotFoundError,
    ValidationError,
)
from core.pagination import paginate
from .models import ScanLog, Ticket
from .renderer import ArtifactRenderer
from .storage import TicketStore

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^\+?\d{10,15}$')
MIN_NAME_LENGTH = 2
TICKET_ID_PREFIX = 'TKT-'
TICKET_ID_LENGTH = 16
TICKET_ID_ALPHABET = string.ascii_uppercase + string.digits
ORDER_ID_PREFIX = 'ORD-'
MAX_BATCH_SIZE = 100


def generate_ticket_id():
    return TICKET_ID_PREFIX + ''.join(
        secrets.choice(TICKET_ID_ALPHABET) for _ in range(TICKET_ID_LENGTH)
    )


def generate_order_id():
    return ORDER_ID_PREFIX + uuid.uuid4().hex.upper()


def normalize_phone(value):
    return re.sub(r'\s+', '', str(value or ''))


def _is_text(value):
    return isinstance(value, str)


def _is_valid_phone(value):
    return _is_text(value) and PHONE_PATTERN.match(normalize_phone(value)) is not None


def _read_permissions_check(user):
    if not (has_permission(user, Permission.TICKETS_READ_ALL)
            or has_permission(user, Permission.TICKETS_READ_OWN)):
        require(user, Permission.TICKETS_READ_OWN)


def render_and_attach(ticket, store, renderer):
    """
    Render ``ticket`` and persist the result. Returns True on success.
    Failures are logged; the ticket stays valid without an artifact.
    """
    try:
        artifact = renderer.render(ticket)
        store.attach_artifact(ticket.pk, artifact.qr_payload, artifact.document_ref)
    except Exception:
        logger.exception("Artifact rendering failed for ticket %s", ticket.pk)
        return False

    ticket.qr_payload = artifact.qr_payload
    ticket.artifact_ref = artifact.document_ref
    return True


@dataclass
class IssuedOrder:
    order_id: str
    tickets: List[Ticket]
    total: int
    client_name: str
    client_phone: str
    payment_method: Optional[str] = None
    rendered: int = 0


class OrderIssuanceService:
    """
    Turns one order request into persisted tickets sharing an order id
    """

    @staticmethod
    def validate(client_name, client_phone, attendees, payment_method=None):
        """
        Collect every violation in the request. Returns a dict of
        field path -> list of messages (empty when the request is valid).
        """
        errors = {}

        def add(path, message):
            errors.setdefault(path, []).append(message)

        categories = settings.TICKET_CATEGORIES
        max_attendees = settings.TICKET_MAX_PER_ORDER

        if not _is_text(client_name) or len(client_name.strip()) < MIN_NAME_LENGTH:
            add('client_name', f'Client name must be at least {MIN_NAME_LENGTH} characters')
        if not _is_valid_phone(client_phone):
            add('client_phone', 'Invalid phone number')
        if payment_method and payment_method not in settings.TICKET_PAYMENT_METHODS:
            add('payment_method', f"Payment method must be one of: {', '.join(settings.TICKET_PAYMENT_METHODS)}")

        if not isinstance(attendees, (list, tuple)) or not attendees:
            add('attendees', 'At least one attendee is required')
            return errors
        if len(attendees) > max_attendees:
            add('attendees', f'Maximum {max_attendees} attendees per order')

        for index, attendee in enumerate(attendees):
            prefix = f'attendees[{index}]'
            if not isinstance(attendee, dict):
                add(prefix, 'Attendee must be an object')
                continue

            name = attendee.get('name')
            if not _is_text(name) or len(name.strip()) < MIN_NAME_LENGTH:
                add(f'{prefix}.name', f'Name must be at least {MIN_NAME_LENGTH} characters')
            if not _is_valid_phone(attendee.get('phone')):
                add(f'{prefix}.phone', 'Invalid phone number')

            category = attendee.get('category')
            if not _is_text(category) or category not in categories:
                add(f'{prefix}.category', f"Category must be one of: {', '.join(categories)}")
            elif not categories[category].get('price'):
                add(f'{prefix}.category', f'Category {category} has no price')

        return errors

    @staticmethod
    def issue_order(client_name, client_phone, attendees, issuer, payment_method=None,
                    request_meta=None, store=None, renderer=None):
        """
        Validate, persist all tickets in one transaction, then render artifacts.

        Returns IssuedOrder. Raises ValidationError listing every violation;
        in that case nothing is written.
        """
        require(issuer, Permission.TICKETS_CREATE)

        errors = OrderIssuanceService.validate(client_name, client_phone, attendees, payment_method)
        if errors:
            logger.info("Rejected order from user %s: %s violations", issuer.pk, len(errors))
            raise ValidationError('Invalid order', details=errors)

        store = store or TicketStore()
        renderer = renderer or ArtifactRenderer()

        order_id = generate_order_id()
        client_name = client_name.strip()
        client_phone = normalize_phone(client_phone)
        categories = settings.TICKET_CATEGORIES

        pending = [
            Ticket(
                id=generate_ticket_id(),
                order_id=order_id,
                attendee_name=attendee['name'].strip(),
                attendee_phone=normalize_phone(attendee['phone']),
                category=attendee['category'],
                price=categories[attendee['category']]['price'],
                client_name=client_name,
                client_phone=client_phone,
                payment_method=payment_method or None,
                created_by=issuer,
            )
            for attendee in attendees
        ]

        tickets = store.insert_order(pending)
        total = sum(t.price for t in tickets)
        logger.info("Order %s issued by user %s: %s tickets, total %s", order_id, issuer.pk, len(tickets), total)

        rendered = sum(1 for ticket in tickets if render_and_attach(ticket, store, renderer))
        if rendered < len(tickets):
            logger.warning("Order %s: %s of %s artifacts pending", order_id, len(tickets) - rendered, len(tickets))

        AuditService.record(
            'TICKETS_CREATE',
            user=issuer,
            entity_type='order',
            entity_id=order_id,
            details={
                'ticket_count': len(tickets),
                'categories': dict(Counter(t.category for t in tickets)),
                'total': total,
                'client_name': client_name,
            },
            request_meta=request_meta,
        )

        return IssuedOrder(
            order_id=order_id,
            tickets=tickets,
            total=total,
            client_name=client_name,
            client_phone=client_phone,
            payment_method=payment_method or None,
            rendered=rendered,
        )


@dataclass
class ScanOutcome:
    success: bool
    message: str
    reason: Optional[str] = None
    ticket: Optional[Ticket] = None
    first_scan: Optional[dict] = field(default=None)


class ScanValidator:
    """
    At-most-once entry validation.

    The conditional update in TicketStore.redeem is the only place a ticket
    becomes used; whichever caller's update matches wins.
    """
    MESSAGE_VALID = 'valid ticket'
    MESSAGE_NOT_FOUND = 'ticket not found'
    MESSAGE_ALREADY_USED = 'already used'

    @staticmethod
    def scan(ticket_id, scanner, request_meta=None, store=None):
        """
        Redeem ``ticket_id``. Business failures come back as an unsuccessful
        ScanOutcome; only storage failures raise.
        """
        require(scanner, Permission.TICKETS_SCAN)

        ticket_id = (ticket_id or '').strip()
        if not ticket_id:
            raise ValidationError('Ticket id is required')

        store = store or TicketStore()

        if store.redeem(ticket_id, scanner, request_meta=request_meta):
            ticket = store.get(ticket_id)
            logger.info("Ticket %s scanned by user %s", ticket_id, scanner.pk)
            AuditService.record(
                'TICKET_SCAN',
                user=scanner,
                entity_type='ticket',
                entity_id=ticket_id,
                details={
                    'order_id': ticket.order_id if ticket else None,
                    'category': ticket.category if ticket else None,
                },
                request_meta=request_meta,
            )
            return ScanOutcome(success=True, message=ScanValidator.MESSAGE_VALID, ticket=ticket)

        ticket = store.get(ticket_id)

        if ticket is None:
            store.append_scan_log(
                ticket_id, scanner, ScanLog.RESULT_FAILED,
                failure_reason=ScanLog.REASON_NOT_FOUND, request_meta=request_meta,
            )
            logger.warning("Scan of unknown ticket %r by user %s", ticket_id, scanner.pk)
            return ScanOutcome(
                success=False,
                message=ScanValidator.MESSAGE_NOT_FOUND,
                reason=ScanLog.REASON_NOT_FOUND,
            )

        store.append_scan_log(
            ticket_id, scanner, ScanLog.RESULT_FAILED,
            failure_reason=ScanLog.REASON_ALREADY_USED, request_meta=request_meta,
        )
        logger.warning(
            "Duplicate scan of ticket %s by user %s (first used at %s)",
            ticket_id, scanner.pk, ticket.used_at,
        )
        return ScanOutcome(
            success=False,
            message=ScanValidator.MESSAGE_ALREADY_USED,
            reason=ScanLog.REASON_ALREADY_USED,
            ticket=ticket,
            first_scan={
                'used_at': ticket.used_at,
                'scanned_by': {
                    'id': ticket.scanned_by_id,
                    'name': ticket.scanned_by.name if ticket.scanned_by else None,
                },
            },
        )


class TicketService:
    """
    Reads and non-entry mutations of tickets
    """

    @staticmethod
    def get_ticket(ticket_id, user, store=None):
        _read_permissions_check(user)

        ticket = (store or TicketStore()).get(ticket_id)
        if ticket is None:
            raise NotFoundError('Ticket not found')

        require_owner_or_admin(user, ticket.created_by_id)
        return ticket

    @staticmethod
    def list_tickets(user, filters=None, page=1, limit=50):
        """
        Paginated tickets, newest first. Callers without ``tickets.read_all``
        only ever get their own tickets.
        """
        _read_permissions_check(user)
        filters = filters or {}

        queryset = Ticket.objects.select_related('created_by', 'scanned_by').order_by('-created_at', 'pk')

        if sees_all(user, Permission.TICKETS_READ_ALL):
            if filters.get('created_by'):
                queryset = queryset.filter(created_by_id=filters['created_by'])
        else:
            if filters.get('created_by') and str(filters['created_by']) != str(user.pk):
                raise Forbidden('You can only list your own tickets')
            queryset = queryset.filter(created_by=user)

        if filters.get('order_id'):
            queryset = queryset.filter(order_id=filters['order_id'])
        if filters.get('category'):
            queryset = queryset.filter(category=filters['category'])
        if filters.get('used') is not None:
            queryset = queryset.filter(used=filters['used'])
        if filters.get('sent') is not None:
            queryset = queryset.filter(sent_at__isnull=not filters['sent'])
        if filters.get('search'):
            term = filters['search'].strip()
            queryset = queryset.filter(
                Q(id__icontains=term)
                | Q(attendee_name__icontains=term)
                | Q(client_name__icontains=term)
                | Q(attendee_phone__icontains=term)
            )

        return paginate(queryset, page, limit)

    @staticmethod
    def get_order_tickets(order_id, user, store=None):
        _read_permissions_check(user)

        tickets = (store or TicketStore()).order_tickets(order_id)
        if not tickets:
            raise NotFoundError('Order not found')

        require_owner_or_admin(user, tickets[0].created_by_id)
        return tickets

    @staticmethod
    def mark_sent(ticket_id, user, request_meta=None, store=None):
        """
        Record that the ticket was delivered to the attendee.
        Idempotent: the first ``sent_at`` is kept on repeat calls.
        """
        require(user, Permission.TICKETS_MARK_SENT)
        store = store or TicketStore()

        ticket = store.get(ticket_id)
        if ticket is None:
            raise NotFoundError('Ticket not found')
        require_owner_or_admin(user, ticket.created_by_id)

        if store.mark_sent(ticket_id):
            ticket = store.get(ticket_id)
            logger.info("Ticket %s marked as sent by user %s", ticket_id, user.pk)
            AuditService.record(
                'TICKET_SENT',
                user=user,
                entity_type='ticket',
                entity_id=ticket_id,
                details={'order_id': ticket.order_id},
                request_meta=request_meta,
            )
        else:
            ticket = store.get(ticket_id) or ticket
            logger.debug("Ticket %s was already marked as sent", ticket_id)

        return ticket

    @staticmethod
    def mark_sent_batch(ticket_ids, user, request_meta=None, store=None):
        """
        Apply mark_sent to each id. Per-ticket failures are collected,
        not raised.
        """
        require(user, Permission.TICKETS_MARK_SENT)

        if not isinstance(ticket_ids, (list, tuple)) or not ticket_ids:
            raise ValidationError('ticket_ids must be a non-empty list')
        if len(ticket_ids) > MAX_BATCH_SIZE:
            raise ValidationError(f'At most {MAX_BATCH_SIZE} tickets per batch')

        store = store or TicketStore()
        result = {'success': [], 'failed': []}

        for ticket_id in ticket_ids:
            try:
                TicketService.mark_sent(ticket_id, user, request_meta=request_meta, store=store)
            except AppError as e:
                result['failed'].append({'ticket_id': ticket_id, 'error': e.message})
            else:
                result['success'].append(ticket_id)

        return result

    @staticmethod
    def delete_ticket(ticket_id, user, request_meta=None, store=None, renderer=None):
        """
        Delete an unused ticket. Used tickets are kept as entry records.
        """
        require(user, Permission.TICKETS_DELETE)
        store = store or TicketStore()

        ticket = store.get(ticket_id)
        if ticket is None:
            raise NotFoundError('Ticket not found')

        if not store.delete_unused(ticket_id):
            if store.get(ticket_id) is None:
                raise NotFoundError('Ticket not found')
            logger.warning("Refused to delete used ticket %s (user %s)", ticket_id, user.pk)
            raise BusinessRuleError('Cannot delete a ticket that has already been used')

        (renderer or ArtifactRenderer()).discard(ticket.artifact_ref)

        logger.info("Ticket %s deleted by user %s", ticket_id, user.pk)
        AuditService.record(
            'TICKET_DELETE',
            user=user,
            entity_type='ticket',
            entity_id=ticket_id,
            details={
                'order_id': ticket.order_id,
                'attendee_name': ticket.attendee_name,
                'category': ticket.category,
            },
            request_meta=request_meta,
        )
        return True

    @staticmethod
    def share_message(ticket_id, user, store=None):
        """
        Plain-text ticket for manual delivery through a messaging app
        """
        ticket = TicketService.get_ticket(ticket_id, user, store=store)
        event = settings.EVENT
        category = ticket.category_info.get('name', ticket.category)

        return (
            f"*{event['name'].upper()} TICKET*\n\n"
            f"Name: {ticket.attendee_name}\n"
            f"Category: {category}\n"
            f"Price: {ticket.formatted_price}\n"
            f"Date: {event['date']} - {event['time']}\n"
            f"Venue: {event['venue']}\n\n"
            f"ID: {ticket.id}\n\n"
            f"Present this ticket at the entrance.\n"
            f"This ticket is personal and non-transferable."
        )

    @staticmethod
    def retry_render(ticket_id, user, store=None, renderer=None):
        """
        Render the artifact again, e.g. after a failure during issuance
        """
        require(user, Permission.TICKETS_CREATE)
        store = store or TicketStore()
        ticket = TicketService.get_ticket(ticket_id, user, store=store)

        if not render_and_attach(ticket, store, renderer or ArtifactRenderer()):
            raise ArtifactUnavailable()

        logger.info("Artifact re-rendered for ticket %s", ticket_id)
        return ticket

    @staticmethod
    def render_missing_artifacts(limit=None, store=None, renderer=None):
        """
        Out-of-band sweep over tickets that have no artifact yet.
        Returns ``(rendered, failed)`` counts.
        """
        store = store or TicketStore()
        renderer = renderer or ArtifactRenderer()

        rendered = failed = 0
        for ticket in store.missing_artifacts(limit):
            if render_and_attach(ticket, store, renderer):
                rendered += 1
            else:
                failed += 1

        logger.info("Artifact sweep done: %s rendered, %s failed", rendered, failed)
        return rendered, failed
