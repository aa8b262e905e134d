"""
Storage access for tickets and scan logs.

Every method is a single conditional write, a single atomic block or a single
read, retried on transient database errors. Nothing here holds state between
calls besides the database alias, so a store can be built per operation.
"""
import functools
import logging

from django.conf import settings
from django.db import InterfaceError, OperationalError, connections, transaction
from django.utils import timezone
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import StorageUnavailable
from .models import ScanLog, Ticket

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, InterfaceError)


def with_storage_retry(func):
    """
    Retry a storage call with exponential backoff on transient errors.
    Exhausted retries surface as StorageUnavailable.
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        def before_sleep(retry_state):
            logger.warning(
                "Transient storage error in %s (attempt %s): %s",
                func.__name__,
                retry_state.attempt_number,
                retry_state.outcome.exception(),
            )
            self.reset_connection()

        retryer = Retrying(
            stop=stop_after_attempt(settings.STORAGE_RETRY_ATTEMPTS),
            wait=wait_exponential(
                multiplier=settings.STORAGE_RETRY_MIN_WAIT,
                min=settings.STORAGE_RETRY_MIN_WAIT,
                max=settings.STORAGE_RETRY_MAX_WAIT,
            ),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            return retryer(func, self, *args, **kwargs)
        except TRANSIENT_ERRORS as e:
            logger.error("Storage unavailable in %s after %s attempts", func.__name__, settings.STORAGE_RETRY_ATTEMPTS)
            raise StorageUnavailable() from e

    return wrapper


class TicketStore:
    """
    Handle on the ticket tables of one database alias
    """

    def __init__(self, using='default'):
        self.using = using

    @property
    def tickets(self):
        return Ticket.objects.using(self.using)

    def reset_connection(self):
        # A broken connection is only dropped outside a transaction;
        # inside one the enclosing block owns the rollback.
        connection = connections[self.using]
        if not connection.in_atomic_block:
            connection.close()

    @with_storage_retry
    def get(self, ticket_id):
        return self.tickets.select_related('created_by', 'scanned_by').filter(pk=ticket_id).first()

    @with_storage_retry
    def insert_order(self, tickets):
        """
        Insert every ticket of an order, or none of them
        """
        with transaction.atomic(using=self.using):
            return Ticket.objects.using(self.using).bulk_create(tickets)

    def _claim(self, ticket_id, scanner_id, now=None):
        now = now or timezone.now()
        updated = self.tickets.filter(pk=ticket_id, used=False).update(
            used=True,
            used_at=now,
            scanned_by_id=scanner_id,
            updated_at=now,
        )
        return updated == 1

    def _log(self, ticket_id, scanner, result, failure_reason=None, request_meta=None):
        return ScanLog.objects.using(self.using).create(
            ticket_id=ticket_id,
            scanned_by=scanner,
            result=result,
            failure_reason=failure_reason,
            ip_address=getattr(request_meta, 'ip_address', None),
            user_agent=getattr(request_meta, 'user_agent', None),
        )

    @with_storage_retry
    def claim_for_entry(self, ticket_id, scanner_id, now=None):
        """
        Flip ``used`` to True if and only if it is still False.
        Returns True for the single caller whose update matched.
        """
        return self._claim(ticket_id, scanner_id, now)

    @with_storage_retry
    def redeem(self, ticket_id, scanner, request_meta=None, now=None):
        """
        Claim the ticket and write its success log in one transaction.
        Either both are committed or neither is.
        """
        with transaction.atomic(using=self.using):
            if not self._claim(ticket_id, scanner.pk, now):
                return False
            self._log(ticket_id, scanner, ScanLog.RESULT_SUCCESS, request_meta=request_meta)
        return True

    @with_storage_retry
    def mark_sent(self, ticket_id, now=None):
        """
        Set ``sent_at`` only when it is still empty; True when this call set it
        """
        now = now or timezone.now()
        updated = self.tickets.filter(pk=ticket_id, sent_at__isnull=True).update(
            sent_at=now,
            updated_at=now,
        )
        return updated == 1

    @with_storage_retry
    def delete_unused(self, ticket_id):
        """
        Delete the ticket only while it has not been used; True when deleted
        """
        deleted, _ = self.tickets.filter(pk=ticket_id, used=False).delete()
        return deleted > 0

    @with_storage_retry
    def attach_artifact(self, ticket_id, qr_payload, artifact_ref):
        # Targeted update: never touches entry state
        return self.tickets.filter(pk=ticket_id).update(
            qr_payload=qr_payload,
            artifact_ref=artifact_ref,
            updated_at=timezone.now(),
        ) == 1

    @with_storage_retry
    def append_scan_log(self, ticket_id, scanner, result, failure_reason=None, request_meta=None):
        return self._log(ticket_id, scanner, result, failure_reason=failure_reason, request_meta=request_meta)

    @with_storage_retry
    def order_tickets(self, order_id):
        return list(
            self.tickets.select_related('created_by', 'scanned_by')
            .filter(order_id=order_id)
            .order_by('created_at', 'pk')
        )

    @with_storage_retry
    def missing_artifacts(self, limit=None):
        queryset = self.tickets.filter(artifact_ref__isnull=True).order_by('created_at')
        if limit:
            queryset = queryset[:limit]
        return list(queryset)
