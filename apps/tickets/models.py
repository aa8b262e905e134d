from django.conf import settings
from django.db import models

from apps.accounts.models import AppendOnlyModel


class Ticket(models.Model):
    """
    Single-use admission ticket for one attendee.
    Tickets sharing ``order_id`` form one order.
    """
    id = models.CharField(
        primary_key=True,
        max_length=32,
        help_text="Public ticket id printed on the QR code"
    )
    order_id = models.CharField(max_length=64, db_index=True)

    attendee_name = models.CharField(max_length=255)
    attendee_phone = models.CharField(max_length=20)
    category = models.CharField(max_length=50, db_index=True)
    price = models.PositiveIntegerField(help_text="Whole currency units")

    client_name = models.CharField(max_length=255)
    client_phone = models.CharField(max_length=20)
    payment_method = models.CharField(max_length=20, null=True, blank=True)

    qr_payload = models.TextField(blank=True, default='')
    artifact_ref = models.CharField(
        max_length=500,
        null=True,
        blank=True,
        help_text="Rendered PDF path relative to MEDIA_ROOT"
    )

    # Entry state, only written by the scan conditional update
    used = models.BooleanField(default=False, db_index=True)
    used_at = models.DateTimeField(null=True, blank=True)
    scanned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='scanned_tickets',
    )

    sent_at = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='issued_tickets',
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'tickets'
        verbose_name = 'Ticket'
        verbose_name_plural = 'Tickets'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['created_by', 'created_at'], name='tickets_issuer_created_idx'),
        ]

    def __str__(self):
        return f"{self.id} - {self.attendee_name} ({self.category})"

    @property
    def is_sent(self):
        return self.sent_at is not None

    @property
    def status(self):
        return 'used' if self.used else 'valid'

    @property
    def category_info(self):
        return settings.TICKET_CATEGORIES.get(self.category, {})

    @property
    def formatted_price(self):
        currency = self.category_info.get('currency', '')
        return f"{self.price:,} {currency}".strip()


class ScanLog(AppendOnlyModel):
    """
    One row per scan attempt, successful or not
    """
    RESULT_SUCCESS = 'success'
    RESULT_FAILED = 'failed'
    RESULT_CHOICES = [
        (RESULT_SUCCESS, 'Success'),
        (RESULT_FAILED, 'Failed'),
    ]

    REASON_NOT_FOUND = 'not_found'
    REASON_ALREADY_USED = 'already_used'
    REASON_CHOICES = [
        (REASON_NOT_FOUND, 'Not found'),
        (REASON_ALREADY_USED, 'Already used'),
    ]

    # Plain string so attempts on unknown ids are still recorded
    ticket_id = models.CharField(max_length=255, db_index=True)
    scanned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='scan_logs',
    )
    scanned_at = models.DateTimeField(auto_now_add=True, db_index=True)
    result = models.CharField(max_length=10, choices=RESULT_CHOICES)
    failure_reason = models.CharField(max_length=20, choices=REASON_CHOICES, null=True, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(null=True, blank=True)

    class Meta:
        db_table = 'scan_logs'
        verbose_name = 'Scan log entry'
        verbose_name_plural = 'Scan log'
        ordering = ['-scanned_at']

    def __str__(self):
        return f"{self.ticket_id} {self.result} at {self.scanned_at}"
