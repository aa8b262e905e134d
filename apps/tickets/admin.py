from django.contrib import admin
from django.utils.html import format_html
from .models import Ticket, ScanLog


@admin.register(Ticket)
class TicketAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'order_id', 'attendee_name', 'category', 'price',
        'used_badge', 'sent_at', 'created_by', 'created_at',
    )
    list_filter = ('category', 'used', 'payment_method', 'created_at')
    search_fields = ('id', 'order_id', 'attendee_name', 'attendee_phone', 'client_name')
    ordering = ('-created_at',)
    list_select_related = ('created_by', 'scanned_by')

    # Entry state only changes through the scan endpoint
    readonly_fields = (
        'id', 'order_id', 'price', 'qr_payload', 'artifact_ref',
        'used', 'used_at', 'scanned_by', 'sent_at',
        'created_by', 'created_at', 'updated_at',
    )

    fieldsets = (
        ('Ticket', {'fields': ('id', 'order_id', 'category', 'price')}),
        ('Attendee', {'fields': ('attendee_name', 'attendee_phone')}),
        ('Client', {'fields': ('client_name', 'client_phone', 'payment_method')}),
        ('Entry', {'fields': ('used', 'used_at', 'scanned_by', 'sent_at')}),
        ('Artifact', {'fields': ('qr_payload', 'artifact_ref')}),
        ('Dates', {'fields': ('created_by', 'created_at', 'updated_at')}),
    )

    def used_badge(self, obj):
        color = '#dc2626' if obj.used else '#16a34a'
        return format_html('<span style="color: {};">{}</span>', color, 'Used' if obj.used else 'Valid')
    used_badge.short_description = 'Status'

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        # Mirrors the API: used tickets are never deleted
        if obj is not None and obj.used:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(ScanLog)
class ScanLogAdmin(admin.ModelAdmin):
    list_display = ('scanned_at', 'ticket_id', 'result', 'failure_reason', 'scanned_by', 'ip_address')
    list_filter = ('result', 'failure_reason', 'scanned_at')
    search_fields = ('ticket_id', 'scanned_by__username')
    ordering = ('-scanned_at',)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
