from django.core.files.storage import default_storage
from rest_framework import serializers

from .models import Ticket


class UserRefSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    username = serializers.CharField()
    name = serializers.CharField()


class TicketSerializer(serializers.ModelSerializer):
    """
    Serializer for Ticket model
    """
    category_name = serializers.SerializerMethodField()
    formatted_price = serializers.CharField(read_only=True)
    status = serializers.CharField(read_only=True)
    is_sent = serializers.BooleanField(read_only=True)
    artifact_url = serializers.SerializerMethodField()
    created_by = UserRefSerializer(read_only=True)
    scanned_by = UserRefSerializer(read_only=True, allow_null=True)

    class Meta:
        model = Ticket
        fields = [
            'id', 'order_id', 'attendee_name', 'attendee_phone',
            'category', 'category_name', 'price', 'formatted_price',
            'client_name', 'client_phone', 'payment_method',
            'qr_payload', 'artifact_url',
            'status', 'used', 'used_at', 'scanned_by',
            'is_sent', 'sent_at',
            'created_by', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_category_name(self, obj):
        return obj.category_info.get('name', obj.category)

    def get_artifact_url(self, obj):
        if not obj.artifact_ref:
            return None
        url = default_storage.url(obj.artifact_ref)
        request = self.context.get('request')
        return request.build_absolute_uri(url) if request else url


class OrderCreateSerializer(serializers.Serializer):
    """
    Shape of an order request. Field rules are checked by
    OrderIssuanceService so that every violation is reported at once.
    """
    client_name = serializers.CharField(required=False, allow_blank=True, default='')
    client_phone = serializers.CharField(required=False, allow_blank=True, default='')
    payment_method = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    attendees = serializers.ListField(
        child=serializers.DictField(),
        required=False,
        default=list,
        help_text="List of {name, phone, category}"
    )


class MarkSentBatchSerializer(serializers.Serializer):
    ticket_ids = serializers.ListField(child=serializers.CharField(max_length=255))


class ScanOutcomeSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    message = serializers.CharField()
    reason = serializers.CharField(allow_null=True)
    ticket = TicketSerializer(allow_null=True)
    first_scan = serializers.DictField(allow_null=True)
