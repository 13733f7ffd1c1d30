from rest_framework import serializers

from voicelink.models import Transaction


class TransactionSerializer(serializers.ModelSerializer):
    """Read-only serializer for ledger entries."""

    subscriber_uuid = serializers.UUIDField(source="subscriber.uuid", read_only=True)

    class Meta:
        model = Transaction
        fields = (
            "id",
            "subscriber_uuid",
            "transaction_type",
            "amount",
            "description",
            "payment_method",
            "reference_id",
            "call_record",
            "created_at",
        )
        read_only_fields = fields
