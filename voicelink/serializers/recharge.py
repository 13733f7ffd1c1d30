from decimal import Decimal

from rest_framework import serializers

from voicelink.models import Transaction


class RechargeSerializer(serializers.Serializer):
    """Validates wallet recharge requests."""

    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0.01")
    )
    payment_method = serializers.ChoiceField(
        choices=Transaction.PaymentMethod.choices
    )
    reference_id = serializers.CharField(
        max_length=128, required=False, allow_blank=True, default=""
    )
