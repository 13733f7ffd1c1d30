from rest_framework import serializers

from voicelink.models import CallRate


class CallRateSerializer(serializers.ModelSerializer):
    class Meta:
        model = CallRate
        fields = (
            "id",
            "country_code",
            "prefix",
            "description",
            "rate_per_minute",
            "is_active",
        )
        read_only_fields = fields


class RateQuoteSerializer(serializers.Serializer):
    destination_number = serializers.CharField()
    rate_per_minute = serializers.DecimalField(max_digits=6, decimal_places=4)
    description = serializers.CharField()
    is_default = serializers.BooleanField()
