from rest_framework import serializers


class CallStatusEventSerializer(serializers.Serializer):
    """Status callback posted by the telephony provider (form encoded)."""

    CallSid = serializers.CharField(max_length=64)
    CallStatus = serializers.CharField(max_length=20)
    CallDuration = serializers.IntegerField(min_value=0, required=False, default=0)
