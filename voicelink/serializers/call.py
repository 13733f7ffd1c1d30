import re

from rest_framework import serializers

from voicelink.models import CallKind, CallRecord

E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


class CallRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = CallRecord
        fields = (
            "id",
            "destination_number",
            "contact_name",
            "kind",
            "provider_call_sid",
            "status",
            "provider_status",
            "duration_seconds",
            "estimated_cost",
            "cost",
            "created_at",
            "settled_at",
        )
        read_only_fields = fields


class PlaceCallSerializer(serializers.Serializer):
    """
    Validates outbound call requests.

    PSTN destinations must be E.164 numbers; app-to-app calls address
    another subscriber and only need to be non-empty.
    """

    to = serializers.CharField(max_length=64)
    kind = serializers.ChoiceField(choices=CallKind.choices)
    contact_name = serializers.CharField(
        max_length=255, required=False, allow_blank=True, default=""
    )

    def validate_to(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Destination must not be empty.")
        return value

    def validate(self, attrs):
        if attrs["kind"] == CallKind.PSTN and not E164_PATTERN.match(attrs["to"]):
            raise serializers.ValidationError(
                {"to": "Phone calls need an E.164 number, e.g. +8801712345678."}
            )
        return attrs
