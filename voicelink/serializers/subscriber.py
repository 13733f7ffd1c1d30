from rest_framework import serializers

from voicelink.models import Subscriber


class SubscriberSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subscriber
        fields = (
            "uuid",
            "phone",
            "billing_identity",
            "balance",
            "is_verified",
            "language",
            "created_at",
            "updated_at",
        )
        read_only_fields = ("uuid", "balance", "created_at", "updated_at")
