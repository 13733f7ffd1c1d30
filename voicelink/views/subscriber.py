import logging

from rest_framework.generics import CreateAPIView, RetrieveAPIView

from voicelink.models import Subscriber
from voicelink.serializers import SubscriberSerializer

logger = logging.getLogger(__name__)


class CreateSubscriberView(CreateAPIView):
    """POST /subscribers/ — Register a verified subscriber with an empty wallet."""

    serializer_class = SubscriberSerializer

    def perform_create(self, serializer):
        subscriber = serializer.save()
        logger.info("Subscriber created: uuid=%s phone=%s", subscriber.uuid, subscriber.phone)


class RetrieveSubscriberView(RetrieveAPIView):
    """GET /subscribers/<uuid>/ — Subscriber details and current balance."""

    serializer_class = SubscriberSerializer
    queryset = Subscriber.objects.all()
    lookup_field = "uuid"
