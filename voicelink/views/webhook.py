import logging

from django.conf import settings
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from voicelink.serializers import CallStatusEventSerializer
from voicelink.services.settlement import is_final_status
from voicelink.tasks import settle_call
from voicelink.utils import validate_signature

logger = logging.getLogger(__name__)


class CallStatusWebhookView(APIView):
    """
    POST /webhooks/telephony/call-status — Provider call status callback.

    Final statuses are queued for settlement; progress notifications
    (ringing, in-progress, ...) are acknowledged and dropped. The provider
    retries anything that is not a 2xx, so well-formed events are always
    acknowledged even when settlement itself fails later.
    """

    authentication_classes = []
    permission_classes = []

    def post(self, request, *args, **kwargs):
        if getattr(settings, "TELEPHONY_VALIDATE_WEBHOOKS", True):
            signature = request.META.get("HTTP_X_TWILIO_SIGNATURE", "")
            params = {key: values for key, values in request.POST.lists()}
            if not validate_signature(
                getattr(settings, "TELEPHONY_AUTH_TOKEN", ""),
                request.build_absolute_uri(),
                params,
                signature,
            ):
                logger.warning(
                    "Webhook signature rejected: path=%s", request.get_full_path()
                )
                return Response(
                    {"error": "Invalid signature."},
                    status=status.HTTP_403_FORBIDDEN,
                )

        serializer = CallStatusEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        event = serializer.validated_data

        if not is_final_status(event["CallStatus"]):
            logger.debug(
                "Call progress ignored: sid=%s status=%s",
                event["CallSid"],
                event["CallStatus"],
            )
            return Response({"queued": False}, status=status.HTTP_200_OK)

        settle_call.delay(event["CallSid"], event["CallStatus"], event["CallDuration"])
        logger.info(
            "Settlement queued: sid=%s status=%s duration=%d",
            event["CallSid"],
            event["CallStatus"],
            event["CallDuration"],
        )
        return Response({"queued": True}, status=status.HTTP_200_OK)
