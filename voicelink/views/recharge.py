import logging
import uuid

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from voicelink.models import Subscriber
from voicelink.serializers import (
    RechargeSerializer,
    SubscriberSerializer,
    TransactionSerializer,
)
from voicelink.services import LedgerService

logger = logging.getLogger(__name__)


class RechargeView(APIView):
    """
    POST /subscribers/<uuid>/recharge — Top up a wallet.

    Request body: {"amount": "<decimal>", "payment_method": "bkash|nagad|card"}
    An Idempotency-Key header (UUID) makes client retries safe.
    """

    def post(self, request, uuid, *args, **kwargs):
        serializer = RechargeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        idempotency_key = request.META.get("HTTP_IDEMPOTENCY_KEY")
        if idempotency_key:
            try:
                idempotency_key = _parse_uuid(idempotency_key)
            except ValueError:
                return Response(
                    {"error": "Idempotency-Key must be a UUID."},
                    status=status.HTTP_400_BAD_REQUEST,
                )

        try:
            tx = LedgerService.recharge(
                subscriber_uuid=uuid,
                amount=serializer.validated_data["amount"],
                payment_method=serializer.validated_data["payment_method"],
                reference_id=serializer.validated_data["reference_id"],
                idempotency_key=idempotency_key,
            )
        except Subscriber.DoesNotExist:
            return Response(
                {"error": "Subscriber not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        except ValueError as exc:
            return Response(
                {"error": str(exc)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        subscriber = Subscriber.objects.get(uuid=uuid)
        return Response(
            {
                "subscriber": SubscriberSerializer(subscriber).data,
                "transaction": TransactionSerializer(tx).data,
            },
            status=status.HTTP_200_OK,
        )


def _parse_uuid(value):
    return uuid.UUID(str(value))
