import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from voicelink.exceptions import InsufficientBalance, ProviderError, RateUnavailable
from voicelink.models import CallRecord, Subscriber
from voicelink.serializers import CallRecordSerializer, PlaceCallSerializer
from voicelink.services import CallAdmissionService
from voicelink.utils import get_telephony_client

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200


class CallView(APIView):
    """
    GET  /subscribers/<uuid>/calls/ — Call history, newest first (?limit=, default 50).
    POST /subscribers/<uuid>/calls/ — Place a call.

    Request body: {"to": "<number or identity>", "kind": "voice|video|pstn",
    "contact_name": "<optional>"}
    """

    def get(self, request, uuid, *args, **kwargs):
        if not Subscriber.objects.filter(uuid=uuid).exists():
            return Response(
                {"error": "Subscriber not found."},
                status=status.HTTP_404_NOT_FOUND,
            )

        try:
            limit = int(request.query_params.get("limit", DEFAULT_HISTORY_LIMIT))
        except ValueError:
            limit = DEFAULT_HISTORY_LIMIT
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))

        calls = CallRecord.objects.filter(subscriber__uuid=uuid)[:limit]
        return Response(CallRecordSerializer(calls, many=True).data)

    def post(self, request, uuid, *args, **kwargs):
        serializer = PlaceCallSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        service = CallAdmissionService(telephony_client=get_telephony_client())
        try:
            result = service.place_call(
                subscriber_uuid=uuid,
                destination_number=serializer.validated_data["to"],
                kind=serializer.validated_data["kind"],
                contact_name=serializer.validated_data["contact_name"],
            )
        except Subscriber.DoesNotExist:
            return Response(
                {"error": "Subscriber not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        except InsufficientBalance as exc:
            return Response(
                {
                    "error": "Insufficient balance.",
                    "balance": str(exc.balance),
                    "required": str(exc.required),
                },
                status=status.HTTP_402_PAYMENT_REQUIRED,
            )
        except RateUnavailable as exc:
            return Response(
                {"error": str(exc)},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except ProviderError as exc:
            return Response(
                {"error": str(exc), "detail": exc.detail},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(
            {
                "call": CallRecordSerializer(result.call_record).data,
                "estimated_cost": str(result.estimated_cost),
                "default_rate_applied": result.used_default_rate,
            },
            status=status.HTTP_201_CREATED,
        )
