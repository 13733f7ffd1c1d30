from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from voicelink.exceptions import RateUnavailable
from voicelink.serializers import CallRateSerializer, RateQuoteSerializer
from voicelink.services import RateTable


class CallRateListView(APIView):
    """GET /rates/ — Active call rates ordered by prefix."""

    def get(self, request, *args, **kwargs):
        rates = RateTable().active_rates()
        return Response(CallRateSerializer(rates, many=True).data)


class RateQuoteView(APIView):
    """GET /rates/calculate?number=<E.164> — Per-minute price for a destination."""

    def get(self, request, *args, **kwargs):
        number = request.query_params.get("number", "").strip()
        if not number:
            return Response(
                {"error": "Query parameter 'number' is required."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            quote = RateTable().quote(number)
        except RateUnavailable as exc:
            return Response(
                {"error": str(exc)},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(RateQuoteSerializer(quote).data)
