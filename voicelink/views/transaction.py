from rest_framework.generics import ListAPIView, RetrieveAPIView

from voicelink.models import Transaction
from voicelink.serializers import TransactionSerializer


class TransactionListView(ListAPIView):
    """
    GET /subscribers/<uuid>/transactions/ — Ledger entries, newest first.

    Query params:
        - type: Filter by transaction type (recharge, call_deduction)
    """

    serializer_class = TransactionSerializer

    def get_queryset(self):
        queryset = Transaction.objects.select_related("subscriber").filter(
            subscriber__uuid=self.kwargs["uuid"]
        )

        tx_type = self.request.query_params.get("type")
        if tx_type:
            queryset = queryset.filter(transaction_type=tx_type.lower())

        return queryset


class TransactionDetailView(RetrieveAPIView):
    """GET /subscribers/<uuid>/transactions/<id>/ — A single ledger entry."""

    serializer_class = TransactionSerializer
    lookup_field = "id"

    def get_queryset(self):
        return Transaction.objects.select_related("subscriber").filter(
            subscriber__uuid=self.kwargs["uuid"]
        )
