from django.urls import path

from voicelink.views import (
    CallRateListView,
    CallStatusWebhookView,
    CallView,
    CreateSubscriberView,
    RateQuoteView,
    RechargeView,
    RetrieveSubscriberView,
    TransactionDetailView,
    TransactionListView,
)

urlpatterns = [
    path("subscribers/", CreateSubscriberView.as_view(), name="subscriber-create"),
    path(
        "subscribers/<uuid:uuid>/",
        RetrieveSubscriberView.as_view(),
        name="subscriber-detail",
    ),
    path(
        "subscribers/<uuid:uuid>/recharge",
        RechargeView.as_view(),
        name="subscriber-recharge",
    ),
    path(
        "subscribers/<uuid:uuid>/transactions/",
        TransactionListView.as_view(),
        name="subscriber-transactions",
    ),
    path(
        "subscribers/<uuid:uuid>/transactions/<int:id>/",
        TransactionDetailView.as_view(),
        name="transaction-detail",
    ),
    path("subscribers/<uuid:uuid>/calls/", CallView.as_view(), name="subscriber-calls"),
    path("rates/", CallRateListView.as_view(), name="rate-list"),
    path("rates/calculate", RateQuoteView.as_view(), name="rate-calculate"),
    path(
        "webhooks/telephony/call-status",
        CallStatusWebhookView.as_view(),
        name="telephony-call-status",
    ),
]
