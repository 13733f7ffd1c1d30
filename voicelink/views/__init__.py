from voicelink.views.subscriber import CreateSubscriberView, RetrieveSubscriberView
from voicelink.views.recharge import RechargeView
from voicelink.views.transaction import TransactionListView, TransactionDetailView
from voicelink.views.call import CallView
from voicelink.views.rate import CallRateListView, RateQuoteView
from voicelink.views.webhook import CallStatusWebhookView

__all__ = [
    "CreateSubscriberView",
    "RetrieveSubscriberView",
    "RechargeView",
    "TransactionListView",
    "TransactionDetailView",
    "CallView",
    "CallRateListView",
    "RateQuoteView",
    "CallStatusWebhookView",
]
