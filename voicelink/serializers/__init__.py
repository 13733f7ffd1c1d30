from voicelink.serializers.subscriber import SubscriberSerializer
from voicelink.serializers.recharge import RechargeSerializer
from voicelink.serializers.transaction import TransactionSerializer
from voicelink.serializers.rate import CallRateSerializer, RateQuoteSerializer
from voicelink.serializers.call import CallRecordSerializer, PlaceCallSerializer
from voicelink.serializers.webhook import CallStatusEventSerializer

__all__ = [
    "SubscriberSerializer",
    "RechargeSerializer",
    "TransactionSerializer",
    "CallRateSerializer",
    "RateQuoteSerializer",
    "CallRecordSerializer",
    "PlaceCallSerializer",
    "CallStatusEventSerializer",
]
