from voicelink.models.base import BaseModel
from voicelink.models.subscriber import Subscriber
from voicelink.models.rate import CallRate
from voicelink.models.call import CallKind, CallRecord
from voicelink.models.transaction import Transaction

__all__ = [
    "BaseModel",
    "Subscriber",
    "CallRate",
    "CallKind",
    "CallRecord",
    "Transaction",
]
