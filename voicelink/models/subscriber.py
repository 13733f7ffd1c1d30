import uuid
from decimal import Decimal

from django.db import models

from voicelink.models.base import BaseModel


class Subscriber(BaseModel):
    """
    A verified caller with a prepaid balance.

    Balance is a cached aggregate of the subscriber's ledger transactions and
    is only ever changed through LedgerService, which pairs every F()
    increment with a Transaction row. It may go negative when a settled call
    costs more than what was left.
    """

    uuid = models.UUIDField(
        default=uuid.uuid4, unique=True, editable=False, db_index=True
    )
    phone = models.CharField(max_length=20, unique=True)
    billing_identity = models.CharField(
        max_length=128,
        blank=True,
        default="",
        help_text="Provider-side calling identity used when placing calls.",
    )
    balance = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    is_verified = models.BooleanField(default=False)
    language = models.CharField(max_length=8, default="en")

    def __str__(self):
        return f"Subscriber {self.phone} (balance={self.balance})"
