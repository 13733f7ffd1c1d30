from django.db import models
from django.db.models import Q

from voicelink.models.base import BaseModel
from voicelink.models.call import CallRecord
from voicelink.models.subscriber import Subscriber


class Transaction(BaseModel):
    """
    Append-only ledger entry behind every balance change.

    Amounts are signed: recharges are positive and call deductions negative,
    so a subscriber's balance always equals the sum of their transactions.
    A call can be charged at most once (unique ``call_record``).
    """

    class TransactionType(models.TextChoices):
        RECHARGE = "recharge", "Recharge"
        CALL_DEDUCTION = "call_deduction", "Call deduction"

    class PaymentMethod(models.TextChoices):
        BKASH = "bkash", "bKash"
        NAGAD = "nagad", "Nagad"
        CARD = "card", "Card"

    subscriber = models.ForeignKey(
        Subscriber,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    transaction_type = models.CharField(
        max_length=16,
        choices=TransactionType.choices,
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    description = models.CharField(max_length=255, blank=True, default="")
    payment_method = models.CharField(
        max_length=10,
        choices=PaymentMethod.choices,
        blank=True,
        default="",
    )
    reference_id = models.CharField(
        max_length=128,
        blank=True,
        default="",
        help_text="Payment provider reference for recharges.",
    )
    call_record = models.ForeignKey(
        CallRecord,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="charges",
    )
    idempotency_key = models.UUIDField(
        unique=True,
        null=True,
        blank=True,
        editable=False,
        help_text="Client-generated UUID for idempotent recharges.",
    )

    class Meta(BaseModel.Meta):
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount=0),
                name="transaction_non_zero_amount",
            ),
            models.UniqueConstraint(
                fields=["call_record"],
                condition=Q(call_record__isnull=False),
                name="uniq_transaction_call_record",
            ),
        ]
        indexes = [
            models.Index(
                fields=["subscriber", "transaction_type"], name="idx_tx_subscriber_type"
            ),
        ]

    def __str__(self):
        return f"Transaction {self.id} | {self.transaction_type} | {self.amount}"
