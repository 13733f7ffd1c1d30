import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from voicelink.models import Subscriber, Transaction

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class BalanceAudit:
    subscriber_uuid: str
    balance: Decimal
    ledger_total: Decimal

    @property
    def consistent(self):
        return self.balance == self.ledger_total


def to_money(value) -> Decimal:
    """
    Parse a currency amount into a two-place Decimal.

    Raises:
        ValueError: If the value is not a number or has sub-cent precision.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    if amount != amount.quantize(CENT):
        raise ValueError("Amounts are limited to two decimal places.")
    return amount.quantize(CENT)


class LedgerService:
    """
    Owns every change to a subscriber's balance.

    A balance change and its Transaction row are written in one atomic block.
    The balance moves through an F() expression, so the database applies the
    delta under the row lock taken by the UPDATE itself; concurrent
    adjustments on one subscriber serialize on that row while different
    subscribers never contend.
    """

    @staticmethod
    def get_balance(subscriber_uuid) -> Decimal:
        """
        Raises:
            Subscriber.DoesNotExist: If the subscriber is unknown.
        """
        return Subscriber.objects.values_list("balance", flat=True).get(
            uuid=subscriber_uuid
        )

    @staticmethod
    @transaction.atomic
    def adjust(
        subscriber_uuid,
        amount,
        description: str,
        transaction_type: str,
        call_record=None,
        payment_method: str = "",
        reference_id: str = "",
        idempotency_key=None,
    ):
        """
        Apply a signed amount to the balance and append the matching Transaction.

        Args:
            subscriber_uuid: UUID of the subscriber.
            amount: Signed amount; positive for recharges, negative for deductions.
            description: Human readable ledger text.
            transaction_type: One of Transaction.TransactionType.
            call_record: CallRecord charged by a call deduction.

        Returns:
            Tuple of (new balance, Transaction).

        Raises:
            Subscriber.DoesNotExist: If the subscriber is unknown.
            ValueError: If the amount is zero or its sign contradicts the type.
        """
        amount = to_money(amount)
        if amount == 0:
            raise ValueError("Ledger adjustments must be non-zero.")
        if transaction_type == Transaction.TransactionType.RECHARGE:
            if amount < 0:
                raise ValueError("Recharge amounts must be positive.")
        elif transaction_type == Transaction.TransactionType.CALL_DEDUCTION:
            if amount > 0:
                raise ValueError("Call deductions must be negative.")
        else:
            raise ValueError(f"Unknown transaction type: {transaction_type}")

        updated = Subscriber.objects.filter(uuid=subscriber_uuid).update(
            balance=F("balance") + amount,
            updated_at=timezone.now(),
        )
        if not updated:
            raise Subscriber.DoesNotExist(f"Subscriber {subscriber_uuid} not found.")

        subscriber = Subscriber.objects.get(uuid=subscriber_uuid)

        tx = Transaction.objects.create(
            subscriber=subscriber,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            call_record=call_record,
            payment_method=payment_method,
            reference_id=reference_id or "",
            idempotency_key=idempotency_key,
        )

        logger.info(
            "Ledger adjusted: subscriber=%s type=%s amount=%s new_balance=%s tx=%d",
            subscriber_uuid,
            transaction_type,
            amount,
            subscriber.balance,
            tx.id,
        )
        return subscriber.balance, tx

    @staticmethod
    def recharge(
        subscriber_uuid,
        amount,
        payment_method: str,
        reference_id: str = "",
        idempotency_key=None,
    ) -> Transaction:
        """
        Top up a subscriber's balance.

        A repeated idempotency key returns the transaction recorded the first
        time and leaves the balance alone.

        Raises:
            Subscriber.DoesNotExist: If the subscriber is unknown.
            ValueError: If the amount is not positive, or the idempotency key
                was already used for a different recharge.
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValueError("Recharge amount must be positive.")

        if idempotency_key:
            existing_tx = _find_idempotent_recharge(
                idempotency_key, subscriber_uuid, amount
            )
            if existing_tx:
                return existing_tx

        try:
            _, tx = LedgerService.adjust(
                subscriber_uuid,
                amount,
                description=f"Recharge via {payment_method}",
                transaction_type=Transaction.TransactionType.RECHARGE,
                payment_method=payment_method,
                reference_id=reference_id,
                idempotency_key=idempotency_key,
            )
        except IntegrityError:
            # A concurrent request with the same key won the insert.
            if not idempotency_key:
                raise
            existing_tx = _find_idempotent_recharge(
                idempotency_key, subscriber_uuid, amount
            )
            if existing_tx is None:
                raise
            return existing_tx
        return tx

    @staticmethod
    def verify_balance(subscriber_uuid) -> BalanceAudit:
        """Compare the cached balance with the sum of the subscriber's ledger."""
        subscriber = Subscriber.objects.get(uuid=subscriber_uuid)
        total = subscriber.transactions.aggregate(total=Sum("amount"))["total"]
        ledger_total = Decimal(total or 0).quantize(CENT)
        return BalanceAudit(
            subscriber_uuid=str(subscriber.uuid),
            balance=subscriber.balance,
            ledger_total=ledger_total,
        )


def _find_idempotent_recharge(idempotency_key, subscriber_uuid, amount):
    existing_tx = (
        Transaction.objects.select_related("subscriber")
        .filter(idempotency_key=idempotency_key)
        .first()
    )
    if existing_tx is None:
        return None
    if existing_tx.amount != amount or str(existing_tx.subscriber.uuid) != str(
        subscriber_uuid
    ):
        logger.warning(
            "Idempotency conflict: key=%s existing_amount=%s new_amount=%s",
            idempotency_key,
            existing_tx.amount,
            amount,
        )
        raise ValueError("Idempotency key was already used for a different recharge.")
    logger.info(
        "Idempotent recharge request: key=%s tx=%d",
        idempotency_key,
        existing_tx.id,
    )
    return existing_tx
