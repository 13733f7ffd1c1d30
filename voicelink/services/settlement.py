import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from voicelink.models import CallKind, CallRecord, Transaction
from voicelink.services.ledger import CENT, LedgerService
from voicelink.services.rates import RateTable

logger = logging.getLogger(__name__)

FREE = Decimal("0.00")
SECONDS_PER_MINUTE = Decimal(60)

# Provider statuses that end a call. Anything else (queued, ringing,
# in-progress, ...) is a progress notification and settles nothing.
FINAL_STATUSES = frozenset({"completed", "busy", "no-answer", "failed", "canceled"})


def is_final_status(provider_status: str) -> bool:
    return provider_status in FINAL_STATUSES


def call_cost(rate_per_minute, duration_seconds: int) -> Decimal:
    """Per-second billing of a per-minute rate, rounded half-up to the cent."""
    cost = Decimal(rate_per_minute) * Decimal(duration_seconds) / SECONDS_PER_MINUTE
    return cost.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class SettlementResult:
    call_record: CallRecord
    cost: Decimal
    transaction: Optional[Transaction] = None
    duplicate: bool = False


class SettlementService:
    """
    Turns a provider call-completion event into a final charge.

    Settlement is idempotent per provider call sid: the CallRecord row is
    locked with select_for_update() and a record that already reached a
    terminal state is returned untouched, so duplicate or late deliveries
    never charge twice. The ledger debit and the record update share one
    atomic block.
    """

    def __init__(self, rate_table=None):
        self.rate_table = rate_table or RateTable()

    def settle(
        self, provider_call_sid: str, final_status: str, duration_seconds
    ) -> SettlementResult:
        """
        Settle a finished call.

        Args:
            provider_call_sid: Provider call id carried by the event.
            final_status: One of FINAL_STATUSES.
            duration_seconds: Billable duration reported by the provider.

        Returns:
            SettlementResult; ``duplicate`` is True when the call had already
            been settled and nothing changed.

        Raises:
            CallRecord.DoesNotExist: If no call carries this provider sid.
            RateUnavailable: If a PSTN call has no rate and no default rate is
                configured. The record stays INITIATED so a retry can settle it.
            ValueError: If the status is not final or the duration is negative.
        """
        if not is_final_status(final_status):
            raise ValueError(f"Not a final call status: {final_status}")
        duration = int(duration_seconds or 0)
        if duration < 0:
            raise ValueError("Call duration cannot be negative.")

        with transaction.atomic():
            call_record = CallRecord.objects.select_for_update().get(
                provider_call_sid=provider_call_sid
            )

            if call_record.is_terminal:
                logger.info(
                    "Duplicate settlement ignored: call=%d sid=%s status=%s",
                    call_record.id,
                    provider_call_sid,
                    call_record.status,
                )
                return SettlementResult(
                    call_record=call_record, cost=call_record.cost, duplicate=True
                )

            kind = CallKind(call_record.kind)
            if kind == CallKind.PSTN:
                cost = self._pstn_cost(call_record, duration)
            elif kind in (CallKind.VOICE, CallKind.VIDEO):
                cost = FREE
            else:
                raise ValueError(f"Unsupported call kind: {kind}")

            charge = None
            if cost > 0:
                _, charge = LedgerService.adjust(
                    call_record.subscriber.uuid,
                    -cost,
                    description=f"Call to {call_record.destination_number}",
                    transaction_type=Transaction.TransactionType.CALL_DEDUCTION,
                    call_record=call_record,
                )

            call_record.duration_seconds = duration
            call_record.cost = cost
            call_record.provider_status = final_status
            call_record.settled_at = timezone.now()
            if final_status == "completed":
                call_record.status = CallRecord.Status.COMPLETED
            else:
                call_record.status = CallRecord.Status.FAILED
            call_record.save(
                update_fields=[
                    "duration_seconds",
                    "cost",
                    "provider_status",
                    "settled_at",
                    "status",
                    "updated_at",
                ]
            )

        logger.info(
            "Call settled: call=%d sid=%s status=%s duration=%d cost=%s",
            call_record.id,
            provider_call_sid,
            call_record.status,
            duration,
            cost,
        )
        return SettlementResult(call_record=call_record, cost=cost, transaction=charge)

    def _pstn_cost(self, call_record, duration: int) -> Decimal:
        if duration == 0:
            return FREE
        # Priced at the current rate, not the admission-time estimate.
        quote = self.rate_table.quote(call_record.destination_number)
        return call_cost(quote.rate_per_minute, duration)

    @staticmethod
    def expire_stale(older_than_minutes=None) -> int:
        """
        Fail PSTN calls that were admitted but never reached the provider.

        Such records are left behind when the process dies between creating
        the record and handing the call to the provider.
        """
        cutoff = _stale_cutoff(older_than_minutes)
        count = CallRecord.get_stale_pstn_calls(cutoff).update(
            status=CallRecord.Status.FAILED,
            settled_at=timezone.now(),
            updated_at=timezone.now(),
        )
        if count:
            logger.warning(
                "Stale calls expired: count=%d cutoff=%s", count, cutoff.isoformat()
            )
        return count

    @staticmethod
    def find_unsettled(older_than_minutes=None) -> list:
        """
        Provider sids of placed PSTN calls that never settled.

        A completion event that arrived before the sid was saved, or one
        that found no rate, leaves its record INITIATED. These are left
        untouched and reported so an operator can settle them by hand.
        """
        cutoff = _stale_cutoff(older_than_minutes)
        sids = list(
            CallRecord.get_unsettled_pstn_calls(cutoff)
            .order_by("created_at")
            .values_list("provider_call_sid", flat=True)
        )
        if sids:
            logger.error(
                "Unsettled calls past cutoff: count=%d cutoff=%s sids=%s",
                len(sids),
                cutoff.isoformat(),
                ",".join(sids),
            )
        return sids


def _stale_cutoff(older_than_minutes):
    if older_than_minutes is None:
        older_than_minutes = getattr(settings, "CALL_STALE_AFTER_MINUTES", 30)
    return timezone.now() - timedelta(minutes=older_than_minutes)
