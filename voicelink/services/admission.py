import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from voicelink.exceptions import InsufficientBalance, ProviderError
from voicelink.models import CallKind, CallRate, CallRecord, Subscriber
from voicelink.services.ledger import CENT, LedgerService
from voicelink.services.rates import RateTable

logger = logging.getLogger(__name__)

FREE = Decimal("0.00")


@dataclass
class AdmissionResult:
    call_record: CallRecord
    estimated_cost: Decimal
    rate: Optional[CallRate] = None
    used_default_rate: bool = False


class CallAdmissionService:
    """
    Decides whether a subscriber may place a call and records the attempt.

    Admission is a pre-check, not a hold: a PSTN call is admitted when the
    balance covers its first minute, and nothing is debited until the call
    is settled. Two concurrent PSTN calls can therefore both pass against the
    same balance and drive it negative at settlement.
    """

    def __init__(self, telephony_client, rate_table=None):
        self.telephony_client = telephony_client
        self.rate_table = rate_table or RateTable()

    def admit(
        self,
        subscriber_uuid,
        destination_number: str,
        kind: str,
        contact_name: str = "",
    ) -> AdmissionResult:
        """
        Authorize a call and create its INITIATED CallRecord.

        Raises:
            Subscriber.DoesNotExist: If the subscriber is unknown.
            InsufficientBalance: If the balance does not cover one PSTN minute.
            RateUnavailable: If no rate matches and no default rate is configured.
            ValueError: If ``kind`` is not a CallKind.
        """
        kind = CallKind(kind)
        subscriber = Subscriber.objects.get(uuid=subscriber_uuid)

        if kind in (CallKind.VOICE, CallKind.VIDEO):
            estimated_cost = FREE
            rate = None
            used_default_rate = False
        elif kind == CallKind.PSTN:
            quote = self.rate_table.quote(destination_number)
            estimated_cost = quote.rate_per_minute.quantize(CENT, rounding=ROUND_HALF_UP)
            rate = quote.rate
            used_default_rate = quote.is_default
            balance = LedgerService.get_balance(subscriber_uuid)
            if balance < estimated_cost:
                logger.warning(
                    "Call refused (insufficient balance): subscriber=%s to=%s "
                    "balance=%s estimated_cost=%s",
                    subscriber_uuid,
                    destination_number,
                    balance,
                    estimated_cost,
                )
                raise InsufficientBalance(balance, estimated_cost)
        else:
            raise ValueError(f"Unsupported call kind: {kind}")

        call_record = CallRecord.objects.create(
            subscriber=subscriber,
            destination_number=destination_number,
            contact_name=contact_name or "",
            kind=kind,
            estimated_cost=estimated_cost,
        )

        logger.info(
            "Call admitted: subscriber=%s call=%d kind=%s to=%s estimated_cost=%s",
            subscriber_uuid,
            call_record.id,
            kind,
            destination_number,
            estimated_cost,
        )
        return AdmissionResult(
            call_record=call_record,
            estimated_cost=estimated_cost,
            rate=rate,
            used_default_rate=used_default_rate,
        )

    def place_call(
        self,
        subscriber_uuid,
        destination_number: str,
        kind: str,
        contact_name: str = "",
    ) -> AdmissionResult:
        """
        Admit a call and hand its PSTN leg to the telephony provider.

        The CallRecord is committed before the provider is contacted, and the
        provider is called outside any database transaction. If the provider
        fails the record is marked FAILED before the error propagates, so no
        record is left INITIATED by a refused call.

        Raises:
            ProviderError: If the provider did not accept the call.
            Plus everything ``admit`` raises.
        """
        result = self.admit(subscriber_uuid, destination_number, kind, contact_name)
        call_record = result.call_record

        if call_record.kind != CallKind.PSTN:
            return result

        billing_identity = call_record.subscriber.billing_identity
        try:
            call_sid = self.telephony_client.place_call(
                billing_identity, destination_number
            )
        except ProviderError as exc:
            call_record.status = CallRecord.Status.FAILED
            call_record.provider_status = "failed"
            call_record.save(update_fields=["status", "provider_status", "updated_at"])
            logger.warning(
                "Call placement failed: call=%d to=%s detail=%s",
                call_record.id,
                destination_number,
                exc.detail,
            )
            raise

        call_record.provider_call_sid = call_sid
        call_record.save(update_fields=["provider_call_sid", "updated_at"])

        logger.info(
            "Call handed to provider: call=%d sid=%s",
            call_record.id,
            call_sid,
        )
        return result
