import logging

from celery import shared_task
from django.conf import settings

from voicelink.exceptions import RateUnavailable
from voicelink.models import CallRecord, Subscriber
from voicelink.services import LedgerService, SettlementService

logger = logging.getLogger(__name__)

MAX_RETRIES = getattr(settings, "SETTLEMENT_MAX_RETRIES", 5)


@shared_task(bind=True, acks_late=True, max_retries=MAX_RETRIES, default_retry_delay=30)
def settle_call(self, provider_call_sid: str, final_status: str, duration_seconds: int):
    """
    Settle one finished call reported by the telephony provider.

    acks_late keeps the message until settlement has committed; settlement
    itself is idempotent, so a redelivery after a crash is harmless.
    """
    try:
        result = SettlementService().settle(
            provider_call_sid, final_status, duration_seconds
        )
    except CallRecord.DoesNotExist:
        logger.error("Settlement for unknown call sid=%s", provider_call_sid)
        return {"provider_call_sid": provider_call_sid, "status": "NOT_FOUND"}

    except RateUnavailable as exc:
        logger.error(
            "Settlement blocked, no rate: sid=%s error=%s", provider_call_sid, str(exc)
        )
        return {"provider_call_sid": provider_call_sid, "status": "RATE_UNAVAILABLE"}

    except ValueError as exc:
        logger.error("Invalid settlement event sid=%s: %s", provider_call_sid, str(exc))
        return {"provider_call_sid": provider_call_sid, "status": "INVALID"}

    except Exception as exc:
        logger.exception(
            "Unexpected error settling call sid=%s: %s", provider_call_sid, str(exc)
        )
        raise self.retry(exc=exc, countdown=2**self.request.retries * 10)

    return {
        "provider_call_sid": provider_call_sid,
        "status": result.call_record.status,
        "cost": str(result.cost),
        "duplicate": result.duplicate,
    }


@shared_task
def expire_stale_calls():
    """
    Periodic task: fail PSTN calls that were admitted but never handed to
    the provider, and report placed calls that never settled.
    """
    count = SettlementService.expire_stale()
    unsettled = SettlementService.find_unsettled()
    return {"expired": count, "unsettled": unsettled}


@shared_task
def audit_ledger_balances():
    """
    Periodic task: check every subscriber's cached balance against the sum
    of their ledger transactions and report the ones that drifted.
    """
    mismatched = []
    for subscriber_uuid in Subscriber.objects.values_list("uuid", flat=True).iterator():
        audit = LedgerService.verify_balance(subscriber_uuid)
        if not audit.consistent:
            logger.error(
                "Ledger mismatch: subscriber=%s balance=%s ledger_total=%s",
                audit.subscriber_uuid,
                audit.balance,
                audit.ledger_total,
            )
            mismatched.append(audit.subscriber_uuid)

    if mismatched:
        logger.error("Ledger audit found %d mismatched subscriber(s).", len(mismatched))
    return {"mismatched": mismatched}
