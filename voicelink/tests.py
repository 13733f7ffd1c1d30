import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.core.cache import cache
from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from voicelink.exceptions import InsufficientBalance, ProviderError, RateUnavailable
from voicelink.models import CallKind, CallRate, CallRecord, Subscriber, Transaction
from voicelink.services import (
    CallAdmissionService,
    LedgerService,
    RateTable,
    SettlementService,
)
from voicelink.services.rates import RATE_CACHE_KEY
from voicelink.services.settlement import call_cost
from voicelink.utils import TelephonyClient, compute_signature, validate_signature

BD_NUMBER = "+8801712345678"


class FakeTelephonyClient:
    """Stands in for the provider: records calls, returns a sid or raises."""

    def __init__(self, sid="CA00000000000000000000000000000001", error=None):
        self.sid = sid
        self.error = error
        self.calls = []

    def place_call(self, billing_identity, destination_number):
        self.calls.append((billing_identity, destination_number))
        if self.error is not None:
            raise self.error
        return self.sid


def make_subscriber(phone="+8801811111111", balance=None):
    subscriber = Subscriber.objects.create(
        phone=phone, billing_identity=f"user-{phone[1:]}", is_verified=True
    )
    if balance is not None and Decimal(balance) > 0:
        LedgerService.recharge(subscriber.uuid, balance, "bkash")
        subscriber.refresh_from_db()
    return subscriber


def make_rate(prefix, rate, description="Bangladesh Mobile", is_active=True):
    return CallRate.objects.create(
        country_code="BD",
        prefix=prefix,
        description=description,
        rate_per_minute=Decimal(rate),
        is_active=is_active,
    )


def ledger_total(subscriber):
    return sum(
        (tx.amount for tx in Transaction.objects.filter(subscriber=subscriber)),
        Decimal("0.00"),
    )


class CacheResetMixin:
    def setUp(self):
        super().setUp()
        cache.clear()


# ============================================================
# Model Tests
# ============================================================


class SubscriberModelTest(TestCase):
    def test_create_subscriber(self):
        subscriber = Subscriber.objects.create(phone="+8801700000000")
        self.assertIsNotNone(subscriber.uuid)
        self.assertEqual(subscriber.balance, Decimal("0.00"))
        self.assertIsNotNone(subscriber.created_at)

    def test_subscriber_str(self):
        subscriber = Subscriber.objects.create(phone="+8801700000000")
        self.assertIn("+8801700000000", str(subscriber))


class CallRecordModelTest(TestCase):
    def setUp(self):
        self.subscriber = Subscriber.objects.create(phone="+8801700000000")

    def test_defaults(self):
        call = CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=BD_NUMBER,
            kind=CallKind.PSTN,
        )
        self.assertEqual(call.status, CallRecord.Status.INITIATED)
        self.assertEqual(call.cost, Decimal("0.00"))
        self.assertEqual(call.duration_seconds, 0)
        self.assertFalse(call.is_terminal)

    def test_terminal_statuses(self):
        call = CallRecord(status=CallRecord.Status.COMPLETED)
        self.assertTrue(call.is_terminal)
        call.status = CallRecord.Status.FAILED
        self.assertTrue(call.is_terminal)

    def test_get_stale_pstn_calls(self):
        stale = CallRecord.objects.create(
            subscriber=self.subscriber, destination_number=BD_NUMBER, kind=CallKind.PSTN
        )
        # Placed with the provider: not stale even if old
        placed = CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=BD_NUMBER,
            kind=CallKind.PSTN,
            provider_call_sid="CA-placed",
        )
        # App call: never has a provider sid
        app_call = CallRecord.objects.create(
            subscriber=self.subscriber, destination_number="friend", kind=CallKind.VOICE
        )
        an_hour_ago = timezone.now() - timedelta(hours=1)
        CallRecord.objects.filter(pk__in=[stale.pk, placed.pk, app_call.pk]).update(
            created_at=an_hour_ago
        )

        cutoff = timezone.now() - timedelta(minutes=30)
        self.assertEqual(
            list(CallRecord.get_stale_pstn_calls(cutoff).values_list("pk", flat=True)),
            [stale.pk],
        )
        self.assertEqual(
            list(CallRecord.get_unsettled_pstn_calls(cutoff).values_list("pk", flat=True)),
            [placed.pk],
        )


# ============================================================
# Rate Table Tests
# ============================================================


class RateTableTest(CacheResetMixin, TestCase):
    def test_longest_prefix_wins(self):
        make_rate("+880", "0.35")
        make_rate("+8801", "0.40")

        rate = RateTable().lookup(BD_NUMBER)

        self.assertEqual(rate.prefix, "+8801")
        self.assertEqual(rate.rate_per_minute, Decimal("0.40"))

    def test_shorter_prefix_matches_when_alone(self):
        make_rate("+880", "0.35")

        rate = RateTable().lookup(BD_NUMBER)

        self.assertEqual(rate.prefix, "+880")
        self.assertEqual(rate.rate_per_minute, Decimal("0.35"))

    def test_no_match_returns_none(self):
        make_rate("+44", "0.10")
        self.assertIsNone(RateTable().lookup(BD_NUMBER))
        self.assertIsNone(RateTable().lookup(""))

    def test_prefix_must_be_leading(self):
        make_rate("1712", "9.99")
        self.assertIsNone(RateTable().lookup(BD_NUMBER))

    def test_inactive_rates_are_ignored(self):
        make_rate("+880", "0.35")
        make_rate("+8801", "0.40", is_active=False)

        self.assertEqual(RateTable().lookup(BD_NUMBER).prefix, "+880")

    def test_equal_prefixes_resolve_to_lowest_id(self):
        first = make_rate("+8801", "0.30")
        make_rate("+8801", "0.50")

        self.assertEqual(RateTable().lookup(BD_NUMBER).pk, first.pk)

    def test_new_rate_invalidates_cache(self):
        make_rate("+880", "0.35")
        rate_table = RateTable()
        self.assertEqual(rate_table.lookup(BD_NUMBER).prefix, "+880")

        rate_table.register("+88017", "0.45", "Grameenphone", country_code="BD")

        self.assertEqual(rate_table.lookup(BD_NUMBER).prefix, "+88017")

    def test_deactivate_invalidates_cache(self):
        make_rate("+880", "0.35")
        make_rate("+8801", "0.40")
        rate_table = RateTable()
        self.assertEqual(rate_table.lookup(BD_NUMBER).prefix, "+8801")

        self.assertEqual(rate_table.deactivate("+8801"), 1)

        self.assertEqual(rate_table.lookup(BD_NUMBER).prefix, "+880")

    def test_index_built_before_a_write_elsewhere_is_rebuilt(self):
        make_rate("+880", "0.35")
        self.assertEqual(RateTable().lookup(BD_NUMBER).prefix, "+880")
        worker_entry = cache.get(RATE_CACHE_KEY)

        rate_table = RateTable()
        rate_table.deactivate("+880")
        rate_table.register("+8801", "0.40", "Bangladesh Mobile", country_code="BD")
        # A worker's local cache never saw the invalidation.
        cache.set(RATE_CACHE_KEY, worker_entry)

        rate = RateTable().lookup(BD_NUMBER)
        self.assertEqual(rate.prefix, "+8801")
        self.assertEqual(rate.rate_per_minute, Decimal("0.40"))

    def test_price_change_elsewhere_is_picked_up(self):
        rate = make_rate("+880", "0.35")
        RateTable().lookup(BD_NUMBER)
        worker_entry = cache.get(RATE_CACHE_KEY)

        rate.rate_per_minute = Decimal("0.60")
        rate.save()
        cache.set(RATE_CACHE_KEY, worker_entry)

        self.assertEqual(RateTable().lookup(BD_NUMBER).rate_per_minute, Decimal("0.60"))

    def test_delete_elsewhere_is_picked_up(self):
        make_rate("+880", "0.35")
        longer = make_rate("+8801", "0.40")
        RateTable().lookup(BD_NUMBER)
        worker_entry = cache.get(RATE_CACHE_KEY)

        longer.delete()
        cache.set(RATE_CACHE_KEY, worker_entry)

        self.assertEqual(RateTable().lookup(BD_NUMBER).prefix, "+880")

    def test_register_rejects_bad_input(self):
        with self.assertRaises(ValueError):
            RateTable().register("", "0.35", "Empty")
        with self.assertRaises(ValueError):
            RateTable().register("+880", "0", "Free")
        with self.assertRaises(ValueError):
            RateTable().register("+880", "-0.10", "Negative")

    def test_quote_uses_matching_rate(self):
        make_rate("+8801", "0.40")
        quote = RateTable().quote(BD_NUMBER)
        self.assertFalse(quote.is_default)
        self.assertEqual(quote.rate_per_minute, Decimal("0.40"))

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=Decimal("0.35"))
    def test_quote_falls_back_to_default_rate(self):
        quote = RateTable().quote("+14155550100")
        self.assertTrue(quote.is_default)
        self.assertIsNone(quote.rate)
        self.assertEqual(quote.rate_per_minute, Decimal("0.35"))

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_quote_without_default_raises(self):
        with self.assertRaises(RateUnavailable):
            RateTable().quote("+14155550100")

    def test_active_rates_listing(self):
        make_rate("+8801", "0.40")
        make_rate("+880", "0.35")
        make_rate("+44", "0.10", is_active=False)

        prefixes = [rate.prefix for rate in RateTable().active_rates()]

        self.assertEqual(prefixes, ["+880", "+8801"])


# ============================================================
# Ledger Tests
# ============================================================


class LedgerServiceTest(TransactionTestCase):
    def setUp(self):
        self.subscriber = make_subscriber()

    def test_recharge_success(self):
        tx = LedgerService.recharge(self.subscriber.uuid, "10.00", "bkash")

        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("10.00"))
        self.assertEqual(tx.transaction_type, Transaction.TransactionType.RECHARGE)
        self.assertEqual(tx.amount, Decimal("10.00"))
        self.assertEqual(tx.description, "Recharge via bkash")

    def test_adjust_applies_signed_amount_and_appends_transaction(self):
        LedgerService.recharge(self.subscriber.uuid, "10.00", "card")

        new_balance, tx = LedgerService.adjust(
            self.subscriber.uuid,
            Decimal("-0.53"),
            description="Call to +8801712345678",
            transaction_type=Transaction.TransactionType.CALL_DEDUCTION,
        )

        self.assertEqual(new_balance, Decimal("9.47"))
        self.assertEqual(tx.amount, Decimal("-0.53"))
        self.assertEqual(LedgerService.get_balance(self.subscriber.uuid), Decimal("9.47"))
        self.assertEqual(Transaction.objects.filter(subscriber=self.subscriber).count(), 2)

    def test_adjust_unknown_subscriber_raises(self):
        with self.assertRaises(Subscriber.DoesNotExist):
            LedgerService.adjust(
                uuid.uuid4(), "5.00", "Top up", Transaction.TransactionType.RECHARGE
            )
        self.assertEqual(Transaction.objects.count(), 0)

    def test_get_balance_unknown_subscriber_raises(self):
        with self.assertRaises(Subscriber.DoesNotExist):
            LedgerService.get_balance(uuid.uuid4())

    def test_adjust_rejects_zero_and_mismatched_signs(self):
        with self.assertRaises(ValueError):
            LedgerService.adjust(
                self.subscriber.uuid, "0.00", "Nothing", Transaction.TransactionType.RECHARGE
            )
        with self.assertRaises(ValueError):
            LedgerService.adjust(
                self.subscriber.uuid, "-1.00", "Bad", Transaction.TransactionType.RECHARGE
            )
        with self.assertRaises(ValueError):
            LedgerService.adjust(
                self.subscriber.uuid,
                "1.00",
                "Bad",
                Transaction.TransactionType.CALL_DEDUCTION,
            )
        with self.assertRaises(ValueError):
            LedgerService.adjust(self.subscriber.uuid, "1.00", "Bad", "bonus")

    def test_adjust_rejects_sub_cent_amounts(self):
        with self.assertRaises(ValueError):
            LedgerService.adjust(
                self.subscriber.uuid, "0.005", "Dust", Transaction.TransactionType.RECHARGE
            )

    def test_adjust_is_all_or_nothing(self):
        LedgerService.recharge(self.subscriber.uuid, "10.00", "card")

        with patch.object(
            Transaction.objects, "create", side_effect=DatabaseError("disk full")
        ):
            with self.assertRaises(DatabaseError):
                LedgerService.adjust(
                    self.subscriber.uuid,
                    "-2.00",
                    "Call",
                    Transaction.TransactionType.CALL_DEDUCTION,
                )

        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("10.00"))
        self.assertEqual(Transaction.objects.filter(subscriber=self.subscriber).count(), 1)

    def test_recharge_non_positive_raises(self):
        with self.assertRaises(ValueError):
            LedgerService.recharge(self.subscriber.uuid, "0", "bkash")
        with self.assertRaises(ValueError):
            LedgerService.recharge(self.subscriber.uuid, "-5.00", "bkash")

    def test_recharge_idempotency(self):
        key = str(uuid.uuid4())

        tx1 = LedgerService.recharge(
            self.subscriber.uuid, "25.00", "nagad", idempotency_key=key
        )
        tx2 = LedgerService.recharge(
            self.subscriber.uuid, "25.00", "nagad", idempotency_key=key
        )

        self.assertEqual(tx1.id, tx2.id)
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("25.00"))

    def test_recharge_idempotency_conflict_raises(self):
        key = str(uuid.uuid4())
        LedgerService.recharge(self.subscriber.uuid, "25.00", "nagad", idempotency_key=key)

        with self.assertRaises(ValueError):
            LedgerService.recharge(
                self.subscriber.uuid, "30.00", "nagad", idempotency_key=key
            )

        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("25.00"))

    def test_verify_balance(self):
        LedgerService.recharge(self.subscriber.uuid, "10.00", "card")
        audit = LedgerService.verify_balance(self.subscriber.uuid)
        self.assertTrue(audit.consistent)

        # A balance written behind the ledger's back is reported.
        Subscriber.objects.filter(pk=self.subscriber.pk).update(balance=Decimal("99.00"))
        audit = LedgerService.verify_balance(self.subscriber.uuid)
        self.assertFalse(audit.consistent)
        self.assertEqual(audit.ledger_total, Decimal("10.00"))


class LedgerConcurrencyTest(TransactionTestCase):
    def _run_concurrently(self, jobs):
        def run(job):
            try:
                return job()
            finally:
                connection.close()

        with ThreadPoolExecutor(max_workers=8) as pool:
            return list(pool.map(run, jobs))

    def test_concurrent_adjustments_do_not_lose_updates(self):
        subscriber = make_subscriber(balance="100.00")
        amounts = [Decimal("1.25"), Decimal("-0.53"), Decimal("2.00"), Decimal("-1.10")] * 10

        def job_for(amount):
            if amount > 0:
                tx_type = Transaction.TransactionType.RECHARGE
            else:
                tx_type = Transaction.TransactionType.CALL_DEDUCTION
            return lambda: LedgerService.adjust(subscriber.uuid, amount, "concurrent", tx_type)

        self._run_concurrently([job_for(amount) for amount in amounts])

        subscriber.refresh_from_db()
        self.assertEqual(subscriber.balance, Decimal("100.00") + sum(amounts))
        self.assertEqual(subscriber.balance, ledger_total(subscriber))
        self.assertEqual(
            Transaction.objects.filter(subscriber=subscriber).count(), len(amounts) + 1
        )

    def test_concurrent_adjustments_across_subscribers(self):
        first = make_subscriber(phone="+8801811111111", balance="10.00")
        second = make_subscriber(phone="+8801822222222", balance="10.00")

        def recharge(sub):
            return lambda: LedgerService.adjust(
                sub.uuid, "1.00", "Top up", Transaction.TransactionType.RECHARGE
            )

        self._run_concurrently([recharge(first), recharge(second)] * 10)

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.balance, Decimal("20.00"))
        self.assertEqual(second.balance, Decimal("20.00"))


# ============================================================
# Call Admission Tests
# ============================================================


class CallAdmissionServiceTest(CacheResetMixin, TestCase):
    def setUp(self):
        super().setUp()
        make_rate("+880", "0.35")
        self.telephony = FakeTelephonyClient()
        self.service = CallAdmissionService(telephony_client=self.telephony)

    def test_pstn_admitted_without_ledger_mutation(self):
        subscriber = make_subscriber(balance="10.00")

        result = self.service.admit(subscriber.uuid, BD_NUMBER, CallKind.PSTN)

        self.assertEqual(result.estimated_cost, Decimal("0.35"))
        self.assertEqual(result.call_record.status, CallRecord.Status.INITIATED)
        self.assertEqual(result.call_record.kind, CallKind.PSTN)
        self.assertFalse(result.used_default_rate)
        subscriber.refresh_from_db()
        self.assertEqual(subscriber.balance, Decimal("10.00"))
        self.assertEqual(
            Transaction.objects.filter(
                subscriber=subscriber,
                transaction_type=Transaction.TransactionType.CALL_DEDUCTION,
            ).count(),
            0,
        )

    def test_pstn_insufficient_balance_creates_no_record(self):
        subscriber = make_subscriber(balance="0.10")

        with self.assertRaises(InsufficientBalance) as ctx:
            self.service.admit(subscriber.uuid, BD_NUMBER, CallKind.PSTN)

        self.assertEqual(ctx.exception.required, Decimal("0.35"))
        self.assertEqual(CallRecord.objects.count(), 0)

    def test_balance_is_read_through_the_ledger(self):
        subscriber = make_subscriber(balance="10.00")

        with patch(
            "voicelink.services.admission.LedgerService.get_balance",
            return_value=Decimal("0.10"),
        ) as mock_balance:
            with self.assertRaises(InsufficientBalance) as ctx:
                self.service.admit(subscriber.uuid, BD_NUMBER, CallKind.PSTN)

        mock_balance.assert_called_once_with(subscriber.uuid)
        self.assertEqual(ctx.exception.balance, Decimal("0.10"))

    def test_app_calls_are_free_and_ignore_balance(self):
        subscriber = make_subscriber()

        for kind in (CallKind.VOICE, CallKind.VIDEO):
            result = self.service.admit(subscriber.uuid, "friend-identity", kind)
            self.assertEqual(result.estimated_cost, Decimal("0.00"))
            self.assertEqual(result.call_record.kind, kind)

        self.assertEqual(CallRecord.objects.filter(subscriber=subscriber).count(), 2)

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=Decimal("0.50"))
    def test_unknown_destination_uses_default_rate(self):
        subscriber = make_subscriber(balance="10.00")

        result = CallAdmissionService(self.telephony).admit(
            subscriber.uuid, "+14155550100", CallKind.PSTN
        )

        self.assertTrue(result.used_default_rate)
        self.assertEqual(result.estimated_cost, Decimal("0.50"))

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_unknown_destination_without_default_is_refused(self):
        subscriber = make_subscriber(balance="10.00")

        with self.assertRaises(RateUnavailable):
            CallAdmissionService(self.telephony).admit(
                subscriber.uuid, "+14155550100", CallKind.PSTN
            )
        self.assertEqual(CallRecord.objects.count(), 0)

    def test_unknown_kind_raises(self):
        subscriber = make_subscriber(balance="10.00")
        with self.assertRaises(ValueError):
            self.service.admit(subscriber.uuid, BD_NUMBER, "fax")

    def test_unknown_subscriber_raises(self):
        with self.assertRaises(Subscriber.DoesNotExist):
            self.service.admit(uuid.uuid4(), BD_NUMBER, CallKind.PSTN)

    def test_place_call_attaches_provider_sid(self):
        subscriber = make_subscriber(balance="10.00")

        result = self.service.place_call(subscriber.uuid, BD_NUMBER, CallKind.PSTN)

        result.call_record.refresh_from_db()
        self.assertEqual(result.call_record.provider_call_sid, self.telephony.sid)
        self.assertEqual(result.call_record.status, CallRecord.Status.INITIATED)
        self.assertEqual(self.telephony.calls, [(subscriber.billing_identity, BD_NUMBER)])

    def test_place_call_provider_failure_marks_record_failed(self):
        subscriber = make_subscriber(balance="10.00")
        telephony = FakeTelephonyClient(error=ProviderError("rejected", {"status": 400}))

        with self.assertRaises(ProviderError):
            CallAdmissionService(telephony).place_call(
                subscriber.uuid, BD_NUMBER, CallKind.PSTN
            )

        call = CallRecord.objects.get(subscriber=subscriber)
        self.assertEqual(call.status, CallRecord.Status.FAILED)
        self.assertIsNone(call.provider_call_sid)
        subscriber.refresh_from_db()
        self.assertEqual(subscriber.balance, Decimal("10.00"))

    def test_place_call_app_to_app_skips_provider(self):
        subscriber = make_subscriber()

        self.service.place_call(subscriber.uuid, "friend-identity", CallKind.VIDEO)

        self.assertEqual(self.telephony.calls, [])


# ============================================================
# Settlement Tests
# ============================================================


class SettlementServiceTest(CacheResetMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.rate = make_rate("+880", "0.35")
        self.subscriber = make_subscriber(balance="10.00")
        self.service = SettlementService()

    def _pstn_call(self, sid="CA-settle-1", destination=BD_NUMBER):
        return CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=destination,
            kind=CallKind.PSTN,
            provider_call_sid=sid,
            estimated_cost=Decimal("0.35"),
        )

    def test_call_cost_rounds_half_up(self):
        self.assertEqual(call_cost(Decimal("0.35"), 90), Decimal("0.53"))
        self.assertEqual(call_cost(Decimal("0.35"), 60), Decimal("0.35"))
        self.assertEqual(call_cost(Decimal("0.35"), 1), Decimal("0.01"))

    def test_pstn_settlement_debits_ledger(self):
        call = self._pstn_call()

        result = self.service.settle("CA-settle-1", "completed", 90)

        self.assertEqual(result.cost, Decimal("0.53"))
        self.assertFalse(result.duplicate)
        self.assertEqual(result.transaction.amount, Decimal("-0.53"))
        self.assertEqual(
            result.transaction.transaction_type,
            Transaction.TransactionType.CALL_DEDUCTION,
        )
        self.assertEqual(result.transaction.call_record_id, call.id)

        call.refresh_from_db()
        self.assertEqual(call.status, CallRecord.Status.COMPLETED)
        self.assertEqual(call.duration_seconds, 90)
        self.assertEqual(call.cost, Decimal("0.53"))
        self.assertIsNotNone(call.settled_at)

        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("9.47"))

    def test_duplicate_settlement_is_a_noop(self):
        self._pstn_call()

        self.service.settle("CA-settle-1", "completed", 90)
        second = self.service.settle("CA-settle-1", "completed", 90)

        self.assertTrue(second.duplicate)
        self.assertIsNone(second.transaction)
        self.assertEqual(
            Transaction.objects.filter(
                transaction_type=Transaction.TransactionType.CALL_DEDUCTION
            ).count(),
            1,
        )
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("9.47"))

    def test_app_calls_settle_for_free(self):
        for kind, sid in ((CallKind.VOICE, "CA-voice"), (CallKind.VIDEO, "CA-video")):
            CallRecord.objects.create(
                subscriber=self.subscriber,
                destination_number="friend-identity",
                kind=kind,
                provider_call_sid=sid,
            )
            result = self.service.settle(sid, "completed", 3600)
            self.assertEqual(result.cost, Decimal("0.00"))
            self.assertIsNone(result.transaction)
            self.assertEqual(result.call_record.duration_seconds, 3600)

        self.assertEqual(
            Transaction.objects.filter(
                transaction_type=Transaction.TransactionType.CALL_DEDUCTION
            ).count(),
            0,
        )

    def test_unanswered_call_is_failed_and_free(self):
        call = self._pstn_call()

        result = self.service.settle("CA-settle-1", "no-answer", 0)

        self.assertEqual(result.cost, Decimal("0.00"))
        call.refresh_from_db()
        self.assertEqual(call.status, CallRecord.Status.FAILED)
        self.assertEqual(call.provider_status, "no-answer")
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("10.00"))

    def test_busy_call_with_duration_is_charged_and_failed(self):
        call = self._pstn_call()

        result = self.service.settle("CA-settle-1", "busy", 60)

        self.assertEqual(result.cost, Decimal("0.35"))
        call.refresh_from_db()
        self.assertEqual(call.status, CallRecord.Status.FAILED)

    def test_unknown_sid_raises_and_creates_nothing(self):
        with self.assertRaises(CallRecord.DoesNotExist):
            self.service.settle("CA-unknown", "completed", 90)
        self.assertEqual(CallRecord.objects.count(), 0)

    def test_progress_status_is_rejected(self):
        self._pstn_call()
        with self.assertRaises(ValueError):
            self.service.settle("CA-settle-1", "ringing", 0)

    def test_settlement_uses_current_rate(self):
        self._pstn_call()
        RateTable().register("+8801", "0.60", "Bangladesh Mobile (new)", country_code="BD")

        result = self.service.settle("CA-settle-1", "completed", 60)

        self.assertEqual(result.cost, Decimal("0.60"))

    def test_settlement_may_overdraw_balance(self):
        self._pstn_call()

        self.service.settle("CA-settle-1", "completed", 3600)

        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("-11.00"))
        self.assertEqual(self.subscriber.balance, ledger_total(self.subscriber))

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_missing_rate_leaves_call_open(self):
        call = self._pstn_call(sid="CA-us", destination="+14155550100")

        with self.assertRaises(RateUnavailable):
            SettlementService().settle("CA-us", "completed", 60)

        call.refresh_from_db()
        self.assertEqual(call.status, CallRecord.Status.INITIATED)
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("10.00"))

    def test_balance_equals_ledger_after_mixed_activity(self):
        admission = CallAdmissionService(FakeTelephonyClient(sid="CA-mixed-1"))
        admission.place_call(self.subscriber.uuid, BD_NUMBER, CallKind.PSTN)
        LedgerService.recharge(self.subscriber.uuid, "5.00", "card")
        self.service.settle("CA-mixed-1", "completed", 125)
        self.service.settle("CA-mixed-1", "completed", 125)

        admission = CallAdmissionService(FakeTelephonyClient(sid="CA-mixed-2"))
        admission.place_call(self.subscriber.uuid, BD_NUMBER, CallKind.PSTN)
        self.service.settle("CA-mixed-2", "completed", 30)

        self.subscriber.refresh_from_db()
        # 10.00 + 5.00 - 0.73 - 0.18
        self.assertEqual(self.subscriber.balance, Decimal("14.09"))
        self.assertEqual(self.subscriber.balance, ledger_total(self.subscriber))

    def test_expire_stale_fails_orphaned_pstn_calls(self):
        orphan = CallRecord.objects.create(
            subscriber=self.subscriber, destination_number=BD_NUMBER, kind=CallKind.PSTN
        )
        fresh = CallRecord.objects.create(
            subscriber=self.subscriber, destination_number=BD_NUMBER, kind=CallKind.PSTN
        )
        CallRecord.objects.filter(pk=orphan.pk).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        self.assertEqual(SettlementService.expire_stale(older_than_minutes=30), 1)

        orphan.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(orphan.status, CallRecord.Status.FAILED)
        self.assertEqual(fresh.status, CallRecord.Status.INITIATED)

    def test_find_unsettled_reports_placed_calls_left_open(self):
        old = self._pstn_call(sid="CA-old")
        self._pstn_call(sid="CA-recent")
        settled = self._pstn_call(sid="CA-settled")
        self.service.settle("CA-settled", "completed", 10)
        CallRecord.objects.filter(pk__in=[old.pk, settled.pk]).update(
            created_at=timezone.now() - timedelta(hours=2)
        )

        self.assertEqual(SettlementService.find_unsettled(older_than_minutes=30), ["CA-old"])

        old.refresh_from_db()
        self.assertEqual(old.status, CallRecord.Status.INITIATED)


# ============================================================
# Telephony Client Tests
# ============================================================


class TelephonyClientTest(TestCase):
    def setUp(self):
        self.client = TelephonyClient(
            base_url="https://provider.test/2010-04-01",
            account_sid="AC123",
            auth_token="secret",
            caller_id="+15550001111",
            status_callback_url="https://app.test/webhooks/telephony/call-status",
            timeout=5,
        )

    @patch("voicelink.utils.telephony.requests.post")
    def test_place_call_success(self, mock_post):
        mock_post.return_value = MagicMock(
            ok=True, status_code=201, json=MagicMock(return_value={"sid": "CA999"})
        )

        sid = self.client.place_call("user-1", BD_NUMBER)

        self.assertEqual(sid, "CA999")
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "https://provider.test/2010-04-01/Accounts/AC123/Calls.json")
        self.assertEqual(kwargs["auth"], ("AC123", "secret"))
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["data"]["To"], BD_NUMBER)
        self.assertEqual(
            kwargs["data"]["StatusCallback"],
            "https://app.test/webhooks/telephony/call-status",
        )

    @patch("voicelink.utils.telephony.requests.post")
    def test_place_call_rejected(self, mock_post):
        mock_post.return_value = MagicMock(
            ok=False,
            status_code=400,
            json=MagicMock(return_value={"code": 21211, "message": "Invalid 'To'"}),
        )

        with self.assertRaises(ProviderError) as ctx:
            self.client.place_call("user-1", BD_NUMBER)
        self.assertEqual(ctx.exception.detail["status"], 400)

    @patch("voicelink.utils.telephony.requests.post")
    def test_place_call_timeout(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("read timed out")

        with self.assertRaises(ProviderError) as ctx:
            self.client.place_call("user-1", BD_NUMBER)
        self.assertEqual(ctx.exception.detail["error"], "timeout")

    @patch("voicelink.utils.telephony.requests.post")
    def test_place_call_connection_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(ProviderError) as ctx:
            self.client.place_call("user-1", BD_NUMBER)
        self.assertEqual(ctx.exception.detail["error"], "request_error")

    @patch("voicelink.utils.telephony.requests.post")
    def test_place_call_without_sid(self, mock_post):
        mock_post.return_value = MagicMock(
            ok=True, status_code=201, json=MagicMock(return_value={})
        )

        with self.assertRaises(ProviderError):
            self.client.place_call("user-1", BD_NUMBER)

    def test_signature_round_trip(self):
        url = "https://app.test/webhooks/telephony/call-status"
        params = {"CallSid": ["CA1"], "CallStatus": ["completed"], "CallDuration": ["90"]}

        signature = compute_signature("secret", url, params)

        self.assertTrue(validate_signature("secret", url, params, signature))
        self.assertFalse(validate_signature("other", url, params, signature))
        self.assertFalse(validate_signature("secret", url, params, ""))


# ============================================================
# API Tests
# ============================================================


class SubscriberAPITest(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_create_subscriber(self):
        response = self.client.post(
            "/subscribers/",
            {"phone": "+8801700000001", "billing_identity": "user-1", "is_verified": True},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertIn("uuid", response.data)
        self.assertEqual(response.data["balance"], "0.00")

    def test_balance_is_read_only(self):
        response = self.client.post(
            "/subscribers/",
            {"phone": "+8801700000001", "balance": "500.00"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["balance"], "0.00")

    def test_retrieve_subscriber(self):
        subscriber = make_subscriber(balance="10.00")
        response = self.client.get(f"/subscribers/{subscriber.uuid}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["uuid"], str(subscriber.uuid))
        self.assertEqual(response.data["balance"], "10.00")

    def test_retrieve_nonexistent_subscriber(self):
        response = self.client.get(f"/subscribers/{uuid.uuid4()}/")
        self.assertEqual(response.status_code, 404)


class RechargeAPITest(TransactionTestCase):
    def setUp(self):
        self.client = APIClient()
        self.subscriber = make_subscriber()

    def test_recharge_success(self):
        response = self.client.post(
            f"/subscribers/{self.subscriber.uuid}/recharge",
            {"amount": "50.00", "payment_method": "bkash", "reference_id": "BK-1"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["subscriber"]["balance"], "50.00")
        self.assertEqual(response.data["transaction"]["amount"], "50.00")
        self.assertEqual(response.data["transaction"]["transaction_type"], "recharge")
        self.assertEqual(response.data["transaction"]["reference_id"], "BK-1")

    def test_recharge_with_idempotency_key(self):
        key = str(uuid.uuid4())
        url = f"/subscribers/{self.subscriber.uuid}/recharge"
        body = {"amount": "50.00", "payment_method": "card"}

        response1 = self.client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY=key)
        response2 = self.client.post(url, body, format="json", HTTP_IDEMPOTENCY_KEY=key)

        self.assertEqual(response1.status_code, 200)
        self.assertEqual(response2.status_code, 200)
        self.assertEqual(
            response1.data["transaction"]["id"], response2.data["transaction"]["id"]
        )
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("50.00"))

    def test_recharge_invalid_idempotency_key(self):
        response = self.client.post(
            f"/subscribers/{self.subscriber.uuid}/recharge",
            {"amount": "50.00", "payment_method": "card"},
            format="json",
            HTTP_IDEMPOTENCY_KEY="not-a-uuid",
        )
        self.assertEqual(response.status_code, 400)

    def test_recharge_zero_amount(self):
        response = self.client.post(
            f"/subscribers/{self.subscriber.uuid}/recharge",
            {"amount": "0.00", "payment_method": "card"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_recharge_unknown_payment_method(self):
        response = self.client.post(
            f"/subscribers/{self.subscriber.uuid}/recharge",
            {"amount": "5.00", "payment_method": "cash"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_recharge_nonexistent_subscriber(self):
        response = self.client.post(
            f"/subscribers/{uuid.uuid4()}/recharge",
            {"amount": "5.00", "payment_method": "card"},
            format="json",
        )
        self.assertEqual(response.status_code, 404)


class CallAPITest(CacheResetMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        make_rate("+880", "0.35")
        self.subscriber = make_subscriber(balance="10.00")
        self.url = f"/subscribers/{self.subscriber.uuid}/calls/"
        self.telephony = FakeTelephonyClient(sid="CA-api-1")
        patcher = patch(
            "voicelink.views.call.get_telephony_client", return_value=self.telephony
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_place_pstn_call(self):
        response = self.client.post(
            self.url, {"to": BD_NUMBER, "kind": "pstn", "contact_name": "Amma"}, format="json"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["estimated_cost"], "0.35")
        self.assertEqual(response.data["call"]["status"], "initiated")
        self.assertEqual(response.data["call"]["provider_call_sid"], "CA-api-1")
        self.assertFalse(response.data["default_rate_applied"])

    def test_place_call_insufficient_balance(self):
        poor = make_subscriber(phone="+8801899999999", balance="0.10")
        response = self.client.post(
            f"/subscribers/{poor.uuid}/calls/", {"to": BD_NUMBER, "kind": "pstn"}, format="json"
        )
        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.data["required"], "0.35")
        self.assertEqual(CallRecord.objects.filter(subscriber=poor).count(), 0)
        self.assertEqual(self.telephony.calls, [])

    def test_place_call_invalid_destination(self):
        response = self.client.post(
            self.url, {"to": "01712345678", "kind": "pstn"}, format="json"
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(CallRecord.objects.count(), 0)

    def test_place_call_invalid_kind(self):
        response = self.client.post(self.url, {"to": BD_NUMBER, "kind": "fax"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_place_call_provider_failure(self):
        self.telephony.error = ProviderError("rejected", {"error": "rejected"})
        response = self.client.post(self.url, {"to": BD_NUMBER, "kind": "pstn"}, format="json")
        self.assertEqual(response.status_code, 502)
        self.assertEqual(
            CallRecord.objects.get(subscriber=self.subscriber).status,
            CallRecord.Status.FAILED,
        )

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_place_call_rate_unavailable(self):
        response = self.client.post(
            self.url, {"to": "+14155550100", "kind": "pstn"}, format="json"
        )
        self.assertEqual(response.status_code, 400)

    def test_place_call_nonexistent_subscriber(self):
        response = self.client.post(
            f"/subscribers/{uuid.uuid4()}/calls/", {"to": BD_NUMBER, "kind": "pstn"}, format="json"
        )
        self.assertEqual(response.status_code, 404)

    def test_place_video_call(self):
        response = self.client.post(
            self.url, {"to": "friend-identity", "kind": "video"}, format="json"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["estimated_cost"], "0.00")
        self.assertIsNone(response.data["call"]["provider_call_sid"])

    def test_call_history(self):
        for _ in range(3):
            self.client.post(self.url, {"to": "friend", "kind": "voice"}, format="json")

        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 3)

        response = self.client.get(self.url, {"limit": 2})
        self.assertEqual(len(response.data), 2)

    def test_call_history_nonexistent_subscriber(self):
        response = self.client.get(f"/subscribers/{uuid.uuid4()}/calls/")
        self.assertEqual(response.status_code, 404)


class TransactionAPITest(TransactionTestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        make_rate("+880", "0.35")
        self.subscriber = make_subscriber(balance="10.00")
        LedgerService.recharge(self.subscriber.uuid, "5.00", "nagad")
        CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=BD_NUMBER,
            kind=CallKind.PSTN,
            provider_call_sid="CA-tx-1",
        )
        SettlementService().settle("CA-tx-1", "completed", 90)

    def test_list_transactions(self):
        response = self.client.get(f"/subscribers/{self.subscriber.uuid}/transactions/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 3)  # 2 recharges + 1 call deduction

    def test_filter_by_type(self):
        response = self.client.get(
            f"/subscribers/{self.subscriber.uuid}/transactions/?type=call_deduction"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["amount"], "-0.53")

    def test_transaction_detail(self):
        tx = Transaction.objects.filter(subscriber=self.subscriber).first()
        response = self.client.get(
            f"/subscribers/{self.subscriber.uuid}/transactions/{tx.id}/"
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["id"], tx.id)

    def test_transaction_of_other_subscriber_is_hidden(self):
        other = make_subscriber(phone="+8801899999999", balance="1.00")
        tx = Transaction.objects.filter(subscriber=other).first()
        response = self.client.get(
            f"/subscribers/{self.subscriber.uuid}/transactions/{tx.id}/"
        )
        self.assertEqual(response.status_code, 404)


class RateAPITest(CacheResetMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()
        make_rate("+880", "0.35")
        make_rate("+8801", "0.40")

    def test_list_rates(self):
        response = self.client.get("/rates/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["prefix"] for r in response.data], ["+880", "+8801"])

    def test_calculate_rate(self):
        response = self.client.get("/rates/calculate", {"number": BD_NUMBER})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["rate_per_minute"], "0.4000")
        self.assertFalse(response.data["is_default"])

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=Decimal("0.35"))
    def test_calculate_rate_default(self):
        response = self.client.get("/rates/calculate", {"number": "+14155550100"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["is_default"])

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_calculate_rate_unavailable(self):
        response = self.client.get("/rates/calculate", {"number": "+14155550100"})
        self.assertEqual(response.status_code, 404)

    def test_calculate_rate_requires_number(self):
        response = self.client.get("/rates/calculate")
        self.assertEqual(response.status_code, 400)


class CallStatusWebhookTest(CacheResetMixin, TransactionTestCase):
    url = "/webhooks/telephony/call-status"

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        make_rate("+880", "0.35")
        self.subscriber = make_subscriber(balance="10.00")
        self.call = CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=BD_NUMBER,
            kind=CallKind.PSTN,
            provider_call_sid="CA-hook-1",
        )

    def test_completed_event_settles_call(self):
        response = self.client.post(
            self.url, {"CallSid": "CA-hook-1", "CallStatus": "completed", "CallDuration": "90"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["queued"])

        self.call.refresh_from_db()
        self.assertEqual(self.call.status, CallRecord.Status.COMPLETED)
        self.assertEqual(self.call.cost, Decimal("0.53"))
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("9.47"))

    def test_duplicate_events_charge_once(self):
        body = {"CallSid": "CA-hook-1", "CallStatus": "completed", "CallDuration": "90"}
        self.client.post(self.url, body)
        response = self.client.post(self.url, body)

        self.assertEqual(response.status_code, 200)
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("9.47"))

    def test_progress_event_is_ignored(self):
        response = self.client.post(self.url, {"CallSid": "CA-hook-1", "CallStatus": "ringing"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["queued"])
        self.call.refresh_from_db()
        self.assertEqual(self.call.status, CallRecord.Status.INITIATED)

    def test_unknown_call_is_acknowledged(self):
        response = self.client.post(
            self.url, {"CallSid": "CA-nope", "CallStatus": "completed", "CallDuration": "10"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(CallRecord.objects.count(), 1)

    def test_malformed_event(self):
        response = self.client.post(self.url, {"CallStatus": "completed"})
        self.assertEqual(response.status_code, 400)

    @override_settings(TELEPHONY_VALIDATE_WEBHOOKS=True, TELEPHONY_AUTH_TOKEN="hook-secret")
    def test_signed_event_is_accepted(self):
        body = {"CallSid": "CA-hook-1", "CallStatus": "completed", "CallDuration": "60"}
        signature = compute_signature(
            "hook-secret",
            f"http://testserver{self.url}",
            {key: [value] for key, value in body.items()},
        )

        response = self.client.post(self.url, body, HTTP_X_TWILIO_SIGNATURE=signature)

        self.assertEqual(response.status_code, 200)
        self.call.refresh_from_db()
        self.assertEqual(self.call.cost, Decimal("0.35"))

    @override_settings(TELEPHONY_VALIDATE_WEBHOOKS=True, TELEPHONY_AUTH_TOKEN="hook-secret")
    def test_bad_signature_is_rejected(self):
        response = self.client.post(
            self.url,
            {"CallSid": "CA-hook-1", "CallStatus": "completed", "CallDuration": "60"},
            HTTP_X_TWILIO_SIGNATURE="forged",
        )
        self.assertEqual(response.status_code, 403)
        self.call.refresh_from_db()
        self.assertEqual(self.call.status, CallRecord.Status.INITIATED)


# ============================================================
# Celery Task Tests
# ============================================================


class CeleryTaskTest(CacheResetMixin, TransactionTestCase):
    def setUp(self):
        super().setUp()
        make_rate("+880", "0.35")
        self.subscriber = make_subscriber(balance="10.00")

    def test_settle_call_task(self):
        CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number=BD_NUMBER,
            kind=CallKind.PSTN,
            provider_call_sid="CA-task-1",
        )

        from voicelink.tasks import settle_call

        result = settle_call.apply(args=["CA-task-1", "completed", 90]).get()

        self.assertEqual(result["status"], CallRecord.Status.COMPLETED)
        self.assertEqual(result["cost"], "0.53")
        self.assertFalse(result["duplicate"])

        again = settle_call.apply(args=["CA-task-1", "completed", 90]).get()
        self.assertTrue(again["duplicate"])

    def test_settle_call_task_unknown_sid(self):
        from voicelink.tasks import settle_call

        result = settle_call.apply(args=["CA-missing", "completed", 90]).get()

        self.assertEqual(result["status"], "NOT_FOUND")

    @override_settings(CALL_DEFAULT_RATE_PER_MINUTE=None)
    def test_settle_call_task_rate_unavailable(self):
        CallRecord.objects.create(
            subscriber=self.subscriber,
            destination_number="+14155550100",
            kind=CallKind.PSTN,
            provider_call_sid="CA-task-us",
        )
        from voicelink.tasks import settle_call

        result = settle_call.apply(args=["CA-task-us", "completed", 90]).get()

        self.assertEqual(result["status"], "RATE_UNAVAILABLE")

    def test_expire_stale_calls_task(self):
        call = CallRecord.objects.create(
            subscriber=self.subscriber, destination_number=BD_NUMBER, kind=CallKind.PSTN
        )
        CallRecord.objects.filter(pk=call.pk).update(
            created_at=timezone.now() - timedelta(days=1)
        )

        from voicelink.tasks import expire_stale_calls

        result = expire_stale_calls.apply()
        self.assertEqual(result.get()["expired"], 1)
        self.assertEqual(result.get()["unsettled"], [])

    def test_completion_before_sid_is_saved_is_reported_by_sweep(self):
        from voicelink.tasks import expire_stale_calls, settle_call

        outcomes = []

        class EarlyCallbackTelephonyClient(FakeTelephonyClient):
            def place_call(self, billing_identity, destination_number):
                # The provider reports completion before the sid is stored.
                outcomes.append(settle_call.apply(args=[self.sid, "completed", 90]).get())
                return self.sid

        CallAdmissionService(EarlyCallbackTelephonyClient(sid="CA-early")).place_call(
            self.subscriber.uuid, BD_NUMBER, CallKind.PSTN
        )

        self.assertEqual(outcomes[0]["status"], "NOT_FOUND")
        call = CallRecord.objects.get(provider_call_sid="CA-early")
        self.assertEqual(call.status, CallRecord.Status.INITIATED)
        CallRecord.objects.filter(pk=call.pk).update(
            created_at=timezone.now() - timedelta(days=1)
        )

        result = expire_stale_calls.apply().get()

        self.assertEqual(result["expired"], 0)
        self.assertEqual(result["unsettled"], ["CA-early"])
        self.subscriber.refresh_from_db()
        self.assertEqual(self.subscriber.balance, Decimal("10.00"))

    def test_audit_ledger_balances_task(self):
        drifted = make_subscriber(phone="+8801833333333", balance="3.00")
        Subscriber.objects.filter(pk=drifted.pk).update(balance=Decimal("4.00"))

        from voicelink.tasks import audit_ledger_balances

        result = audit_ledger_balances.apply()
        self.assertEqual(result.get()["mismatched"], [str(drifted.uuid)])


# ============================================================
# Management Command Tests
# ============================================================


class SeedCallRatesCommandTest(CacheResetMixin, TestCase):
    def test_seeds_default_rates_once(self):
        out = StringIO()
        call_command("seed_call_rates", stdout=out)

        self.assertEqual(
            sorted(CallRate.objects.values_list("prefix", flat=True)), ["+880", "+8801"]
        )
        self.assertEqual(RateTable().lookup(BD_NUMBER).prefix, "+8801")

        call_command("seed_call_rates", stdout=out)
        self.assertEqual(CallRate.objects.count(), 2)

    def test_force_adds_missing_prefixes(self):
        make_rate("+44", "0.10", description="United Kingdom")

        call_command("seed_call_rates", stdout=StringIO())
        self.assertEqual(CallRate.objects.count(), 1)

        call_command("seed_call_rates", "--force", stdout=StringIO())
        self.assertEqual(CallRate.objects.count(), 3)
