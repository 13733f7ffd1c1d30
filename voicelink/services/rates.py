import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction
from django.db.models import Count, Max, Q
from django.utils import timezone

from voicelink.exceptions import RateUnavailable
from voicelink.models import CallRate

logger = logging.getLogger(__name__)

RATE_CACHE_KEY = "voicelink:active-call-rates"

DEFAULT_RATE_DESCRIPTION = "Default rate"


def invalidate_rate_cache():
    """Drop the cached rate index now and again once the writer commits."""
    cache.delete(RATE_CACHE_KEY)
    transaction.on_commit(lambda: cache.delete(RATE_CACHE_KEY))


def rate_table_version():
    """
    Stamp of the rate table as stored in the database.

    Any insert, save or ``deactivate`` moves the latest ``updated_at``, and a
    delete changes the row counts, so a cached index built under another
    stamp is out of date even when the write happened in another process.
    """
    stamp = CallRate.objects.aggregate(
        latest=Max("updated_at"),
        active=Count("id", filter=Q(is_active=True)),
        total=Count("id"),
    )
    return (stamp["latest"], stamp["active"], stamp["total"])


@dataclass(frozen=True)
class RateQuote:
    destination_number: str
    rate_per_minute: Decimal
    description: str
    rate: Optional[CallRate]
    is_default: bool


class RateTable:
    """
    Longest-prefix lookup over the active call rates.

    Active rates are loaded once into a prefix -> CallRate index held in the
    Django cache together with the rate_table_version() it was built from.
    Every lookup checks that stamp, so workers whose local cache missed a
    write made elsewhere rebuild instead of pricing with retired rates.
    Saves and deletes in this process also clear the entry (see signals). When
    several active rates share one prefix the lowest primary key wins, so the
    first registered rate for a prefix stays authoritative.
    """

    def __init__(self, default_rate=None):
        if default_rate is None:
            default_rate = getattr(settings, "CALL_DEFAULT_RATE_PER_MINUTE", None)
        self.default_rate = Decimal(default_rate) if default_rate is not None else None

    def _index(self):
        version = rate_table_version()
        cached = cache.get(RATE_CACHE_KEY)
        if cached is not None and cached[0] == version:
            return cached[1]

        index = {}
        for rate in CallRate.objects.filter(is_active=True).order_by("id"):
            index.setdefault(rate.prefix, rate)
        cache.set(
            RATE_CACHE_KEY,
            (version, index),
            timeout=getattr(settings, "CALL_RATE_CACHE_TIMEOUT", 300),
        )
        logger.debug(
            "Rate index rebuilt: prefixes=%d stale=%s", len(index), cached is not None
        )
        return index

    def lookup(self, destination_number: str) -> Optional[CallRate]:
        """Return the active rate with the longest prefix of the number, if any."""
        if not destination_number:
            return None
        index = self._index()
        for end in range(len(destination_number), 0, -1):
            rate = index.get(destination_number[:end])
            if rate is not None:
                return rate
        return None

    def quote(self, destination_number: str) -> RateQuote:
        """
        Price a destination, falling back to the configured default rate.

        Raises:
            RateUnavailable: If nothing matches and no default rate is configured.
        """
        rate = self.lookup(destination_number)
        if rate is not None:
            return RateQuote(
                destination_number=destination_number,
                rate_per_minute=rate.rate_per_minute,
                description=rate.description,
                rate=rate,
                is_default=False,
            )
        if self.default_rate is None:
            raise RateUnavailable(destination_number)
        logger.info(
            "No rate for destination, using default: to=%s rate=%s",
            destination_number,
            self.default_rate,
        )
        return RateQuote(
            destination_number=destination_number,
            rate_per_minute=self.default_rate,
            description=DEFAULT_RATE_DESCRIPTION,
            rate=None,
            is_default=True,
        )

    def active_rates(self):
        return list(CallRate.objects.filter(is_active=True).order_by("prefix", "id"))

    def register(
        self,
        prefix: str,
        rate_per_minute,
        description: str,
        country_code: str = "",
        is_active: bool = True,
    ) -> CallRate:
        """
        Add a rate. Calls already settled keep the cost they were charged.

        Raises:
            ValueError: If the prefix is empty or the rate is not positive.
        """
        prefix = (prefix or "").strip()
        if not prefix:
            raise ValueError("Rate prefix must not be empty.")
        rate_per_minute = Decimal(rate_per_minute)
        if rate_per_minute <= 0:
            raise ValueError("Rate per minute must be positive.")

        rate = CallRate.objects.create(
            country_code=country_code,
            prefix=prefix,
            description=description,
            rate_per_minute=rate_per_minute,
            is_active=is_active,
        )
        logger.info(
            "Call rate registered: id=%d prefix=%s rate=%s active=%s",
            rate.id,
            prefix,
            rate_per_minute,
            is_active,
        )
        return rate

    def deactivate(self, prefix: str) -> int:
        # update() skips post_save and auto_now, so both are done by hand
        count = CallRate.objects.filter(prefix=prefix, is_active=True).update(
            is_active=False, updated_at=timezone.now()
        )
        invalidate_rate_cache()
        logger.info("Call rates deactivated: prefix=%s count=%d", prefix, count)
        return count
