"""Provider usage over rolling windows, recomputed from the attempt ledger."""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from heypay_routing.business_day import (
    DEFAULT_START_HOUR,
    DEFAULT_TIMEZONE,
    business_day_start,
)
from heypay_routing.clock import Clock, SystemClock
from heypay_routing.models import AttemptFilter, AttemptStatus
from heypay_routing.stores import LedgerStore


class UsageAccessor:
    """
    Sums SUCCESS attempt amounts (reference currency, minor units) per provider.

    Nothing is cached: every call re-reads the ledger, since a stale figure
    is exactly what lets a cap be exceeded.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        clock: Optional[Clock] = None,
        timezone_name: str = DEFAULT_TIMEZONE,
        start_hour: int = DEFAULT_START_HOUR,
        month_window_days: int = 30,
    ):
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._timezone_name = timezone_name
        self._start_hour = start_hour
        self._month_window = timedelta(days=month_window_days)

    async def business_day_usage(self, provider_id: str) -> int:
        """Usage since the start of the current business day."""
        since = business_day_start(self._clock.now(), self._timezone_name, self._start_hour)
        return await self._sum_success(provider_id, since)

    async def month_usage(self, provider_id: str) -> int:
        """Usage over the rolling month window (30 days by default)."""
        since = self._clock.now() - self._month_window
        return await self._sum_success(provider_id, since)

    async def _sum_success(self, provider_id: str, since) -> int:
        return await self._ledger.sum_amounts(AttemptFilter(
            provider_id=provider_id,
            statuses=[AttemptStatus.SUCCESS],
            since=since,
        ))
