"""
Checkout-scoped circuit breaker.

Unlike a service breaker, this one keeps no state of its own: it is
derived from the checkout's newest attempts in the ledger, so every
engine instance reaches the same verdict.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from heypay_routing.exceptions import CircuitBreakerTrippedError
from heypay_routing.models import Attempt, AttemptFilter, AttemptStatus
from heypay_routing.stores import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONSECUTIVE_FAILURES = 2
DEFAULT_HISTORY_LIMIT = 10


@dataclass
class BreakerState:
    """Verdict for one checkout."""
    checkout_id: str
    consecutive_failures: int
    latest_in_flight: bool
    tripped: bool


def count_consecutive_failures(newest_first: List[Attempt]) -> int:
    """
    FAILED attempts since the last SUCCESS.

    In-flight and other non-final statuses are skipped, not counted.
    """
    failures = 0
    for attempt in newest_first:
        if attempt.status == AttemptStatus.SUCCESS:
            break
        if attempt.status == AttemptStatus.FAILED:
            failures += 1
    return failures


class CheckoutCircuitBreaker:
    """Refuses new cascades for a checkout after repeated failures."""

    def __init__(
        self,
        ledger: LedgerStore,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self._ledger = ledger
        self._threshold = max_consecutive_failures
        self._history_limit = history_limit

    async def state(self, checkout_id: str) -> BreakerState:
        history = await self._ledger.list_attempts(AttemptFilter(
            checkout_id=checkout_id,
            newest_first=True,
            limit=self._history_limit,
        ))
        failures = count_consecutive_failures(history)
        # A still-running latest attempt might succeed, so never trip on it.
        latest_in_flight = bool(history) and history[0].status.in_flight
        return BreakerState(
            checkout_id=checkout_id,
            consecutive_failures=failures,
            latest_in_flight=latest_in_flight,
            tripped=not latest_in_flight and failures >= self._threshold,
        )

    async def check(self, checkout_id: str) -> None:
        """
        Raises:
            CircuitBreakerTrippedError: If the checkout has reached the
                consecutive failure threshold
        """
        state = await self.state(checkout_id)
        if state.tripped:
            logger.warning(
                f"Circuit breaker tripped for checkout {checkout_id}: "
                f"{state.consecutive_failures} consecutive failures"
            )
            raise CircuitBreakerTrippedError(checkout_id, state.consecutive_failures)
