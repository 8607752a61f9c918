"""
Tests for heypay_routing.breaker.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from heypay_routing.breaker import CheckoutCircuitBreaker, count_consecutive_failures
from heypay_routing.exceptions import CircuitBreakerTrippedError
from heypay_routing.models import AttemptStatus

from conftest import NOON_UTC, make_attempt

CHECKOUT_ID = "chk_breaker"


async def record_history(ledger, *statuses: AttemptStatus) -> None:
    """Record attempts oldest first, one second apart."""
    for i, status in enumerate(statuses):
        await ledger.record_attempt(make_attempt(
            "p1",
            100,
            status=status,
            checkout_id=CHECKOUT_ID,
            created_at=NOON_UTC + timedelta(seconds=i),
        ))


class TestCountConsecutiveFailures:
    """Tests for count_consecutive_failures."""

    def test_stops_at_success(self):
        """Failures before the latest success are forgotten."""
        history = [
            make_attempt("p1", 1, AttemptStatus.FAILED),
            make_attempt("p1", 1, AttemptStatus.SUCCESS),
            make_attempt("p1", 1, AttemptStatus.FAILED),
        ]
        assert count_consecutive_failures(history) == 1

    def test_skips_non_final_statuses(self):
        """Pending and cancelled attempts neither count nor reset."""
        history = [
            make_attempt("p1", 1, AttemptStatus.FAILED),
            make_attempt("p1", 1, AttemptStatus.CANCELLED),
            make_attempt("p1", 1, AttemptStatus.PENDING),
            make_attempt("p1", 1, AttemptStatus.FAILED),
        ]
        assert count_consecutive_failures(history) == 2


class TestCheckoutCircuitBreaker:
    """Tests for CheckoutCircuitBreaker."""

    @pytest.mark.asyncio
    async def test_two_failures_trip(self, ledger):
        """[FAILED, FAILED] blocks a new cascade."""
        await record_history(ledger, AttemptStatus.FAILED, AttemptStatus.FAILED)
        breaker = CheckoutCircuitBreaker(ledger)

        with pytest.raises(CircuitBreakerTrippedError) as exc_info:
            await breaker.check(CHECKOUT_ID)
        assert exc_info.value.consecutive_failures == 2
        assert exc_info.value.error_code == "CIRCUIT_BREAKER_TRIPPED"

    @pytest.mark.asyncio
    async def test_in_flight_latest_does_not_trip(self, ledger):
        """Newest PENDING over older failures lets the cascade proceed."""
        await record_history(
            ledger, AttemptStatus.FAILED, AttemptStatus.FAILED, AttemptStatus.PENDING,
        )
        breaker = CheckoutCircuitBreaker(ledger)

        state = await breaker.state(CHECKOUT_ID)
        assert state.latest_in_flight is True
        assert state.consecutive_failures == 2
        assert state.tripped is False
        await breaker.check(CHECKOUT_ID)

    @pytest.mark.asyncio
    async def test_processing_counts_as_in_flight(self, ledger):
        """PROCESSING is treated like PENDING."""
        await record_history(
            ledger, AttemptStatus.FAILED, AttemptStatus.FAILED, AttemptStatus.PROCESSING,
        )
        await CheckoutCircuitBreaker(ledger).check(CHECKOUT_ID)

    @pytest.mark.asyncio
    async def test_single_failure_passes(self, ledger):
        """One failure is below the threshold."""
        await record_history(ledger, AttemptStatus.FAILED)
        await CheckoutCircuitBreaker(ledger).check(CHECKOUT_ID)

    @pytest.mark.asyncio
    async def test_success_resets(self, ledger):
        """A success after failures closes the breaker."""
        await record_history(
            ledger, AttemptStatus.FAILED, AttemptStatus.FAILED, AttemptStatus.SUCCESS,
        )
        await CheckoutCircuitBreaker(ledger).check(CHECKOUT_ID)

    @pytest.mark.asyncio
    async def test_history_limit(self, ledger):
        """Only the newest attempts are scanned."""
        await record_history(
            ledger, AttemptStatus.FAILED, AttemptStatus.CANCELLED, AttemptStatus.FAILED,
        )
        breaker = CheckoutCircuitBreaker(ledger, history_limit=2)

        state = await breaker.state(CHECKOUT_ID)
        assert state.consecutive_failures == 1
        assert state.tripped is False

    @pytest.mark.asyncio
    async def test_other_checkouts_ignored(self, ledger):
        """Failures on another checkout do not count."""
        await record_history(ledger, AttemptStatus.FAILED, AttemptStatus.FAILED)
        await CheckoutCircuitBreaker(ledger).check("chk_other")

    @pytest.mark.asyncio
    async def test_custom_threshold(self, ledger):
        """The threshold is configurable."""
        await record_history(ledger, AttemptStatus.FAILED, AttemptStatus.FAILED)
        await CheckoutCircuitBreaker(ledger, max_consecutive_failures=3).check(CHECKOUT_ID)
