"""
Tests for heypay_routing.candidates.
"""
from __future__ import annotations

from datetime import timedelta

import pytest

from heypay_routing.candidates import CandidateFilter
from heypay_routing.health import HealthCache
from heypay_routing.models import ProviderType
from heypay_routing.usage import UsageAccessor

from conftest import MERCHANT_ID, NOON_UTC, make_attempt, make_provider


@pytest.fixture
def candidate_filter(registry, ledger, connector, clock, fx):
    usage = UsageAccessor(ledger, clock=clock)
    health = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)
    return CandidateFilter(registry, usage, health, fx)


def ids(candidates):
    return [c.provider_id for c in candidates]


class TestCandidateFilter:
    """Tests for CandidateFilter."""

    @pytest.mark.asyncio
    async def test_link_order_and_usage(self, candidate_filter, registry, ledger):
        """Candidates keep link order and carry the usage they were judged on."""
        registry.add_provider(make_provider("p2"), MERCHANT_ID)
        registry.add_provider(make_provider("p1"), MERCHANT_ID)
        await ledger.record_attempt(make_attempt("p1", 300))
        await ledger.record_attempt(make_attempt("p1", 200, created_at=NOON_UTC - timedelta(days=3)))

        candidates = await candidate_filter.candidates(MERCHANT_ID, 100, "EUR")

        assert ids(candidates) == ["p2", "p1"]
        p1 = candidates[1]
        assert p1.business_day_usage == 300
        assert p1.month_usage == 500

    @pytest.mark.asyncio
    async def test_unlinked_provider_excluded(self, candidate_filter, registry):
        """Only providers linked to the merchant are considered."""
        registry.add_provider(make_provider("p1"), MERCHANT_ID)
        registry.add_provider(make_provider("p2"), "other_merchant")

        assert ids(await candidate_filter.candidates(MERCHANT_ID, 100, "EUR")) == ["p1"]

    @pytest.mark.asyncio
    async def test_disabled_and_archived_excluded(self, candidate_filter, registry):
        """Disabled and archived providers are never candidates."""
        registry.add_provider(make_provider("p1", enabled=False), MERCHANT_ID)
        registry.add_provider(make_provider("p2"), MERCHANT_ID)
        registry.add_provider(make_provider("p3"), MERCHANT_ID)
        registry.archive("p2")

        assert ids(await candidate_filter.candidates(MERCHANT_ID, 100, "EUR")) == ["p3"]

    @pytest.mark.asyncio
    async def test_excluded_ids(self, candidate_filter, registry):
        """Providers already tried are skipped."""
        registry.add_provider(make_provider("p1"), MERCHANT_ID)
        registry.add_provider(make_provider("p2"), MERCHANT_ID)

        candidates = await candidate_filter.candidates(
            MERCHANT_ID, 100, "EUR", excluded_provider_ids=["p1"],
        )
        assert ids(candidates) == ["p2"]

    @pytest.mark.asyncio
    async def test_daily_cap(self, candidate_filter, registry, ledger):
        """Usage plus amount must not exceed the daily cap."""
        registry.add_provider(make_provider("p1", daily_cap=1000), MERCHANT_ID)
        await ledger.record_attempt(make_attempt("p1", 900))

        assert ids(await candidate_filter.candidates(MERCHANT_ID, 100, "EUR")) == ["p1"]
        assert ids(await candidate_filter.candidates(MERCHANT_ID, 101, "EUR")) == []

    @pytest.mark.asyncio
    async def test_monthly_cap(self, candidate_filter, registry, ledger):
        """Earlier days in the rolling month count toward the monthly cap."""
        registry.add_provider(make_provider("p1", daily_cap=1000, monthly_cap=2000), MERCHANT_ID)
        await ledger.record_attempt(make_attempt("p1", 1950, created_at=NOON_UTC - timedelta(days=10)))

        assert ids(await candidate_filter.candidates(MERCHANT_ID, 50, "EUR")) == ["p1"]
        assert ids(await candidate_filter.candidates(MERCHANT_ID, 51, "EUR")) == []

    @pytest.mark.asyncio
    async def test_cap_compared_in_reference_currency(self, candidate_filter, registry):
        """Foreign amounts are converted before the cap check."""
        registry.add_provider(make_provider("p1", daily_cap=100), MERCHANT_ID)

        # 125 USD cents == 100 EUR cents
        assert ids(await candidate_filter.candidates(MERCHANT_ID, 125, "USD")) == ["p1"]
        assert ids(await candidate_filter.candidates(MERCHANT_ID, 130, "USD")) == []

    @pytest.mark.asyncio
    async def test_unhealthy_provider_excluded(self, candidate_filter, registry, connector):
        """Providers not accepting charges are dropped."""
        registry.add_provider(make_provider("p1"), MERCHANT_ID)
        registry.add_provider(make_provider("p2"), MERCHANT_ID)
        connector.unhealthy.add("p1")

        assert ids(await candidate_filter.candidates(MERCHANT_ID, 100, "EUR")) == ["p2"]

    @pytest.mark.asyncio
    async def test_capped_provider_not_health_checked(self, candidate_filter, registry, ledger, connector):
        """A provider over its cap never costs a status call."""
        registry.add_provider(make_provider("p1", daily_cap=100), MERCHANT_ID)
        registry.add_provider(make_provider("p2"), MERCHANT_ID)
        await ledger.record_attempt(make_attempt("p1", 100))

        await candidate_filter.candidates(MERCHANT_ID, 1, "EUR")
        assert connector.status_calls == ["p2"]

    @pytest.mark.asyncio
    async def test_no_providers(self, candidate_filter):
        """A merchant with no providers has no candidates."""
        assert await candidate_filter.candidates(MERCHANT_ID, 100, "EUR") == []
