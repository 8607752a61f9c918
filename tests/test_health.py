"""
Tests for heypay_routing.health.
"""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from heypay_routing.exceptions import ProviderCallFailed
from heypay_routing.health import HealthCache
from heypay_routing.models import AccountStatus, ProviderType

from conftest import MERCHANT_ID, make_provider


@pytest.fixture
def provider(registry):
    provider = make_provider("p1")
    registry.add_provider(provider, MERCHANT_ID)
    return provider


class TestHealthCache:
    """Tests for HealthCache."""

    @pytest.mark.asyncio
    async def test_fresh_status_is_not_refetched(self, registry, connector, clock, provider):
        """Within the TTL the cached value is returned without a call."""
        health = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)

        assert await health.is_accepting_charges(provider) is True
        clock.advance(minutes=14)
        assert await health.is_accepting_charges(provider) is True

        assert connector.status_calls == ["p1"]

    @pytest.mark.asyncio
    async def test_stale_status_is_refetched(self, registry, connector, clock, provider):
        """After 15 minutes the provider is asked again."""
        health = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)

        assert await health.is_accepting_charges(provider) is True
        connector.unhealthy.add("p1")
        clock.advance(minutes=15)

        assert await health.is_accepting_charges(provider) is False
        assert connector.status_calls == ["p1", "p1"]

    @pytest.mark.asyncio
    async def test_result_written_to_registry(self, registry, connector, clock, provider):
        """Health fields persist on the provider record."""
        health = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)
        await health.is_accepting_charges(provider)

        stored = await registry.get_provider("p1")
        assert stored.accepting_charges is True
        assert stored.payouts_enabled is True
        assert stored.health_checked_at == clock.now()

    @pytest.mark.asyncio
    async def test_shared_across_instances(self, registry, connector, clock, provider):
        """A second cache over the same registry reuses the stored result."""
        first = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)
        second = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)

        await first.is_accepting_charges(provider)
        reloaded = await registry.get_provider("p1")
        assert await second.is_accepting_charges(reloaded) is True
        assert connector.status_calls == ["p1"]

    @pytest.mark.asyncio
    async def test_error_fails_closed_and_is_cached(self, registry, clock, provider):
        """A failing status check counts as not accepting until the TTL lapses."""
        connector = AsyncMock()
        connector.check_account_status.side_effect = ProviderCallFailed("p1", "timeout")
        health = HealthCache(registry, {ProviderType.STRIPE: connector}, clock=clock)

        assert await health.is_accepting_charges(provider) is False
        clock.advance(minutes=5)
        assert await health.is_accepting_charges(provider) is False
        assert connector.check_account_status.await_count == 1

        connector.check_account_status.side_effect = None
        connector.check_account_status.return_value = AccountStatus(accepting_charges=True)
        clock.advance(timedelta(minutes=10))
        assert await health.is_accepting_charges(provider) is True

    @pytest.mark.asyncio
    async def test_missing_connector_fails_closed(self, registry, clock, provider):
        """No connector for the provider type means unavailable."""
        health = HealthCache(registry, {}, clock=clock)
        assert await health.is_accepting_charges(provider) is False

    def test_is_fresh(self, registry, clock, provider):
        """A provider never checked is stale."""
        health = HealthCache(registry, {}, clock=clock, ttl_seconds=60)
        assert health.is_fresh(provider) is False
        provider.health_checked_at = clock.now() - timedelta(seconds=59)
        assert health.is_fresh(provider) is True
