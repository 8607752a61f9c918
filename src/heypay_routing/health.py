"""Read-through cache of provider "can accept charges" status."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Mapping, Optional

from heypay_routing.clock import Clock, SystemClock
from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.models import ProviderAccount, ProviderType
from heypay_routing.stores import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_TTL_SECONDS = 15 * 60


class HealthCache:
    """
    Caches each provider's live account status for a short TTL.

    The cached value lives on the provider record itself (written back
    through the registry), so any engine instance sharing the registry
    sees the same TTL. Checks fail closed: an error is cached as "not
    accepting" so a broken provider is checked at most once per TTL.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        connectors: Mapping[ProviderType, ProviderConnector],
        clock: Optional[Clock] = None,
        ttl_seconds: int = DEFAULT_HEALTH_TTL_SECONDS,
    ):
        self._registry = registry
        self._connectors = connectors
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)

    def is_fresh(self, provider: ProviderAccount) -> bool:
        if provider.health_checked_at is None:
            return False
        return self._clock.now() - provider.health_checked_at < self._ttl

    async def is_accepting_charges(self, provider: ProviderAccount) -> bool:
        """Return the cached status, refreshing it from the provider when stale."""
        if self.is_fresh(provider):
            logger.debug(
                f"Using cached status for {provider.name}: "
                f"accepting_charges={provider.accepting_charges}"
            )
            return provider.accepting_charges

        now = self._clock.now()
        connector = self._connectors.get(provider.provider_type)
        accepting = False
        payouts = False

        if connector is None:
            logger.warning(
                f"No connector registered for {provider.provider_type.value}; "
                f"treating {provider.name} as unavailable"
            )
        else:
            try:
                status = await connector.check_account_status(provider)
                accepting = status.accepting_charges
                payouts = status.payouts_enabled
                logger.info(
                    f"Account status for {provider.name}: "
                    f"accepting_charges={accepting}, payouts_enabled={payouts}"
                )
            except Exception as e:
                logger.warning(f"Account status check failed for {provider.name}: {e}")

        await self._registry.update_health(
            provider.provider_id,
            accepting_charges=accepting,
            payouts_enabled=payouts,
            checked_at=now,
        )
        provider.accepting_charges = accepting
        provider.payouts_enabled = payouts
        provider.health_checked_at = now
        return accepting
