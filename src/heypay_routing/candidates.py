"""Eligible providers for one amount: routable, under caps, and healthy."""
from __future__ import annotations

import asyncio
import logging
from typing import Collection, List, Optional

from heypay_routing.fx import FXNormalizer
from heypay_routing.health import HealthCache
from heypay_routing.models import ScoredCandidate
from heypay_routing.stores import ProviderRegistry
from heypay_routing.usage import UsageAccessor

logger = logging.getLogger(__name__)


class CandidateFilter:
    """
    Builds the candidate set for a merchant.

    Cap checks run before health checks so a provider that is already
    full never costs a status call.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        usage: UsageAccessor,
        health: HealthCache,
        fx: FXNormalizer,
    ):
        self._registry = registry
        self._usage = usage
        self._health = health
        self._fx = fx

    async def candidates(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        excluded_provider_ids: Collection[str] = (),
        reference_amount: Optional[int] = None,
    ) -> List[ScoredCandidate]:
        """
        Return candidates in registry link order, each carrying its usage.

        Args:
            merchant_id: Merchant whose linked providers are considered
            amount: Attempt amount in minor units of `currency`
            currency: ISO 4217 code
            excluded_provider_ids: Providers already tried in this cascade
            reference_amount: Pre-converted amount, skips the FX lookup
        """
        excluded = set(excluded_provider_ids)
        providers = [
            p for p in await self._registry.list_linked_providers(merchant_id)
            if p.provider_id not in excluded and p.is_routable
        ]
        if not providers:
            return []

        if reference_amount is None:
            reference_amount = await self._fx.to_reference_currency(amount, currency)
        if reference_amount != amount or currency.upper() != self._fx.reference_currency:
            logger.info(
                f"Amount {amount} {currency} -> {reference_amount} "
                f"{self._fx.reference_currency} for capacity comparison"
            )

        under_cap: List[ScoredCandidate] = []
        for provider in providers:
            day_usage, month_usage = await asyncio.gather(
                self._usage.business_day_usage(provider.provider_id),
                self._usage.month_usage(provider.provider_id),
            )

            if provider.daily_cap is not None and day_usage + reference_amount > provider.daily_cap:
                logger.info(
                    f"{provider.name} excluded: business day usage {day_usage} + "
                    f"{reference_amount} > daily cap {provider.daily_cap}"
                )
                continue
            if provider.monthly_cap is not None and month_usage + reference_amount > provider.monthly_cap:
                logger.info(
                    f"{provider.name} excluded: month usage {month_usage} + "
                    f"{reference_amount} > monthly cap {provider.monthly_cap}"
                )
                continue

            under_cap.append(ScoredCandidate(
                provider=provider,
                business_day_usage=day_usage,
                month_usage=month_usage,
            ))

        eligible: List[ScoredCandidate] = []
        for candidate in under_cap:
            if await self._health.is_accepting_charges(candidate.provider):
                eligible.append(candidate)
            else:
                logger.info(f"{candidate.provider.name} excluded: not accepting charges")

        return eligible
