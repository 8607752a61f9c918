"""Routing policy lookup and validated updates."""
from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Union

from heypay_routing.clock import Clock, SystemClock
from heypay_routing.exceptions import InvalidRoutingPolicyError
from heypay_routing.models import (
    DEFAULT_MAX_RETRIES,
    FallbackStep,
    ProviderWeight,
    RoutingMode,
    RoutingPolicy,
)
from heypay_routing.stores import PolicyStore, ProviderRegistry

logger = logging.getLogger(__name__)

WeightsInput = Union[Mapping[str, float], Iterable[ProviderWeight]]


class PolicyManager:
    """Reads and writes per-merchant routing policies."""

    def __init__(
        self,
        store: PolicyStore,
        registry: Optional[ProviderRegistry] = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Optional[Clock] = None,
    ):
        self._store = store
        self._registry = registry
        self._default_max_retries = default_max_retries
        self._clock = clock or SystemClock()

    async def get_or_default(self, merchant_id: str) -> RoutingPolicy:
        """Stored policy, or automatic/fallback-enabled/2-retries when absent."""
        policy = await self._store.get_policy(merchant_id)
        if policy is not None:
            return policy
        return RoutingPolicy.default(merchant_id, max_retries=self._default_max_retries)

    async def update_policy(
        self,
        merchant_id: str,
        mode: RoutingMode,
        fallback_enabled: bool,
        max_retries: int,
        weights: Optional[WeightsInput] = None,
        fallback_sequence: Optional[Iterable[FallbackStep]] = None,
    ) -> RoutingPolicy:
        """
        Create or replace a merchant's policy.

        Weights and fallback sequence are replaced only when given; passing
        None keeps the stored values.

        Raises:
            InvalidRoutingPolicyError: On negative weights or retries,
                duplicate sequence orders, or providers not linked to
                the merchant
        """
        if max_retries < 0:
            raise InvalidRoutingPolicyError("max_retries must be >= 0", field="max_retries")

        current = await self._store.get_policy(merchant_id)
        policy = RoutingPolicy(
            merchant_id=merchant_id,
            mode=RoutingMode(mode),
            fallback_enabled=fallback_enabled,
            max_retries=max_retries,
            weights=dict(current.weights) if current else {},
            fallback_sequence=list(current.fallback_sequence) if current else [],
            updated_at=self._clock.now(),
        )

        referenced: set[str] = set()
        if weights is not None:
            policy.weights = self._normalize_weights(weights)
            referenced |= set(policy.weights)
        if fallback_sequence is not None:
            policy.fallback_sequence = self._normalize_sequence(fallback_sequence)
            referenced |= set(policy.fallback_sequence)

        await self._check_linked(merchant_id, referenced)
        await self._store.save_policy(policy)
        logger.info(
            f"Routing policy for {merchant_id} updated: mode={policy.mode.value}, "
            f"fallback_enabled={policy.fallback_enabled}, max_retries={policy.max_retries}, "
            f"weights={len(policy.weights)}, fallback_sequence={len(policy.fallback_sequence)}"
        )
        return policy

    @staticmethod
    def _normalize_weights(weights: WeightsInput) -> dict[str, float]:
        if isinstance(weights, Mapping):
            items = list(weights.items())
        else:
            items = [(w.provider_id, w.weight) for w in weights]

        result: dict[str, float] = {}
        for provider_id, weight in items:
            weight = float(weight)
            if weight < 0:
                raise InvalidRoutingPolicyError(
                    f"Weight for provider {provider_id} must be non-negative",
                    field="weights",
                )
            result[provider_id] = weight
        return result

    @staticmethod
    def _normalize_sequence(steps: Iterable[FallbackStep]) -> list[str]:
        steps = list(steps)
        orders = [s.order for s in steps]
        if len(set(orders)) != len(orders):
            raise InvalidRoutingPolicyError(
                "Fallback sequence orders must be unique", field="fallback_sequence"
            )
        provider_ids = [s.provider_id for s in sorted(steps, key=lambda s: s.order)]
        if len(set(provider_ids)) != len(provider_ids):
            raise InvalidRoutingPolicyError(
                "A provider may appear only once in the fallback sequence",
                field="fallback_sequence",
            )
        return provider_ids

    async def _check_linked(self, merchant_id: str, provider_ids: set[str]) -> None:
        if self._registry is None or not provider_ids:
            return
        linked = {p.provider_id for p in await self._registry.list_linked_providers(merchant_id)}
        unknown = sorted(provider_ids - linked)
        if unknown:
            raise InvalidRoutingPolicyError(
                f"Providers not linked to merchant {merchant_id}: {', '.join(unknown)}",
                field="providers",
            )
