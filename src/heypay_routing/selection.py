"""
Provider selection strategy.

- Fallback retries walk the merchant's fallback-priority sequence first.
- AUTOMATIC mode picks the candidate with the least business-day usage.
- MANUAL mode scores each candidate by headroom x weight and picks at
  random in proportion to the score. With a checkout ID the pick is
  seeded from a hash of the ID, so polling the same checkout reproduces
  the same provider without persisting anything.
"""
from __future__ import annotations

import hashlib
import logging
import random
from typing import Collection, List, Optional, Sequence, Tuple

from heypay_routing.candidates import CandidateFilter
from heypay_routing.models import (
    ProviderAccount,
    RoutingMode,
    RoutingPolicy,
    ScoredCandidate,
)
from heypay_routing.policies import PolicyManager

logger = logging.getLogger(__name__)

_SEED_SPACE = 2 ** 64


def checkout_seed(checkout_id: str) -> float:
    """Map a checkout ID to a stable point in [0, 1)."""
    digest = hashlib.sha256(checkout_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _SEED_SPACE


def weighted_pick(
    items: Sequence[Tuple[ScoredCandidate, float]],
    checkout_id: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> Optional[ScoredCandidate]:
    """
    Pick one item in proportion to its weight.

    Zero and negative weights are never picked unless every weight is
    zero, in which case the first item is returned.
    """
    if not items:
        return None
    valid = [(item, weight) for item, weight in items if weight > 0]
    if not valid:
        return items[0][0]

    total = sum(weight for _, weight in valid)
    if checkout_id:
        point = checkout_seed(checkout_id) * total
    else:
        point = (rng or random).random() * total

    cumulative = 0.0
    for item, weight in valid:
        cumulative += weight
        if point < cumulative:
            return item
    return valid[-1][0]


def least_loaded(candidates: Sequence[ScoredCandidate]) -> ScoredCandidate:
    """Lowest business-day usage; ties go to the lowest provider ID."""
    return min(candidates, key=lambda c: (c.business_day_usage, c.provider_id))


class SelectionStrategy:
    """Chooses the next provider for a merchant."""

    def __init__(
        self,
        candidate_filter: CandidateFilter,
        policies: PolicyManager,
        rng: Optional[random.Random] = None,
    ):
        self._candidates = candidate_filter
        self._policies = policies
        self._rng = rng

    async def select_next(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        excluded: Collection[str] = (),
        checkout_id: Optional[str] = None,
        reference_amount: Optional[int] = None,
        policy: Optional[RoutingPolicy] = None,
    ) -> Optional[ProviderAccount]:
        """Return the chosen provider, or None when nothing is eligible."""
        candidate = await self.select_candidate(
            merchant_id,
            amount,
            currency,
            excluded=excluded,
            checkout_id=checkout_id,
            reference_amount=reference_amount,
            policy=policy,
        )
        return candidate.provider if candidate else None

    async def select_candidate(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        excluded: Collection[str] = (),
        checkout_id: Optional[str] = None,
        reference_amount: Optional[int] = None,
        policy: Optional[RoutingPolicy] = None,
        preferred_provider_id: Optional[str] = None,
    ) -> Optional[ScoredCandidate]:
        """
        Like select_next() but keeps the usage figures the choice was made on.

        `preferred_provider_id` (a checkout's sticky provider) wins whenever
        it is still among the candidates.
        """
        if policy is None:
            policy = await self._policies.get_or_default(merchant_id)
        candidates = await self._candidates.candidates(
            merchant_id,
            amount,
            currency,
            excluded_provider_ids=excluded,
            reference_amount=reference_amount,
        )
        if not candidates:
            logger.info(f"No candidates for merchant {merchant_id}")
            return None

        if preferred_provider_id is not None:
            for candidate in candidates:
                if candidate.provider_id == preferred_provider_id:
                    logger.info(f"Keeping assigned provider {candidate.provider.name}")
                    return candidate

        if excluded and policy.fallback_sequence:
            chosen = self._from_fallback_sequence(policy, candidates, excluded)
            if chosen is not None:
                logger.info(f"Fallback sequence selected {chosen.provider.name}")
                return chosen

        if policy.mode == RoutingMode.MANUAL:
            chosen = self._weighted(policy, candidates, checkout_id)
        else:
            chosen = least_loaded(candidates)
            logger.info(
                "Least-loaded selection: "
                + ", ".join(f"{c.provider.name}={c.business_day_usage}" for c in candidates)
                + f" -> {chosen.provider.name}"
            )
        return chosen

    @staticmethod
    def _from_fallback_sequence(
        policy: RoutingPolicy,
        candidates: List[ScoredCandidate],
        excluded: Collection[str],
    ) -> Optional[ScoredCandidate]:
        by_id = {c.provider_id: c for c in candidates}
        for provider_id in policy.fallback_sequence:
            if provider_id in excluded:
                continue
            if provider_id in by_id:
                return by_id[provider_id]
        return None

    def _weighted(
        self,
        policy: RoutingPolicy,
        candidates: List[ScoredCandidate],
        checkout_id: Optional[str],
    ) -> ScoredCandidate:
        scored = [
            (c, c.headroom_ratio() * policy.weight_for(c.provider_id))
            for c in candidates
        ]
        chosen = weighted_pick(scored, checkout_id=checkout_id, rng=self._rng)
        logger.info(
            "Weighted selection: "
            + ", ".join(f"{c.provider.name}={score:.4f}" for c, score in scored)
            + f" -> {chosen.provider.name}"
            + (" (seeded)" if checkout_id else "")
        )
        return chosen
