"""
Storage interfaces the routing engine consumes.

Persistence of merchants, providers and checkouts belongs to the host
application. The engine only needs the narrow async interfaces below;
in-memory implementations are provided for development and testing.
"""
from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from heypay_routing.exceptions import AttemptNotFoundError, ProviderNotFoundError
from heypay_routing.models import (
    Attempt,
    AttemptFilter,
    Checkout,
    ProviderAccount,
    RoutingPolicy,
)


class LedgerStore(ABC):
    """Append-only attempt ledger."""

    @abstractmethod
    async def record_attempt(self, attempt: Attempt) -> str:
        """Append an attempt. Returns its attempt_id."""
        pass

    @abstractmethod
    async def update_attempt(self, attempt: Attempt) -> None:
        """Persist the final outcome of a previously recorded attempt."""
        pass

    @abstractmethod
    async def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        pass

    @abstractmethod
    async def list_attempts(self, query: AttemptFilter) -> List[Attempt]:
        """Return attempts matching the filter, oldest first unless asked otherwise."""
        pass

    async def sum_amounts(self, query: AttemptFilter) -> int:
        """Sum reference amounts of matching attempts."""
        return sum(a.usage_amount for a in await self.list_attempts(query))


class ProviderRegistry(ABC):
    """Provider accounts and their links to merchants."""

    @abstractmethod
    async def list_linked_providers(self, merchant_id: str) -> List[ProviderAccount]:
        """Enabled, non-archived providers linked to the merchant, in link order."""
        pass

    @abstractmethod
    async def get_provider(self, provider_id: str) -> Optional[ProviderAccount]:
        pass

    @abstractmethod
    async def update_health(
        self,
        provider_id: str,
        accepting_charges: bool,
        payouts_enabled: bool,
        checked_at: datetime,
    ) -> None:
        """Write back the cached health fields."""
        pass


class CheckoutStore(ABC):
    """Checkout records (only the fields routing needs)."""

    @abstractmethod
    async def get_checkout(self, checkout_id: str) -> Optional[Checkout]:
        pass

    @abstractmethod
    async def save_checkout(self, checkout: Checkout) -> None:
        pass


class PolicyStore(ABC):
    """Per-merchant routing policies."""

    @abstractmethod
    async def get_policy(self, merchant_id: str) -> Optional[RoutingPolicy]:
        pass

    @abstractmethod
    async def save_policy(self, policy: RoutingPolicy) -> None:
        pass


# =============================================================================
# In-memory implementations
# =============================================================================

class InMemoryLedgerStore(LedgerStore):
    """
    In-memory attempt ledger for development and testing.

    Stored rows are copies, so callers cannot mutate the ledger without
    going through update_attempt().
    """

    def __init__(self):
        self._attempts: Dict[str, Attempt] = {}
        self._order: List[str] = []

    async def record_attempt(self, attempt: Attempt) -> str:
        if attempt.attempt_id in self._attempts:
            raise ValueError(f"Attempt {attempt.attempt_id} already recorded")
        self._attempts[attempt.attempt_id] = replace(attempt)
        self._order.append(attempt.attempt_id)
        return attempt.attempt_id

    async def update_attempt(self, attempt: Attempt) -> None:
        if attempt.attempt_id not in self._attempts:
            raise AttemptNotFoundError(attempt.attempt_id)
        self._attempts[attempt.attempt_id] = replace(attempt)

    async def get_attempt(self, attempt_id: str) -> Optional[Attempt]:
        attempt = self._attempts.get(attempt_id)
        return replace(attempt) if attempt else None

    async def list_attempts(self, query: AttemptFilter) -> List[Attempt]:
        rows = [
            (self._attempts[attempt_id], position)
            for position, attempt_id in enumerate(self._order)
            if query.matches(self._attempts[attempt_id])
        ]
        # Insertion order breaks created_at ties
        rows.sort(key=lambda row: (row[0].created_at, row[1]), reverse=query.newest_first)
        result = [replace(attempt) for attempt, _ in rows]
        if query.limit is not None:
            result = result[: query.limit]
        return result

    def __len__(self) -> int:
        return len(self._attempts)


class InMemoryProviderRegistry(ProviderRegistry):
    """In-memory provider registry for development and testing."""

    def __init__(self):
        self._providers: Dict[str, ProviderAccount] = {}
        self._links: Dict[str, List[str]] = {}

    def add_provider(self, provider: ProviderAccount, *merchant_ids: str) -> None:
        self._providers[provider.provider_id] = provider
        for merchant_id in merchant_ids:
            self.link(merchant_id, provider.provider_id)

    def link(self, merchant_id: str, provider_id: str) -> None:
        if provider_id not in self._providers:
            raise ProviderNotFoundError(provider_id)
        links = self._links.setdefault(merchant_id, [])
        if provider_id not in links:
            links.append(provider_id)

    def archive(self, provider_id: str) -> None:
        provider = self._providers.get(provider_id)
        if not provider:
            raise ProviderNotFoundError(provider_id)
        provider.archived = True
        provider.enabled = False

    async def list_linked_providers(self, merchant_id: str) -> List[ProviderAccount]:
        return [
            copy.copy(self._providers[provider_id])
            for provider_id in self._links.get(merchant_id, [])
            if self._providers[provider_id].is_routable
        ]

    async def get_provider(self, provider_id: str) -> Optional[ProviderAccount]:
        provider = self._providers.get(provider_id)
        return copy.copy(provider) if provider else None

    async def update_health(
        self,
        provider_id: str,
        accepting_charges: bool,
        payouts_enabled: bool,
        checked_at: datetime,
    ) -> None:
        provider = self._providers.get(provider_id)
        if not provider:
            raise ProviderNotFoundError(provider_id)
        provider.accepting_charges = accepting_charges
        provider.payouts_enabled = payouts_enabled
        provider.health_checked_at = checked_at


class InMemoryCheckoutStore(CheckoutStore):
    """In-memory checkout store for development and testing."""

    def __init__(self):
        self._checkouts: Dict[str, Checkout] = {}

    async def get_checkout(self, checkout_id: str) -> Optional[Checkout]:
        checkout = self._checkouts.get(checkout_id)
        return replace(checkout) if checkout else None

    async def save_checkout(self, checkout: Checkout) -> None:
        self._checkouts[checkout.checkout_id] = replace(checkout)


class InMemoryPolicyStore(PolicyStore):
    """In-memory routing policy store for development and testing."""

    def __init__(self):
        self._policies: Dict[str, RoutingPolicy] = {}

    async def get_policy(self, merchant_id: str) -> Optional[RoutingPolicy]:
        policy = self._policies.get(merchant_id)
        return copy.deepcopy(policy) if policy else None

    async def save_policy(self, policy: RoutingPolicy) -> None:
        self._policies[policy.merchant_id] = copy.deepcopy(policy)
