"""Sticky provider assignment for checkouts."""
from __future__ import annotations

import logging
from typing import Optional

from heypay_routing.clock import Clock, SystemClock
from heypay_routing.exceptions import (
    CheckoutExpiredError,
    CheckoutNotFoundError,
    NoCandidatesError,
    ProviderNotFoundError,
)
from heypay_routing.logging_config import routing_context
from heypay_routing.models import Checkout, CheckoutStatus, ProviderAccount
from heypay_routing.selection import SelectionStrategy
from heypay_routing.stores import CheckoutStore, ProviderRegistry

logger = logging.getLogger(__name__)


class StickyAssignment:
    """
    Binds a checkout to one provider across repeated polls.

    The first call selects and persists a provider; later calls return
    the persisted one without consulting usage or health again.
    """

    def __init__(
        self,
        checkouts: CheckoutStore,
        registry: ProviderRegistry,
        selection: SelectionStrategy,
        clock: Optional[Clock] = None,
    ):
        self._checkouts = checkouts
        self._registry = registry
        self._selection = selection
        self._clock = clock or SystemClock()

    async def ensure_assigned(self, checkout_id: str) -> ProviderAccount:
        """
        Return the checkout's provider, assigning one on first call.

        Raises:
            CheckoutNotFoundError: Unknown checkout
            CheckoutExpiredError: Checkout is past `expires_at`
            NoCandidatesError: Nothing eligible to assign
            ProviderNotFoundError: Assigned provider no longer exists
        """
        checkout = await self.load_open_checkout(checkout_id)

        with routing_context(merchant_id=checkout.merchant_id, checkout_id=checkout_id):
            if checkout.assigned_provider_id:
                provider = await self._registry.get_provider(checkout.assigned_provider_id)
                if provider is None:
                    raise ProviderNotFoundError(checkout.assigned_provider_id)
                return provider

            provider = await self._selection.select_next(
                checkout.merchant_id,
                checkout.amount,
                checkout.currency,
                checkout_id=checkout_id,
            )
            if provider is None:
                raise NoCandidatesError(checkout.merchant_id)

            checkout.assigned_provider_id = provider.provider_id
            await self._checkouts.save_checkout(checkout)
            logger.info(f"Checkout {checkout_id} assigned to {provider.name}")
            return provider

    async def reset_assignment(self, checkout_id: str) -> Checkout:
        """Clear the sticky provider so the next poll selects afresh."""
        checkout = await self._checkouts.get_checkout(checkout_id)
        if checkout is None:
            raise CheckoutNotFoundError(checkout_id)
        if checkout.assigned_provider_id:
            logger.info(
                f"Checkout {checkout_id} released from provider {checkout.assigned_provider_id}"
            )
        checkout.assigned_provider_id = None
        await self._checkouts.save_checkout(checkout)
        return checkout

    async def load_open_checkout(self, checkout_id: str) -> Checkout:
        """Fetch a checkout, marking it EXPIRED and raising if it is past due."""
        checkout = await self._checkouts.get_checkout(checkout_id)
        if checkout is None:
            raise CheckoutNotFoundError(checkout_id)
        if checkout.is_expired(self._clock.now()):
            if checkout.status != CheckoutStatus.EXPIRED:
                checkout.status = CheckoutStatus.EXPIRED
                await self._checkouts.save_checkout(checkout)
                logger.info(f"Checkout {checkout_id} expired at {checkout.expires_at.isoformat()}")
            raise CheckoutExpiredError(checkout_id)
        return checkout
