"""
Checkout amount admission.

Carts above a per-checkout ceiling are refused before any provider is
tried, together with a suggestion of cart units to drop so the shopper
can get back under the ceiling.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from heypay_routing.exceptions import CheckoutAmountExceededError
from heypay_routing.fx import FXNormalizer
from heypay_routing.models import CartItem, CartLimitExceeded, ItemRemoval

logger = logging.getLogger(__name__)


def suggest_items_to_remove(
    items: Sequence[CartItem],
    current_total: int,
    max_amount: int,
    unit_prices: Optional[Sequence[int]] = None,
) -> Optional[Tuple[List[ItemRemoval], int]]:
    """
    Greedy choice of cart units whose removal brings the total under `max_amount`.

    Cheapest units go first to keep as much of the cart as possible; if
    that does not get under the limit, the most expensive units are
    tried instead. At least some value always stays in the cart.

    Args:
        items: Cart lines
        current_total: Amount being checked
        max_amount: Ceiling the remaining total must not exceed
        unit_prices: Per-line unit prices in the unit of `current_total`;
            defaults to each line's own `unit_price`

    Returns:
        (removals, new_total), or None when no removal works
    """
    prices = list(unit_prices) if unit_prices is not None else [i.unit_price for i in items]
    amount_to_remove = current_total - max_amount

    if len(items) == 1 and items[0].quantity * prices[0] > max_amount:
        return None

    units = [
        (prices[index], index)
        for index, item in enumerate(items)
        for _ in range(item.quantity)
    ]

    for most_expensive_first in (False, True):
        ordered = sorted(units, key=lambda unit: unit[0], reverse=most_expensive_first)
        removed_total = 0
        removed: Dict[int, int] = {}
        for price, index in ordered:
            if removed_total >= amount_to_remove:
                break
            if current_total - removed_total - price <= 0:
                continue
            removed_total += price
            removed[index] = removed.get(index, 0) + 1

        new_total = current_total - removed_total
        if 0 < new_total <= max_amount:
            removals = [
                ItemRemoval(
                    item_id=items[index].item_id,
                    name=items[index].name,
                    quantity=count,
                    unit_price=items[index].unit_price,
                )
                for index, count in removed.items()
            ]
            return removals, new_total

    return None


class CheckoutAmountGuard:
    """Refuses amounts above `max_amount` (reference currency minor units)."""

    def __init__(self, fx: FXNormalizer, max_amount: Optional[int] = None):
        self._fx = fx
        self.max_amount = max_amount

    async def check(
        self,
        reference_amount: int,
        currency: str,
        items: Sequence[CartItem] = (),
    ) -> None:
        """
        Raises:
            CheckoutAmountExceededError: Amount is above the ceiling
        """
        if self.max_amount is None or reference_amount <= self.max_amount:
            return

        logger.warning(
            f"Checkout amount {reference_amount} {self._fx.reference_currency} "
            f"above limit {self.max_amount}"
        )
        limit = CartLimitExceeded(
            current_amount=reference_amount,
            max_amount=self.max_amount,
            currency=self._fx.reference_currency,
        )
        if items:
            prices = [
                await self._fx.to_reference_currency(item.unit_price, currency)
                for item in items
            ]
            suggestion = suggest_items_to_remove(
                items, reference_amount, self.max_amount, unit_prices=prices,
            )
            if suggestion is not None:
                limit.suggestions, limit.new_total_after_removal = suggestion
        raise CheckoutAmountExceededError(limit)
