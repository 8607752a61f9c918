"""
Fallback cascade: bounded attempts across successive providers.

Per cascade: SELECT -> CALL -> {SUCCESS | FAILED -> SELECT}, at most
`policy.max_attempts` times. Every attempt is written to the ledger as
PENDING before the provider call and updated to its outcome after.
Single provider failures never escape. Breaker trips, amounts above the
per-checkout limit, an empty candidate set and exhaustion are reported
to the caller.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence, Tuple

from heypay_routing.admission import CheckoutAmountGuard
from heypay_routing.breaker import CheckoutCircuitBreaker
from heypay_routing.clock import Clock, SystemClock
from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.exceptions import (
    CheckoutAmountExceededError,
    CircuitBreakerTrippedError,
    ProviderCallFailed,
)
from heypay_routing.fx import FXNormalizer
from heypay_routing.logging_config import routing_context
from heypay_routing.models import (
    Attempt,
    AttemptStatus,
    CartItem,
    CascadeResult,
    ChargeResult,
    CheckoutStatus,
    FailureReason,
    ProviderAccount,
    ProviderType,
)
from heypay_routing.policies import PolicyManager
from heypay_routing.selection import SelectionStrategy
from heypay_routing.stores import CheckoutStore, LedgerStore

logger = logging.getLogger(__name__)


class FallbackCascade:
    """Runs one logical payment across providers until success or exhaustion."""

    def __init__(
        self,
        selection: SelectionStrategy,
        policies: PolicyManager,
        ledger: LedgerStore,
        connectors: Mapping[ProviderType, ProviderConnector],
        breaker: CheckoutCircuitBreaker,
        fx: FXNormalizer,
        checkouts: Optional[CheckoutStore] = None,
        clock: Optional[Clock] = None,
        amount_guard: Optional[CheckoutAmountGuard] = None,
    ):
        self._selection = selection
        self._policies = policies
        self._ledger = ledger
        self._connectors = connectors
        self._breaker = breaker
        self._fx = fx
        self._checkouts = checkouts
        self._clock = clock or SystemClock()
        self._amount_guard = amount_guard or CheckoutAmountGuard(fx)

    async def execute(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        checkout_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        excluded: Collection[str] = (),
        first_attempt_number: int = 1,
        force_fallback: bool = False,
        preferred_provider_id: Optional[str] = None,
        items: Sequence[CartItem] = (),
    ) -> CascadeResult:
        """
        Charge `amount` through the first provider that accepts it.

        Args:
            merchant_id: Merchant being paid
            amount: Amount in minor units of `currency`
            currency: ISO 4217 code
            checkout_id: Enables the circuit breaker and seeded selection
            metadata: Forwarded to the provider charge call
            excluded: Providers not to try (e.g. the one a retry follows)
            first_attempt_number: Numbering continues from a previous cascade
            force_fallback: Flag every attempt as a fallback
            preferred_provider_id: Sticky provider to try first if eligible
            items: Cart lines, used to suggest removals above the amount limit

        Returns:
            CascadeResult; `failure` tells breaker trip, amount limit,
            no candidates and exhaustion apart
        """
        with routing_context(merchant_id=merchant_id, checkout_id=checkout_id):
            if checkout_id:
                try:
                    await self._breaker.check(checkout_id)
                except CircuitBreakerTrippedError as e:
                    return CascadeResult(
                        success=False,
                        failure=FailureReason.CIRCUIT_BREAKER_TRIPPED,
                        error=e.message,
                    )

            policy = await self._policies.get_or_default(merchant_id)
            max_attempts = policy.max_attempts
            reference_amount = await self._fx.to_reference_currency(amount, currency)
            try:
                await self._amount_guard.check(reference_amount, currency, items)
            except CheckoutAmountExceededError as e:
                return CascadeResult(
                    success=False,
                    failure=FailureReason.CHECKOUT_AMOUNT_EXCEEDED,
                    error=e.message,
                    cart_limit=e.limit,
                )

            tried: List[str] = list(excluded)
            attempts: List[Attempt] = []
            attempt_number = first_attempt_number
            last_error: Optional[str] = None

            while attempt_number <= max_attempts:
                candidate = await self._selection.select_candidate(
                    merchant_id,
                    amount,
                    currency,
                    excluded=tried,
                    checkout_id=checkout_id,
                    reference_amount=reference_amount,
                    policy=policy,
                    preferred_provider_id=None if attempts else preferred_provider_id,
                )
                if candidate is None:
                    break

                provider = candidate.provider
                logger.info(
                    f"Attempt {attempt_number}/{max_attempts} via {provider.name} "
                    f"({provider.provider_type.value})"
                )
                attempt = Attempt(
                    merchant_id=merchant_id,
                    provider_id=provider.provider_id,
                    amount=amount,
                    currency=currency.upper(),
                    checkout_id=checkout_id,
                    attempt_number=attempt_number,
                    is_fallback=force_fallback or attempt_number > 1,
                    reference_amount=reference_amount,
                    created_at=self._clock.now(),
                )
                attempt, charge = await self._run_attempt(provider, attempt, metadata)
                attempts.append(attempt)

                if attempt.status == AttemptStatus.SUCCESS:
                    logger.info(
                        f"Payment succeeded via {provider.name} "
                        f"on attempt {attempt_number}/{max_attempts}"
                    )
                    return CascadeResult(
                        success=True,
                        provider=provider,
                        charge=charge,
                        attempts=attempts,
                    )

                last_error = attempt.failure_reason
                tried.append(provider.provider_id)
                attempt_number += 1

            if not attempts and first_attempt_number == 1:
                logger.warning(f"No eligible provider for merchant {merchant_id}")
                return CascadeResult(
                    success=False,
                    failure=FailureReason.NO_CANDIDATES,
                    error="No payment provider available",
                )

            logger.warning(
                f"Cascade exhausted at attempt {attempt_number - 1}/{max_attempts}; "
                f"last error: {last_error}"
            )
            return CascadeResult(
                success=False,
                attempts=attempts,
                failure=FailureReason.ALL_ATTEMPTS_FAILED,
                error=last_error or "All payment attempts failed",
            )

    async def _run_attempt(
        self,
        provider: ProviderAccount,
        attempt: Attempt,
        metadata: Optional[Dict[str, Any]],
    ) -> Tuple[Attempt, Optional[ChargeResult]]:
        """Record PENDING, call the provider, record the outcome."""
        await self._ledger.record_attempt(attempt)
        await self._track_checkout(attempt)

        charge_metadata = dict(metadata or {})
        charge_metadata["attempt_id"] = attempt.attempt_id
        if attempt.checkout_id:
            charge_metadata["checkout_id"] = attempt.checkout_id

        start_time = time.monotonic()
        charge: Optional[ChargeResult] = None
        try:
            connector = self._connectors.get(provider.provider_type)
            if connector is None:
                raise ProviderCallFailed(
                    provider.provider_id,
                    f"No connector registered for {provider.provider_type.value}",
                )
            charge = await connector.charge(
                provider,
                attempt.amount,
                attempt.currency,
                metadata=charge_metadata,
            )
            attempt.status = AttemptStatus.SUCCESS
            attempt.provider_payment_id = charge.charge_id
        except ProviderCallFailed as e:
            logger.warning(f"Attempt {attempt.attempt_number} via {provider.name} failed: {e.reason}")
            attempt.status = AttemptStatus.FAILED
            attempt.failure_reason = e.reason
        except Exception as e:
            logger.error(
                f"Unexpected error charging via {provider.name}: "
                f"{e.__class__.__name__}: {e}"
            )
            attempt.status = AttemptStatus.FAILED
            attempt.failure_reason = f"{e.__class__.__name__}: {e}"

        attempt.processing_time_ms = int((time.monotonic() - start_time) * 1000)
        attempt.updated_at = self._clock.now()
        await self._ledger.update_attempt(attempt)
        await self._track_checkout(attempt)
        return attempt, charge

    async def _track_checkout(self, attempt: Attempt) -> None:
        if self._checkouts is None or attempt.checkout_id is None:
            return
        checkout = await self._checkouts.get_checkout(attempt.checkout_id)
        if checkout is None:
            return
        if attempt.status == AttemptStatus.PENDING:
            checkout.total_attempts += 1
        elif attempt.status == AttemptStatus.SUCCESS:
            checkout.status = CheckoutStatus.COMPLETED
        checkout.last_attempt_at = attempt.updated_at or attempt.created_at
        checkout.last_attempt_status = attempt.status
        checkout.last_attempt_provider_id = attempt.provider_id
        await self._checkouts.save_checkout(checkout)
