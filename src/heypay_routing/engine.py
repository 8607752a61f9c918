"""
Routing engine facade.

Wires the accessors, filter, strategy, breaker, cascade and sticky
assignment over caller-supplied stores, and exposes the operations a
payment service needs:

- select_next / ensure_assigned: choose a provider without charging
- execute / pay_checkout: charge with fallback; paying a checkout again
  returns its earlier success or in-flight attempt
- retry: continue a checkout after a failed attempt
- update_policy: manage per-merchant routing
"""
from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Collection, Dict, Optional, Sequence

from heypay_routing.admission import CheckoutAmountGuard
from heypay_routing.breaker import CheckoutCircuitBreaker
from heypay_routing.candidates import CandidateFilter
from heypay_routing.cascade import FallbackCascade
from heypay_routing.clock import Clock, SystemClock
from heypay_routing.config import RoutingSettings
from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.exceptions import (
    AllAttemptsFailedError,
    AttemptNotFoundError,
    CheckoutAmountExceededError,
    CircuitBreakerTrippedError,
    NoCandidatesError,
    RoutingError,
)
from heypay_routing.fx import ExchangeRateSource, FXNormalizer, HttpExchangeRateSource, RateCache
from heypay_routing.health import HealthCache
from heypay_routing.logging_config import setup_logging
from heypay_routing.models import (
    AttemptFilter,
    AttemptStatus,
    CartItem,
    CascadeResult,
    Checkout,
    FailureReason,
    ProviderAccount,
    ProviderType,
    RoutingPolicy,
)
from heypay_routing.policies import PolicyManager
from heypay_routing.selection import SelectionStrategy
from heypay_routing.sticky import StickyAssignment
from heypay_routing.stores import CheckoutStore, LedgerStore, PolicyStore, ProviderRegistry
from heypay_routing.usage import UsageAccessor

logger = logging.getLogger(__name__)

DEFAULT_CHECKOUT_TTL_MINUTES = 30


class RoutingEngine:
    """
    Main routing engine.

    Stateless per call: every decision re-reads the ledger, registry and
    policy store, so several engines may share the same stores.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ledger: LedgerStore,
        checkouts: CheckoutStore,
        policy_store: PolicyStore,
        fx: FXNormalizer,
        clock: Optional[Clock] = None,
        business_day_timezone: str = "Europe/Paris",
        business_day_start_hour: int = 6,
        month_window_days: int = 30,
        health_cache_ttl_seconds: int = 15 * 60,
        max_consecutive_failures: int = 2,
        breaker_history_limit: int = 10,
        default_max_retries: int = 2,
        checkout_ttl_minutes: int = DEFAULT_CHECKOUT_TTL_MINUTES,
        max_checkout_amount: Optional[int] = None,
    ):
        self.clock = clock or SystemClock()
        self.registry = registry
        self.ledger = ledger
        self.checkouts = checkouts
        self.fx = fx
        self.checkout_ttl = timedelta(minutes=checkout_ttl_minutes)

        # Shared with the health cache and the cascade
        self.connectors: Dict[ProviderType, ProviderConnector] = {}

        self.usage = UsageAccessor(
            ledger,
            clock=self.clock,
            timezone_name=business_day_timezone,
            start_hour=business_day_start_hour,
            month_window_days=month_window_days,
        )
        self.health = HealthCache(
            registry,
            self.connectors,
            clock=self.clock,
            ttl_seconds=health_cache_ttl_seconds,
        )
        self.policies = PolicyManager(
            policy_store,
            registry=registry,
            default_max_retries=default_max_retries,
            clock=self.clock,
        )
        self.candidate_filter = CandidateFilter(registry, self.usage, self.health, fx)
        self.selection = SelectionStrategy(self.candidate_filter, self.policies)
        self.breaker = CheckoutCircuitBreaker(
            ledger,
            max_consecutive_failures=max_consecutive_failures,
            history_limit=breaker_history_limit,
        )
        self.cascade = FallbackCascade(
            self.selection,
            self.policies,
            ledger,
            self.connectors,
            self.breaker,
            fx,
            checkouts=checkouts,
            clock=self.clock,
            amount_guard=CheckoutAmountGuard(fx, max_amount=max_checkout_amount),
        )
        self.sticky = StickyAssignment(checkouts, registry, self.selection, clock=self.clock)

    @classmethod
    def from_settings(
        cls,
        settings: RoutingSettings,
        registry: ProviderRegistry,
        ledger: LedgerStore,
        checkouts: CheckoutStore,
        policy_store: PolicyStore,
        rate_source: Optional[ExchangeRateSource] = None,
        clock: Optional[Clock] = None,
        configure_logs: bool = True,
    ) -> "RoutingEngine":
        """
        Build an engine from RoutingSettings.

        Process logging is configured from `log_level` and `log_json`
        unless `configure_logs` is False (hosts that own logging setup).
        """
        if configure_logs:
            setup_logging(settings)
        source = rate_source or HttpExchangeRateSource(
            api_url=settings.fx_api_url,
            timeout=settings.fx_timeout_seconds,
        )
        fx = FXNormalizer(
            settings.reference_currency,
            source,
            cache=RateCache(ttl_seconds=settings.fx_cache_ttl_seconds),
            clock=clock,
        )
        return cls(
            registry,
            ledger,
            checkouts,
            policy_store,
            fx,
            clock=clock,
            business_day_timezone=settings.business_day_timezone,
            business_day_start_hour=settings.business_day_start_hour,
            month_window_days=settings.month_window_days,
            health_cache_ttl_seconds=settings.health_cache_ttl_seconds,
            max_consecutive_failures=settings.max_consecutive_failures,
            breaker_history_limit=settings.breaker_history_limit,
            default_max_retries=settings.default_max_retries,
            checkout_ttl_minutes=settings.checkout_ttl_minutes,
            max_checkout_amount=settings.max_checkout_amount,
        )

    def register_connector(self, connector: ProviderConnector) -> None:
        """Register a provider connector."""
        self.connectors[connector.provider_type] = connector
        logger.info(f"Registered provider connector: {connector.provider_type.value}")

    def unregister_connector(self, provider_type: ProviderType) -> bool:
        """Unregister a provider connector."""
        if provider_type in self.connectors:
            del self.connectors[provider_type]
            logger.info(f"Unregistered provider connector: {provider_type.value}")
            return True
        return False

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_next(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        excluded: Collection[str] = (),
        checkout_id: Optional[str] = None,
    ) -> Optional[ProviderAccount]:
        """Choose a provider without charging; None when nothing is eligible."""
        return await self.selection.select_next(
            merchant_id,
            amount,
            currency,
            excluded=excluded,
            checkout_id=checkout_id,
        )

    async def create_checkout(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
        checkout_id: Optional[str] = None,
        items: Sequence[CartItem] = (),
    ) -> Checkout:
        """Open a checkout that expires after the configured TTL."""
        now = self.clock.now()
        checkout = Checkout(
            checkout_id=checkout_id or f"chk_{uuid.uuid4().hex[:20]}",
            merchant_id=merchant_id,
            amount=amount,
            currency=currency.upper(),
            expires_at=now + self.checkout_ttl,
            items=list(items),
            metadata=dict(metadata or {}),
            created_at=now,
        )
        await self.checkouts.save_checkout(checkout)
        logger.info(
            f"Created checkout {checkout.checkout_id} for {merchant_id}: "
            f"{amount} {checkout.currency}"
        )
        return checkout

    async def ensure_assigned(self, checkout_id: str) -> ProviderAccount:
        """Sticky provider for a checkout, assigned on first call."""
        return await self.sticky.ensure_assigned(checkout_id)

    async def reset_assignment(self, checkout_id: str) -> Checkout:
        """Release a checkout's sticky provider."""
        return await self.sticky.reset_assignment(checkout_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        checkout_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        items: Sequence[CartItem] = (),
    ) -> CascadeResult:
        """Charge with fallback; failures come back as CascadeResult.failure."""
        return await self.cascade.execute(
            merchant_id,
            amount,
            currency,
            checkout_id=checkout_id,
            metadata=metadata,
            items=items,
        )

    async def execute_or_raise(
        self,
        merchant_id: str,
        amount: int,
        currency: str,
        checkout_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        items: Sequence[CartItem] = (),
    ) -> CascadeResult:
        """
        Like execute() but raises on failure.

        Raises:
            NoCandidatesError
            AllAttemptsFailedError
            CircuitBreakerTrippedError
            CheckoutAmountExceededError
        """
        result = await self.execute(
            merchant_id,
            amount,
            currency,
            checkout_id=checkout_id,
            metadata=metadata,
            items=items,
        )
        return await self._raise_for_failure(result, merchant_id, checkout_id)

    async def pay_checkout(self, checkout_id: str) -> CascadeResult:
        """
        Charge a checkout, starting with its sticky provider if still eligible.

        Safe to call again: a checkout that already has a successful or
        in-flight attempt gets that attempt back (`replayed=True`) and no
        provider is called.

        Raises:
            CheckoutNotFoundError
            CheckoutExpiredError
        """
        checkout = await self.sticky.load_open_checkout(checkout_id)
        existing = await self._existing_payment(checkout)
        if existing is not None:
            return existing
        return await self.cascade.execute(
            checkout.merchant_id,
            checkout.amount,
            checkout.currency,
            checkout_id=checkout_id,
            metadata=checkout.metadata,
            preferred_provider_id=checkout.assigned_provider_id,
            items=checkout.items,
        )

    async def retry(self, checkout_id: str, previous_attempt_id: str) -> CascadeResult:
        """
        Continue a checkout after a failed attempt.

        The previous attempt's provider is excluded and numbering resumes
        after it, so the retry shares the original cascade's attempt bound.

        Raises:
            CheckoutNotFoundError
            CheckoutExpiredError
            AttemptNotFoundError
        """
        checkout = await self.sticky.load_open_checkout(checkout_id)
        previous = await self.ledger.get_attempt(previous_attempt_id)
        if previous is None or previous.checkout_id != checkout_id:
            raise AttemptNotFoundError(previous_attempt_id)
        existing = await self._existing_payment(checkout)
        if existing is not None:
            return existing

        logger.info(
            f"Retrying checkout {checkout_id} after attempt {previous.attempt_number} "
            f"via {previous.provider_id}"
        )
        return await self.cascade.execute(
            checkout.merchant_id,
            checkout.amount,
            checkout.currency,
            checkout_id=checkout_id,
            metadata=checkout.metadata,
            excluded=[previous.provider_id],
            first_attempt_number=previous.attempt_number + 1,
            force_fallback=True,
            items=checkout.items,
        )

    async def _existing_payment(self, checkout: Checkout) -> Optional[CascadeResult]:
        """An earlier attempt that must be returned instead of charging again."""
        succeeded = await self.ledger.list_attempts(AttemptFilter(
            checkout_id=checkout.checkout_id,
            statuses=[AttemptStatus.SUCCESS],
            newest_first=True,
            limit=1,
        ))
        if succeeded:
            attempt = succeeded[0]
            logger.info(
                f"Checkout {checkout.checkout_id} already paid by attempt "
                f"{attempt.attempt_id} via {attempt.provider_id}"
            )
            return CascadeResult(
                success=True,
                provider=await self.registry.get_provider(attempt.provider_id),
                attempts=[attempt],
                replayed=True,
            )

        latest = await self.ledger.list_attempts(AttemptFilter(
            checkout_id=checkout.checkout_id,
            newest_first=True,
            limit=1,
        ))
        if latest and latest[0].status.in_flight:
            attempt = latest[0]
            logger.info(
                f"Checkout {checkout.checkout_id} has attempt {attempt.attempt_id} in flight"
            )
            return CascadeResult(
                success=False,
                provider=await self.registry.get_provider(attempt.provider_id),
                attempts=[attempt],
                failure=FailureReason.ATTEMPT_IN_PROGRESS,
                error=f"Attempt {attempt.attempt_id} is still in progress",
                replayed=True,
            )
        return None

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    async def get_policy(self, merchant_id: str) -> RoutingPolicy:
        return await self.policies.get_or_default(merchant_id)

    async def update_policy(self, merchant_id: str, **kwargs: Any) -> RoutingPolicy:
        """See PolicyManager.update_policy()."""
        return await self.policies.update_policy(merchant_id, **kwargs)

    async def close(self) -> None:
        """Close connector and FX HTTP clients."""
        for connector in self.connectors.values():
            await connector.close()
        await self.fx.source.close()

    async def _raise_for_failure(
        self,
        result: CascadeResult,
        merchant_id: str,
        checkout_id: Optional[str],
    ) -> CascadeResult:
        if result.success:
            return result

        error: RoutingError
        if result.failure == FailureReason.CIRCUIT_BREAKER_TRIPPED and checkout_id:
            state = await self.breaker.state(checkout_id)
            error = CircuitBreakerTrippedError(checkout_id, state.consecutive_failures)
        elif result.failure == FailureReason.CHECKOUT_AMOUNT_EXCEEDED and result.cart_limit:
            error = CheckoutAmountExceededError(result.cart_limit)
        elif result.failure == FailureReason.NO_CANDIDATES:
            error = NoCandidatesError(merchant_id)
        else:
            error = AllAttemptsFailedError(
                [a.attempt_id for a in result.attempts],
                last_failure_reason=result.error,
            )
        raise error
