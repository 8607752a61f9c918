"""
HeyPay Routing - payment provider routing with capacity caps and fallback.

This package picks which payment-provider account handles a charge:

- Business-day and rolling-month usage read from the attempt ledger
- Daily and monthly caps compared in one reference currency
- Provider health cached for a short TTL, failing closed
- Least-loaded (automatic) or weighted headroom (manual) selection
- Bounded fallback cascade with a checkout circuit breaker
- Sticky provider assignment per checkout
- Per-checkout amount limit with cart removal suggestions
"""

from heypay_routing.engine import RoutingEngine
from heypay_routing.config import RoutingSettings, load_settings
from heypay_routing.logging_config import configure_logging, routing_context, setup_logging
from heypay_routing.models import (
    # Providers
    ProviderAccount,
    ProviderCredentials,
    ProviderType,
    AccountStatus,
    ChargeResult,
    # Policies
    RoutingMode,
    RoutingPolicy,
    ProviderWeight,
    FallbackStep,
    # Ledger
    Attempt,
    AttemptFilter,
    AttemptStatus,
    # Checkouts
    Checkout,
    CheckoutStatus,
    CartItem,
    CartLimitExceeded,
    ItemRemoval,
    # Results
    ScoredCandidate,
    CascadeResult,
    FailureReason,
    # Constants
    DEFAULT_MAX_RETRIES,
)
from heypay_routing.exceptions import (
    RoutingError,
    NoCandidatesError,
    AllAttemptsFailedError,
    CircuitBreakerTrippedError,
    CheckoutAmountExceededError,
    ProviderCallFailed,
    FXDegradedError,
    CheckoutNotFoundError,
    CheckoutExpiredError,
    ProviderNotFoundError,
    AttemptNotFoundError,
    InvalidRoutingPolicyError,
)
from heypay_routing.stores import (
    LedgerStore,
    ProviderRegistry,
    CheckoutStore,
    PolicyStore,
    InMemoryLedgerStore,
    InMemoryProviderRegistry,
    InMemoryCheckoutStore,
    InMemoryPolicyStore,
)
from heypay_routing.clock import Clock, SystemClock, ManualClock
from heypay_routing.usage import UsageAccessor
from heypay_routing.health import HealthCache
from heypay_routing.fx import (
    ExchangeRateSource,
    StaticExchangeRateSource,
    HttpExchangeRateSource,
    RateCache,
    RateTable,
    FXNormalizer,
)
from heypay_routing.candidates import CandidateFilter
from heypay_routing.selection import SelectionStrategy
from heypay_routing.policies import PolicyManager
from heypay_routing.breaker import CheckoutCircuitBreaker, BreakerState
from heypay_routing.cascade import FallbackCascade
from heypay_routing.admission import CheckoutAmountGuard, suggest_items_to_remove
from heypay_routing.sticky import StickyAssignment
from heypay_routing.connectors import ProviderConnector, StripeConnector

__version__ = "0.1.0"

__all__ = [
    # Engine
    "RoutingEngine",
    "RoutingSettings",
    "load_settings",
    "configure_logging",
    "setup_logging",
    "routing_context",
    # Models
    "ProviderAccount",
    "ProviderCredentials",
    "ProviderType",
    "AccountStatus",
    "ChargeResult",
    "RoutingMode",
    "RoutingPolicy",
    "ProviderWeight",
    "FallbackStep",
    "Attempt",
    "AttemptFilter",
    "AttemptStatus",
    "Checkout",
    "CheckoutStatus",
    "CartItem",
    "CartLimitExceeded",
    "ItemRemoval",
    "ScoredCandidate",
    "CascadeResult",
    "FailureReason",
    "DEFAULT_MAX_RETRIES",
    # Exceptions
    "RoutingError",
    "NoCandidatesError",
    "AllAttemptsFailedError",
    "CircuitBreakerTrippedError",
    "CheckoutAmountExceededError",
    "ProviderCallFailed",
    "FXDegradedError",
    "CheckoutNotFoundError",
    "CheckoutExpiredError",
    "ProviderNotFoundError",
    "AttemptNotFoundError",
    "InvalidRoutingPolicyError",
    # Stores
    "LedgerStore",
    "ProviderRegistry",
    "CheckoutStore",
    "PolicyStore",
    "InMemoryLedgerStore",
    "InMemoryProviderRegistry",
    "InMemoryCheckoutStore",
    "InMemoryPolicyStore",
    # Time
    "Clock",
    "SystemClock",
    "ManualClock",
    # Components
    "UsageAccessor",
    "HealthCache",
    "ExchangeRateSource",
    "StaticExchangeRateSource",
    "HttpExchangeRateSource",
    "RateCache",
    "RateTable",
    "FXNormalizer",
    "CandidateFilter",
    "SelectionStrategy",
    "PolicyManager",
    "CheckoutCircuitBreaker",
    "BreakerState",
    "FallbackCascade",
    "CheckoutAmountGuard",
    "suggest_items_to_remove",
    "StickyAssignment",
    # Connectors
    "ProviderConnector",
    "StripeConnector",
]
