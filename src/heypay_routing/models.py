"""Routing engine data models."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


DEFAULT_MAX_RETRIES = 2
DEFAULT_MANUAL_WEIGHT = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderType(str, Enum):
    """Payment provider types."""
    STRIPE = "stripe"


class RoutingMode(str, Enum):
    """How the next provider is picked."""
    AUTOMATIC = "automatic"  # Least business-day usage
    MANUAL = "manual"        # Headroom x configured weight, weighted random


class AttemptStatus(str, Enum):
    """Outcome of one attempt."""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def in_flight(self) -> bool:
        return self in (AttemptStatus.PENDING, AttemptStatus.PROCESSING)


class CheckoutStatus(str, Enum):
    """Checkout lifecycle."""
    OPEN = "open"
    COMPLETED = "completed"
    EXPIRED = "expired"


class FailureReason(str, Enum):
    """Typed reason a routing call did not produce a provider."""
    NO_CANDIDATES = "no_candidates"
    ALL_ATTEMPTS_FAILED = "all_attempts_failed"
    CIRCUIT_BREAKER_TRIPPED = "circuit_breaker_tripped"
    CHECKOUT_AMOUNT_EXCEEDED = "checkout_amount_exceeded"
    ATTEMPT_IN_PROGRESS = "attempt_in_progress"


@dataclass
class ProviderCredentials:
    """Decrypted provider credentials, resolved by the caller."""
    public_key: str
    secret_key: str

    def __repr__(self) -> str:
        return "ProviderCredentials(public_key=..., secret_key=***)"


@dataclass
class ProviderAccount:
    """A payment-processing credential set with its own caps and health."""
    provider_id: str
    name: str
    credentials: ProviderCredentials
    provider_type: ProviderType = ProviderType.STRIPE
    enabled: bool = True
    archived: bool = False
    # Caps in the reference currency's minor unit; None means uncapped
    daily_cap: Optional[int] = None
    monthly_cap: Optional[int] = None
    # Health cache fields, the only ones the engine writes
    accepting_charges: bool = False
    payouts_enabled: bool = False
    health_checked_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_routable(self) -> bool:
        return self.enabled and not self.archived


@dataclass
class ProviderWeight:
    """Manual-mode weight for one provider."""
    provider_id: str
    weight: float


@dataclass
class FallbackStep:
    """One position in the fallback-priority sequence."""
    provider_id: str
    order: int


@dataclass
class RoutingPolicy:
    """Per-merchant routing configuration."""
    merchant_id: str
    mode: RoutingMode = RoutingMode.AUTOMATIC
    fallback_enabled: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    weights: Dict[str, float] = field(default_factory=dict)
    # Provider IDs in fallback priority order
    fallback_sequence: List[str] = field(default_factory=list)
    is_default: bool = False
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def default(cls, merchant_id: str, max_retries: int = DEFAULT_MAX_RETRIES) -> "RoutingPolicy":
        """Policy used when a merchant has none configured."""
        return cls(
            merchant_id=merchant_id,
            mode=RoutingMode.AUTOMATIC,
            fallback_enabled=True,
            max_retries=max_retries,
            is_default=True,
        )

    @property
    def max_attempts(self) -> int:
        """Upper bound on attempts in one cascade."""
        if self.mode == RoutingMode.AUTOMATIC:
            return 1
        return 1 + (self.max_retries if self.fallback_enabled else 0)

    def weight_for(self, provider_id: str) -> float:
        return max(0.0, self.weights.get(provider_id, DEFAULT_MANUAL_WEIGHT))


@dataclass
class Attempt:
    """
    One try against one provider.

    The attempt ledger is the only source of truth for usage. Rows are
    appended; only status, failure_reason, provider_payment_id and
    processing_time_ms move from PENDING to a final value.
    """
    merchant_id: str
    provider_id: str
    amount: int
    currency: str
    attempt_id: str = field(default_factory=lambda: f"att_{uuid.uuid4().hex[:20]}")
    checkout_id: Optional[str] = None
    status: AttemptStatus = AttemptStatus.PENDING
    attempt_number: int = 1
    is_fallback: bool = False
    # Amount in the reference currency, used for cap accounting
    reference_amount: Optional[int] = None
    failure_reason: Optional[str] = None
    provider_payment_id: Optional[str] = None
    processing_time_ms: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @property
    def usage_amount(self) -> int:
        return self.reference_amount if self.reference_amount is not None else self.amount


@dataclass
class AttemptFilter:
    """Ledger query. Unset fields do not constrain."""
    provider_id: Optional[str] = None
    merchant_id: Optional[str] = None
    checkout_id: Optional[str] = None
    statuses: Optional[List[AttemptStatus]] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    newest_first: bool = False
    limit: Optional[int] = None

    def matches(self, attempt: Attempt) -> bool:
        if self.provider_id is not None and attempt.provider_id != self.provider_id:
            return False
        if self.merchant_id is not None and attempt.merchant_id != self.merchant_id:
            return False
        if self.checkout_id is not None and attempt.checkout_id != self.checkout_id:
            return False
        if self.statuses is not None and attempt.status not in self.statuses:
            return False
        if self.since is not None and attempt.created_at < self.since:
            return False
        if self.until is not None and attempt.created_at >= self.until:
            return False
        return True


@dataclass
class CartItem:
    """One line of a checkout's cart. Prices in minor units of the checkout currency."""
    item_id: str
    name: str
    quantity: int
    unit_price: int

    @property
    def total_price(self) -> int:
        return self.quantity * self.unit_price


@dataclass
class Checkout:
    """Unit of stickiness: at most one assigned provider at a time."""
    checkout_id: str
    merchant_id: str
    amount: int
    currency: str
    expires_at: datetime
    status: CheckoutStatus = CheckoutStatus.OPEN
    assigned_provider_id: Optional[str] = None
    # Tracking fields refreshed on every recorded attempt outcome
    total_attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_attempt_status: Optional[AttemptStatus] = None
    last_attempt_provider_id: Optional[str] = None
    items: List[CartItem] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, now: datetime) -> bool:
        if self.status == CheckoutStatus.COMPLETED:
            return False
        return self.status == CheckoutStatus.EXPIRED or now >= self.expires_at


@dataclass(frozen=True)
class ScoredCandidate:
    """A provider that passed the filter, with the usage it was judged on."""
    provider: ProviderAccount
    business_day_usage: int
    month_usage: int

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id

    def headroom_ratio(self) -> float:
        """Fraction of capacity left under the tighter of the two caps."""
        return min(
            _headroom_fraction(self.provider.daily_cap, self.business_day_usage),
            _headroom_fraction(self.provider.monthly_cap, self.month_usage),
        )


def _headroom_fraction(cap: Optional[int], usage: int) -> float:
    if cap is None:
        return 1.0
    # A zero or negative cap leaves no room at all
    if cap <= 0:
        return 0.0
    return max(0.0, min(1.0, (cap - usage) / cap))


@dataclass
class AccountStatus:
    """Provider account health as reported by its control API."""
    accepting_charges: bool
    payouts_enabled: bool = False


@dataclass
class ChargeResult:
    """Result of one provider charge call."""
    charge_id: str
    status: str
    client_secret: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ItemRemoval:
    """Units of one cart line suggested for removal, priced as listed on the line."""
    item_id: str
    name: str
    quantity: int
    unit_price: int


@dataclass
class CartLimitExceeded:
    """
    Why a checkout was refused before any provider was tried.

    Amounts are in the reference currency's minor unit. `suggestions`
    is None when no removal brings the cart under the limit.
    """
    current_amount: int
    max_amount: int
    currency: str
    suggestions: Optional[List[ItemRemoval]] = None
    new_total_after_removal: Optional[int] = None

    @property
    def adjustable(self) -> bool:
        return self.suggestions is not None


@dataclass
class CascadeResult:
    """Outcome of Execute: success, provider used, or a typed failure."""
    success: bool
    provider: Optional[ProviderAccount] = None
    charge: Optional[ChargeResult] = None
    attempts: List[Attempt] = field(default_factory=list)
    failure: Optional[FailureReason] = None
    error: Optional[str] = None
    # Set when an earlier attempt was returned instead of charging again
    replayed: bool = False
    cart_limit: Optional[CartLimitExceeded] = None

    @property
    def provider_id(self) -> Optional[str]:
        return self.provider.provider_id if self.provider else None
