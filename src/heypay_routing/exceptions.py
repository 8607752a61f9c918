"""Exception hierarchy for the routing engine.

All routing exceptions inherit from RoutingError and carry:
- error_code: Machine-readable error code (e.g., "NO_CANDIDATES")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format

Only NoCandidatesError, AllAttemptsFailedError, CircuitBreakerTrippedError
and CheckoutAmountExceededError are meant to reach callers of the cascade.
ProviderCallFailed and FXDegradedError are raised by collaborators and
absorbed inside the engine.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from heypay_routing.models import CartLimitExceeded


class RoutingError(Exception):
    """Base exception for all routing errors."""

    error_code: str = "ROUTING_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Outcomes surfaced to callers
# =============================================================================

class NoCandidatesError(RoutingError):
    """No provider currently has health and headroom for the amount."""

    error_code = "NO_CANDIDATES"

    def __init__(
        self,
        merchant_id: str,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["merchant_id"] = merchant_id
        super().__init__(
            message or f"No eligible payment provider for merchant '{merchant_id}'",
            details=details,
        )
        self.merchant_id = merchant_id


class AllAttemptsFailedError(RoutingError):
    """Every attempt of a cascade failed."""

    error_code = "ALL_ATTEMPTS_FAILED"

    def __init__(
        self,
        attempt_ids: List[str],
        last_failure_reason: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Payment failed after {len(attempt_ids)} attempt(s)",
            details={
                "attempt_ids": list(attempt_ids),
                "last_failure_reason": last_failure_reason,
            },
        )
        self.attempt_ids = list(attempt_ids)
        self.last_failure_reason = last_failure_reason


class CircuitBreakerTrippedError(RoutingError):
    """Checkout has too many consecutive failed attempts."""

    error_code = "CIRCUIT_BREAKER_TRIPPED"

    def __init__(self, checkout_id: str, consecutive_failures: int) -> None:
        super().__init__(
            f"Too many failed payment attempts for checkout '{checkout_id}'. "
            "Please contact support.",
            details={
                "checkout_id": checkout_id,
                "consecutive_failures": consecutive_failures,
            },
        )
        self.checkout_id = checkout_id
        self.consecutive_failures = consecutive_failures


class CheckoutAmountExceededError(RoutingError):
    """Checkout amount is above the per-checkout ceiling."""

    error_code = "CART_AMOUNT_EXCEEDED"

    def __init__(self, limit: "CartLimitExceeded") -> None:
        details: dict[str, Any] = {
            "current_amount": limit.current_amount,
            "max_amount": limit.max_amount,
            "currency": limit.currency,
        }
        if limit.suggestions is not None:
            details["suggestions"] = [
                {"item_id": s.item_id, "name": s.name, "quantity": s.quantity}
                for s in limit.suggestions
            ]
            details["new_total_after_removal"] = limit.new_total_after_removal
        super().__init__(
            f"Checkout amount {limit.current_amount} exceeds the limit of "
            f"{limit.max_amount} {limit.currency}",
            details=details,
        )
        self.limit = limit


# =============================================================================
# Absorbed inside the engine
# =============================================================================

class ProviderCallFailed(RoutingError):
    """A single external provider call errored."""

    error_code = "PROVIDER_CALL_FAILED"

    def __init__(
        self,
        provider_id: str,
        reason: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["provider_id"] = provider_id
        super().__init__(reason, details=details)
        self.provider_id = provider_id
        self.reason = reason


class FXDegradedError(RoutingError):
    """Exchange rates could not be fetched or did not cover a currency."""

    error_code = "FX_DEGRADED"


# =============================================================================
# Lookup and validation
# =============================================================================

class RoutingNotFoundError(RoutingError):
    """Requested resource not found."""

    error_code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class CheckoutNotFoundError(RoutingNotFoundError):
    def __init__(self, checkout_id: str) -> None:
        super().__init__("Checkout", checkout_id)


class ProviderNotFoundError(RoutingNotFoundError):
    def __init__(self, provider_id: str) -> None:
        super().__init__("Provider", provider_id)


class AttemptNotFoundError(RoutingNotFoundError):
    def __init__(self, attempt_id: str) -> None:
        super().__init__("Attempt", attempt_id)


class CheckoutExpiredError(RoutingError):
    """Checkout is past its expiry and can no longer be routed."""

    error_code = "CHECKOUT_EXPIRED"

    def __init__(self, checkout_id: str) -> None:
        super().__init__(
            f"Checkout '{checkout_id}' has expired",
            details={"checkout_id": checkout_id},
        )


class InvalidRoutingPolicyError(RoutingError):
    """Routing policy update rejected."""

    error_code = "INVALID_ROUTING_POLICY"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        details = {"field": field} if field else None
        super().__init__(message, details=details)
