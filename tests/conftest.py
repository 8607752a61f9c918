"""
Pytest configuration for heypay-routing tests.
"""
from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

# Set test environment
os.environ.setdefault("HEYPAY_ROUTING_ENVIRONMENT", "dev")

from heypay_routing.clock import ManualClock
from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.exceptions import ProviderCallFailed
from heypay_routing.fx import FXNormalizer, StaticExchangeRateSource
from heypay_routing.models import (
    AccountStatus,
    Attempt,
    AttemptStatus,
    ChargeResult,
    ProviderAccount,
    ProviderCredentials,
    ProviderType,
)
from heypay_routing.stores import (
    InMemoryCheckoutStore,
    InMemoryLedgerStore,
    InMemoryPolicyStore,
    InMemoryProviderRegistry,
)

MERCHANT_ID = "merchant_1"

# Wednesday, well inside a Paris business day (12:00 local, CET)
NOON_UTC = datetime(2024, 1, 10, 11, 0, tzinfo=timezone.utc)


def make_provider(
    provider_id: str,
    daily_cap: Optional[int] = None,
    monthly_cap: Optional[int] = None,
    **kwargs,
) -> ProviderAccount:
    return ProviderAccount(
        provider_id=provider_id,
        name=kwargs.pop("name", provider_id),
        credentials=ProviderCredentials(
            public_key=f"pk_test_{provider_id}",
            secret_key=f"sk_test_{provider_id}",
        ),
        daily_cap=daily_cap,
        monthly_cap=monthly_cap,
        **kwargs,
    )


def make_attempt(
    provider_id: str,
    amount: int,
    status: AttemptStatus = AttemptStatus.SUCCESS,
    created_at: Optional[datetime] = None,
    **kwargs,
) -> Attempt:
    return Attempt(
        merchant_id=kwargs.pop("merchant_id", MERCHANT_ID),
        provider_id=provider_id,
        amount=amount,
        currency=kwargs.pop("currency", "EUR"),
        status=status,
        reference_amount=kwargs.pop("reference_amount", amount),
        created_at=created_at or NOON_UTC,
        **kwargs,
    )


class FakeConnector(ProviderConnector):
    """Connector whose outcomes are scripted per provider."""

    def __init__(self):
        self.failing: Set[str] = set()
        self.unhealthy: Set[str] = set()
        self.status_calls: List[str] = []
        self.charges: List[str] = []
        self.closed = False

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.STRIPE

    async def check_account_status(self, provider: ProviderAccount) -> AccountStatus:
        self.status_calls.append(provider.provider_id)
        accepting = provider.provider_id not in self.unhealthy
        return AccountStatus(accepting_charges=accepting, payouts_enabled=accepting)

    async def charge(
        self,
        provider: ProviderAccount,
        amount: int,
        currency: str,
        metadata: Optional[Dict] = None,
    ) -> ChargeResult:
        self.charges.append(provider.provider_id)
        if provider.provider_id in self.failing:
            raise ProviderCallFailed(provider.provider_id, "card_declined")
        return ChargeResult(
            charge_id=f"pi_{provider.provider_id}_{len(self.charges)}",
            status="requires_payment_method",
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def clock():
    return ManualClock(NOON_UTC)


@pytest.fixture
def ledger():
    return InMemoryLedgerStore()


@pytest.fixture
def registry():
    return InMemoryProviderRegistry()


@pytest.fixture
def checkouts():
    return InMemoryCheckoutStore()


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def fx(clock):
    source = StaticExchangeRateSource({"EUR": 1, "USD": "1.25", "GBP": "0.8"})
    return FXNormalizer("EUR", source, clock=clock)



@pytest.fixture
def restore_root_logger():
    """Yield the root logger and put its handlers and level back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
