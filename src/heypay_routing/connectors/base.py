"""Base provider connector interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from heypay_routing.models import AccountStatus, ChargeResult, ProviderAccount, ProviderType


class ProviderConnector(ABC):
    """Abstract interface for payment provider connectors."""

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type."""
        pass

    @abstractmethod
    async def check_account_status(
        self,
        provider: ProviderAccount,
    ) -> AccountStatus:
        """
        Ask the provider's control API whether the account can take charges.

        Args:
            provider: Provider account with decrypted credentials

        Returns:
            AccountStatus

        Raises:
            ProviderCallFailed: If the status cannot be determined
        """
        pass

    @abstractmethod
    async def charge(
        self,
        provider: ProviderAccount,
        amount: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChargeResult:
        """
        Perform one charge call.

        Args:
            provider: Provider account with decrypted credentials
            amount: Amount in the currency's minor unit
            currency: ISO 4217 code
            metadata: Key/value pairs forwarded to the provider

        Returns:
            ChargeResult with the provider's identifier

        Raises:
            ProviderCallFailed: If the provider rejects or errors
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
