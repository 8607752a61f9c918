"""Stripe provider connector."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from heypay_routing.connectors.base import ProviderConnector
from heypay_routing.exceptions import ProviderCallFailed
from heypay_routing.logging_config import mask_secret
from heypay_routing.models import AccountStatus, ChargeResult, ProviderAccount, ProviderType

logger = logging.getLogger(__name__)


class StripeConnector(ProviderConnector):
    """
    Stripe connector shared by every Stripe account.

    Each request authenticates with the secret key of the account it is
    made for, so one HTTP client serves all linked accounts.
    """

    def __init__(
        self,
        api_base: str = "https://api.stripe.com/v1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.api_base,
            timeout=timeout,
        )

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.STRIPE

    def _auth(self, provider: ProviderAccount) -> tuple[str, str]:
        secret_key = provider.credentials.secret_key
        if not secret_key or not secret_key.startswith(("sk_", "rk_")):
            raise ProviderCallFailed(
                provider.provider_id,
                f"Invalid secret key format for {provider.name}: {mask_secret(secret_key)}",
            )
        return (secret_key, "")

    async def _request(
        self,
        provider: ProviderAccount,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        auth = self._auth(provider)
        try:
            response = await self._client.request(method, path, data=data, auth=auth)
        except httpx.HTTPError as e:
            raise ProviderCallFailed(
                provider.provider_id,
                f"Stripe request {method} {path} failed: {e.__class__.__name__}: {e}",
            ) from e

        if response.is_error:
            raise ProviderCallFailed(
                provider.provider_id,
                _error_message(response),
                details={"http_status": response.status_code},
            )
        return response.json()

    async def check_account_status(
        self,
        provider: ProviderAccount,
    ) -> AccountStatus:
        """Read charges_enabled/payouts_enabled from the account object."""
        data = await self._request(provider, "GET", "/account")
        return AccountStatus(
            accepting_charges=bool(data.get("charges_enabled", False)),
            payouts_enabled=bool(data.get("payouts_enabled", False)),
        )

    async def charge(
        self,
        provider: ProviderAccount,
        amount: int,
        currency: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChargeResult:
        """Create a PaymentIntent with automatic payment methods."""
        payload: Dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            if value is not None:
                payload[f"metadata[{key}]"] = str(value)

        data = await self._request(provider, "POST", "/payment_intents", data=payload)
        logger.info(f"Stripe PaymentIntent {data.get('id')} created via {provider.name}")

        return ChargeResult(
            charge_id=data["id"],
            status=data.get("status", "requires_payment_method"),
            client_secret=data.get("client_secret"),
            raw=data,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    """Human-readable reason from a Stripe error body."""
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    message = error.get("message") or response.reason_phrase or "unknown error"
    code = error.get("code") or error.get("type")
    if code:
        return f"Stripe error {response.status_code} ({code}): {message}"
    return f"Stripe error {response.status_code}: {message}"
