"""
Reference-currency normalization for cap comparisons.

Provider caps are expressed in one reference currency. Attempt amounts
arrive in the shopper's currency and are converted here before any cap
check. Rates come from an ExchangeRateSource and are held in an
injectable RateCache that is replaced wholesale on refresh.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Optional

import httpx

from heypay_routing.clock import Clock, SystemClock
from heypay_routing.exceptions import FXDegradedError

logger = logging.getLogger(__name__)

DEFAULT_FX_TTL_SECONDS = 24 * 60 * 60
DEFAULT_FX_API_URL = "https://api.exchangerate-api.com/v4/latest"


@dataclass
class RateTable:
    """
    Rates quoted against one base currency.

    A rate r for currency X means 1 base = r X.
    """
    base_currency: str
    rates: Dict[str, Decimal]
    fetched_at: datetime
    source: str = "unknown"

    def rate_for(self, currency: str) -> Optional[Decimal]:
        if currency == self.base_currency:
            return Decimal("1")
        return self.rates.get(currency)


class ExchangeRateSource(ABC):
    """Abstract interface for exchange rate sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Source name."""
        pass

    @abstractmethod
    async def fetch_rates(self, base_currency: str) -> Dict[str, Decimal]:
        """
        Fetch rates for every currency the source knows, quoted against base.

        Raises:
            FXDegradedError: If rates cannot be obtained
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


class StaticExchangeRateSource(ExchangeRateSource):
    """Fixed rates for development and testing."""

    def __init__(self, rates: Dict[str, Decimal | str | float]):
        self._rates = {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}
        self.fetch_count = 0

    @property
    def name(self) -> str:
        return "static"

    async def fetch_rates(self, base_currency: str) -> Dict[str, Decimal]:
        self.fetch_count += 1
        return dict(self._rates)


class HttpExchangeRateSource(ExchangeRateSource):
    """
    exchangerate-api.com style endpoint: GET {api_url}/{BASE}.

    Expects a JSON body with a "rates" object of currency -> number.
    """

    def __init__(
        self,
        api_url: str = DEFAULT_FX_API_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def name(self) -> str:
        return "exchangerate-api"

    async def fetch_rates(self, base_currency: str) -> Dict[str, Decimal]:
        url = f"{self._api_url}/{base_currency.upper()}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FXDegradedError(f"Exchange rate fetch failed: {e}") from e

        raw_rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(raw_rates, dict) or not raw_rates:
            raise FXDegradedError("Exchange rate response has no rates")

        rates: Dict[str, Decimal] = {}
        for code, value in raw_rates.items():
            try:
                rate = Decimal(str(value))
            except InvalidOperation:
                continue
            if rate > 0:
                rates[code.upper()] = rate
        return rates

    async def close(self) -> None:
        await self._client.aclose()


@dataclass
class RateCache:
    """Process-wide rate table holder with a TTL."""
    ttl_seconds: int = DEFAULT_FX_TTL_SECONDS
    table: Optional[RateTable] = field(default=None)

    def get(self, base_currency: str, now: datetime) -> Optional[RateTable]:
        table = self.table
        if table is None or table.base_currency != base_currency:
            return None
        if now - table.fetched_at >= timedelta(seconds=self.ttl_seconds):
            return None
        return table

    def replace(self, table: RateTable) -> None:
        self.table = table

    def clear(self) -> None:
        self.table = None


class FXNormalizer:
    """
    Converts minor-unit amounts into the reference currency.

    A failed fetch or a currency missing from the table degrades to a 1:1
    conversion, logged as a warning: blocking checkout on an FX outage is
    worse than a slightly wrong cap comparison.
    """

    def __init__(
        self,
        reference_currency: str,
        source: ExchangeRateSource,
        cache: Optional[RateCache] = None,
        clock: Optional[Clock] = None,
    ):
        self.reference_currency = reference_currency.upper()
        self._source = source
        self._cache = cache or RateCache()
        self._clock = clock or SystemClock()

    @property
    def cache(self) -> RateCache:
        return self._cache

    @property
    def source(self) -> ExchangeRateSource:
        return self._source

    async def to_reference_currency(self, amount: int, currency: str) -> int:
        """Return `amount` (minor units of `currency`) in reference minor units."""
        code = currency.upper()
        if code == self.reference_currency:
            return amount

        try:
            table = await self._rates()
        except Exception as e:
            logger.warning(
                f"FX degraded, using 1:1 for {code}->{self.reference_currency}: {e}",
                extra={"error_code": FXDegradedError.error_code, "currency": code},
            )
            return amount

        rate = table.rate_for(code)
        if rate is None:
            logger.warning(
                f"FX degraded, no rate for {code}; using 1:1",
                extra={"error_code": FXDegradedError.error_code, "currency": code},
            )
            return amount

        converted = (Decimal(amount) / rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        logger.debug(f"FX: {amount} {code} -> {converted} {self.reference_currency} (rate {rate})")
        return int(converted)

    async def _rates(self) -> RateTable:
        now = self._clock.now()
        cached = self._cache.get(self.reference_currency, now)
        if cached is not None:
            return cached

        logger.info(f"Fetching exchange rates for {self.reference_currency} from {self._source.name}")
        rates = await self._source.fetch_rates(self.reference_currency)
        table = RateTable(
            base_currency=self.reference_currency,
            rates=rates,
            fetched_at=now,
            source=self._source.name,
        )
        self._cache.replace(table)
        return table
