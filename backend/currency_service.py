"""
EXCHANGE RATE SERVICE

Live exchange rates from CurrencyAPI with an in-process cache.

Lookup order:
1. Cache       - valid for 1 hour
2. CurrencyAPI - base INR, supported currencies only
3. Fallback    - static table, marked from_fallback

A rate value is "1 INR = value <currency>", as CurrencyAPI returns it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
import httpx
import logging
import os

from reconciliation.currency_normalizer import BASE_CURRENCY
from reconciliation.errors import CurrencyConversionError
from reconciliation.financial_precision import round_financial, to_decimal

logger = logging.getLogger(__name__)

CURRENCY_API_URL = "https://api.currencyapi.com/v3/latest"
CURRENCY_API_KEY = os.environ.get("CURRENCY_API_KEY", "")

SUPPORTED_CURRENCIES = ["USD", "CAD", "AUD", "AED", "EUR", "GBP", "CNY", "BND"]

CACHE_DURATION = timedelta(hours=1)

FALLBACK_RATES = {
    "USD": 0.011111,  # 1 USD = 90 INR
    "CAD": 0.015295,  # 1 CAD = 65.35 INR
    "AUD": 0.016583,  # 1 AUD = 60.3 INR
    "AED": 0.040816,  # 1 AED = 24.5 INR
    "EUR": 0.010204,  # 1 EUR = 98 INR
    "GBP": 0.008772,  # 1 GBP = 114 INR
    "CNY": 0.080000,  # 1 CNY = 12.5 INR
    "BND": 0.014925,  # 1 BND = 67 INR
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ExchangeRateCache:
    rates: Dict[str, float]
    fetched_at: datetime
    last_updated_at: str
    ttl: timedelta = CACHE_DURATION

    def is_valid(self, now: datetime) -> bool:
        return bool(self.rates) and (now - self.fetched_at) < self.ttl


@dataclass
class ExchangeRates:
    rates: Dict[str, float]
    last_updated_at: str
    success: bool = True
    from_cache: bool = False
    from_fallback: bool = False
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "rates": self.rates,
            "last_updated": self.last_updated_at,
            "from_cache": self.from_cache,
            "from_fallback": self.from_fallback,
        }


class CurrencyRateError(Exception):
    """CurrencyAPI answered with something other than rates"""
    pass


def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=10.0)


class CurrencyService:
    """Exchange rates against the base currency"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client_factory: Callable[[], httpx.AsyncClient] = _default_client,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.api_key = CURRENCY_API_KEY if api_key is None else api_key
        self.http_client_factory = http_client_factory
        self.clock = clock
        self._cache: Optional[ExchangeRateCache] = None

    async def _fetch_rates(self) -> ExchangeRateCache:
        if not self.api_key:
            raise CurrencyRateError("CURRENCY_API_KEY is not set")

        params = {
            "apikey": self.api_key,
            "base_currency": BASE_CURRENCY,
            "currencies": ",".join(SUPPORTED_CURRENCIES),
        }
        async with self.http_client_factory() as client:
            response = await client.get(CURRENCY_API_URL, params=params)

        if response.status_code == 429:
            raise CurrencyRateError("Currency API rate limit exceeded")
        if response.status_code != 200:
            raise CurrencyRateError(f"Currency API error {response.status_code}")

        payload = response.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise CurrencyRateError("Invalid currency API response format")

        rates = {code: float(entry["value"]) for code, entry in data.items() if entry and entry.get("value")}
        now = self.clock()
        last_updated_at = (payload.get("meta") or {}).get("last_updated_at") or now.isoformat()
        return ExchangeRateCache(rates=rates, fetched_at=now, last_updated_at=last_updated_at)

    async def get_exchange_rates(self, force_refresh: bool = False) -> ExchangeRates:
        if not force_refresh and self._cache and self._cache.is_valid(self.clock()):
            logger.info("[CURRENCY] Using cached exchange rates")
            return ExchangeRates(
                rates=self._cache.rates,
                last_updated_at=self._cache.last_updated_at,
                from_cache=True,
            )

        try:
            self._cache = await self._fetch_rates()
            logger.info(f"[CURRENCY] Exchange rates fetched ({len(self._cache.rates)} currencies)")
            return ExchangeRates(rates=self._cache.rates, last_updated_at=self._cache.last_updated_at)
        except (httpx.HTTPError, CurrencyRateError, ValueError, KeyError) as e:
            logger.warning(f"[CURRENCY] Using fallback exchange rates: {str(e)}")
            return ExchangeRates(
                rates=dict(FALLBACK_RATES),
                last_updated_at="Fallback rates (API unavailable)",
                success=False,
                from_fallback=True,
                error=str(e),
            )

    async def _rate(self, currency: str, rates: Optional[Dict[str, float]] = None) -> Decimal:
        rates = rates if rates is not None else (await self.get_exchange_rates()).rates
        value = rates.get(currency)
        if not value:
            raise CurrencyConversionError(
                f"Exchange rate not found for {currency}",
                details={"currency": currency},
            )
        return to_decimal(value)

    async def convert_to_base(self, amount, currency: str, rates: Optional[Dict[str, float]] = None) -> Decimal:
        """Amount in `currency` expressed in INR."""
        if currency == BASE_CURRENCY:
            return round_financial(amount)
        return round_financial(to_decimal(amount) / await self._rate(currency, rates))

    async def convert_from_base(self, amount, currency: str, rates: Optional[Dict[str, float]] = None) -> Decimal:
        """INR amount expressed in `currency`."""
        if currency == BASE_CURRENCY:
            return round_financial(amount)
        return round_financial(to_decimal(amount) * await self._rate(currency, rates))

    async def convert(self, amount, from_currency: str, to_currency: str) -> Decimal:
        """Cross-currency conversion through the base currency."""
        if from_currency == to_currency:
            return round_financial(amount)
        rates = (await self.get_exchange_rates()).rates
        in_base = to_decimal(amount)
        if from_currency != BASE_CURRENCY:
            in_base = in_base / await self._rate(from_currency, rates)
        if to_currency == BASE_CURRENCY:
            return round_financial(in_base)
        return round_financial(in_base * await self._rate(to_currency, rates))

    def supported_currencies(self) -> List[str]:
        return [BASE_CURRENCY] + SUPPORTED_CURRENCIES
