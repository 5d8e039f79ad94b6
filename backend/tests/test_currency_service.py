"""
Exchange rate service tests (CurrencyAPI stubbed with httpx.MockTransport)
"""
import httpx
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from currency_service import CurrencyService, ExchangeRateCache, FALLBACK_RATES
from reconciliation.errors import CurrencyConversionError

NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)

API_PAYLOAD = {
    "meta": {"last_updated_at": "2026-03-15T00:00:00Z"},
    "data": {
        "USD": {"code": "USD", "value": 0.0125},
        "EUR": {"code": "EUR", "value": 0.01},
    },
}


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def service_with(handler, clock=None, api_key="test-key"):
    return CurrencyService(
        api_key=api_key,
        http_client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        clock=clock or Clock(NOW),
    )


class TestExchangeRateCache:

    def test_valid_within_an_hour(self):
        cache = ExchangeRateCache(rates={"USD": 0.0125}, fetched_at=NOW, last_updated_at="x")
        assert cache.is_valid(NOW + timedelta(minutes=59)) is True
        assert cache.is_valid(NOW + timedelta(hours=1)) is False

    def test_empty_cache_never_valid(self):
        assert ExchangeRateCache(rates={}, fetched_at=NOW, last_updated_at="x").is_valid(NOW) is False


class TestCurrencyService:

    @pytest.mark.asyncio
    async def test_fetches_then_serves_from_cache(self):
        calls = []

        def handler(request):
            calls.append(request)
            assert request.url.params["base_currency"] == "INR"
            assert request.url.params["apikey"] == "test-key"
            return httpx.Response(200, json=API_PAYLOAD)

        clock = Clock(NOW)
        service = service_with(handler, clock=clock)

        fresh = await service.get_exchange_rates()
        cached = await service.get_exchange_rates()
        assert fresh.rates["USD"] == 0.0125
        assert fresh.from_cache is False
        assert cached.from_cache is True
        assert len(calls) == 1

        clock.now = NOW + timedelta(hours=2)
        await service.get_exchange_rates()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=API_PAYLOAD)

        service = service_with(handler)
        await service.get_exchange_rates()
        await service.get_exchange_rates(force_refresh=True)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_uses_fallback(self):
        service = service_with(lambda request: httpx.Response(429, text="Too Many Requests"))
        result = await service.get_exchange_rates()
        assert result.from_fallback is True
        assert result.success is False
        assert result.rates == FALLBACK_RATES
        assert "rate limit" in result.error

    @pytest.mark.asyncio
    async def test_network_error_uses_fallback(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out")

        result = await service_with(handler).get_exchange_rates()
        assert result.from_fallback is True

    @pytest.mark.asyncio
    async def test_malformed_response_uses_fallback(self):
        result = await service_with(lambda request: httpx.Response(200, json={"oops": True})).get_exchange_rates()
        assert result.from_fallback is True

    @pytest.mark.asyncio
    async def test_conversions(self):
        service = service_with(lambda request: httpx.Response(200, json=API_PAYLOAD))
        assert await service.convert_to_base(100, "USD") == Decimal("8000.00")
        assert await service.convert_from_base(8000, "USD") == Decimal("100.00")
        assert await service.convert_to_base(250, "INR") == Decimal("250.00")
        assert await service.convert(100, "USD", "EUR") == Decimal("80.00")

    @pytest.mark.asyncio
    async def test_unknown_currency_raises(self):
        service = service_with(lambda request: httpx.Response(200, json=API_PAYLOAD))
        with pytest.raises(CurrencyConversionError):
            await service.convert_to_base(100, "GBP")

    def test_supported_currencies_include_base(self):
        service = CurrencyService(api_key="")
        supported = service.supported_currencies()
        assert supported[0] == "INR"
        assert "BND" in supported
