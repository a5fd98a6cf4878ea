"""
Exchange Adapter Tests.

============================================================
PURPOSE
============================================================
Tests shared by every adapter.

TEST CATEGORIES:
- Factory tests: Adapter creation
- Transport tests: timeout / network error mapping
- Logging tests: Credential masking
- Mock venue tests: Fills, rejections, injected failures

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from perp_gateway.adapters import (
    AdapterFactory,
    BinanceAdapter,
    HyperliquidAdapter,
    MockConfig,
    MockExchangeAdapter,
)
from perp_gateway.config import BinanceConfig, GatewayConfig, HyperliquidConfig
from perp_gateway.errors import CredentialError, NetworkError, RequestTimeout
from perp_gateway.logging_utils import AdapterLogger, mask_headers, mask_params, mask_url, mask_value
from perp_gateway.types import OrderKind, OrderParameters, TimeInForce


API_KEY = "supersecretkey"


def fake_session(status=200, text="", error=None):
    session = MagicMock(closed=False)
    if error is not None:
        session.request.side_effect = error
    else:
        response = MagicMock(status=status)
        response.text = AsyncMock(return_value=text)
        session.request.return_value.__aenter__.return_value = response
    return session


@pytest.fixture
def binance():
    return BinanceAdapter(BinanceConfig(api_key=API_KEY, api_secret="secret"))


# ============================================================
# FACTORY TESTS
# ============================================================

class TestAdapterFactory:
    """Tests for AdapterFactory."""
    
    def test_list_supported_exchanges(self):
        """Test listing supported exchanges."""
        supported = AdapterFactory.list_supported()
        
        for name in ("binance", "okx", "aster", "hyperliquid", "mock"):
            assert name in supported
    
    def test_create_mock_adapter(self):
        """Test creating mock adapter."""
        adapter = AdapterFactory.create("MOCK")
        
        assert isinstance(adapter, MockExchangeAdapter)
        assert adapter.exchange_id == "mock"
    
    def test_create_from_config(self):
        """Test creating a venue adapter from GatewayConfig."""
        config = GatewayConfig(hyperliquid=HyperliquidConfig(
            user_address="0x" + "ab" * 20,
            api_private_key="0x" + "22" * 32,
        ))
        
        adapter = AdapterFactory.create("hyperliquid", config)
        
        assert isinstance(adapter, HyperliquidAdapter)
    
    def test_missing_credentials(self):
        """Test that an unconfigured venue cannot be built."""
        with pytest.raises(CredentialError):
            AdapterFactory.create("binance", GatewayConfig())
    
    def test_unsupported_exchange(self):
        """Test error for unsupported exchange."""
        with pytest.raises(ValueError, match="Unsupported exchange: kraken"):
            AdapterFactory.create("kraken")
    
    def test_custom_creator(self):
        """Test registering an additional venue."""
        AdapterFactory.register("paper", lambda config: MockExchangeAdapter())
        try:
            assert isinstance(AdapterFactory.create("paper"), MockExchangeAdapter)
            assert "paper" in AdapterFactory.list_supported()
        finally:
            AdapterFactory.unregister("paper")


# ============================================================
# TRANSPORT TESTS
# ============================================================

class TestTransport:
    """Tests for the shared HTTP choke point."""
    
    @pytest.mark.asyncio
    async def test_timeout_maps_to_request_timeout(self, binance):
        binance._session = fake_session(error=asyncio.TimeoutError())
        
        with pytest.raises(RequestTimeout):
            await binance._send("GET", "https://example.test/x", "ticker_price")
    
    @pytest.mark.asyncio
    async def test_client_error_maps_to_network_error(self, binance):
        binance._session = fake_session(error=aiohttp.ClientConnectionError("refused"))
        
        with pytest.raises(NetworkError, match="refused"):
            await binance._send("GET", "https://example.test/x", "ticker_price")
    
    @pytest.mark.asyncio
    async def test_json_and_text_payloads(self, binance):
        binance._session = fake_session(status=200, text='{"price": "1.5"}')
        assert await binance._send("GET", "https://example.test/x", "ticker_price") == (200, {"price": "1.5"})
        
        binance._session = fake_session(status=502, text="Bad Gateway")
        assert await binance._send("GET", "https://example.test/x", "ticker_price") == (502, "Bad Gateway")
    
    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_envelope(self, binance):
        """Test that public operations never raise transport errors."""
        binance._session = fake_session(error=asyncio.TimeoutError())
        
        result = await binance.get_current_price("BTCUSDT")
        
        assert result.success is False
        assert "timeout" in result.error.lower()
    
    @pytest.mark.asyncio
    async def test_context_manager_closes_session(self):
        adapter = BinanceAdapter(BinanceConfig(api_key=API_KEY, api_secret="secret"))
        
        async with adapter:
            assert adapter.is_connected
        
        assert not adapter.is_connected


# ============================================================
# LOGGING TESTS
# ============================================================

class TestLogging:
    """Tests for credential masking."""
    
    def test_mask_value(self):
        assert mask_value("abcdefgh") == "abcd...***"
        assert mask_value("abc") == "***"
        assert mask_value(None) == "***"
    
    def test_mask_headers(self):
        masked = mask_headers({"X-MBX-APIKEY": API_KEY, "OK-ACCESS-SIGN": "c2lnbmF0dXJl", "Accept": "json"})
        
        assert masked["X-MBX-APIKEY"] == "supe...***"
        assert masked["OK-ACCESS-SIGN"] == "c2ln...***"
        assert masked["Accept"] == "json"
    
    def test_mask_params_nested(self):
        """Test masking inside nested payloads."""
        key = "0x" + "ab" * 32
        masked = mask_params({
            "symbol": "BTCUSDT",
            "signature": {"r": key, "s": key, "v": 27},
            "note": f"key={key}",
        })
        
        assert masked["symbol"] == "BTCUSDT"
        assert key not in str(masked)
        assert masked["note"] == "key=0x***"
    
    def test_mask_url(self):
        assert mask_url("https://x/y?a=1&signature=deadbeef") == "https://x/y?a=1&signature=***"
    
    def test_request_ids(self):
        logger = AdapterLogger("binance")
        
        assert logger.log_request("op", "GET", "/a") == "binance-1"
        assert logger.log_request("op", "GET", "/b") == "binance-2"
    
    @pytest.mark.asyncio
    async def test_no_secrets_in_logs(self, binance, caplog):
        """Test that a signed request leaves no key or signature in the log."""
        caplog.set_level(logging.DEBUG, logger="perp_gateway")
        binance._session = fake_session(status=200, text="[]")
        
        await binance.get_positions()
        
        assert "REQUEST:" in caplog.text
        assert API_KEY not in caplog.text
        assert "signature=***" in caplog.text


# ============================================================
# MOCK VENUE TESTS
# ============================================================

class TestMockAdapter:
    """Tests for MockExchangeAdapter."""
    
    @pytest.mark.asyncio
    async def test_market_fill_updates_position(self):
        adapter = MockExchangeAdapter()
        
        result = await adapter.place_order(OrderParameters(instrument="ETH", is_buy=False, size=Decimal("0.5")))
        
        assert result.data.status == "filled"
        assert adapter.positions["ETH"].signed_size == Decimal("-0.5")
    
    @pytest.mark.asyncio
    async def test_ioc_limit_fills_gtc_rests(self):
        adapter = MockExchangeAdapter()
        
        ioc = await adapter.place_order(OrderParameters(
            instrument="BTC", is_buy=True, size=Decimal("0.1"),
            order_kind=OrderKind.LIMIT, limit_price=Decimal("50100"), time_in_force=TimeInForce.IOC,
        ))
        gtc = await adapter.place_order(OrderParameters(
            instrument="BTC", is_buy=True, size=Decimal("0.1"),
            order_kind=OrderKind.LIMIT, limit_price=Decimal("45000"),
        ))
        
        assert ioc.data.average_price == Decimal("50100")
        assert gtc.data.status == "resting"
        orders = await adapter.get_open_orders("BTC")
        assert [o.order_id for o in orders.data] == [gtc.data.order_id]
    
    @pytest.mark.asyncio
    async def test_injected_failure(self):
        adapter = MockExchangeAdapter(MockConfig(failures={"get_all_prices": "maintenance"}))
        
        result = await adapter.get_all_prices()
        
        assert result.success is False
        assert result.error == "maintenance"
        
        adapter.clear_failures()
        assert (await adapter.get_all_prices()).success is True
    
    @pytest.mark.asyncio
    async def test_unknown_instrument(self):
        adapter = MockExchangeAdapter()
        
        result = await adapter.get_current_price("DOGE")
        
        assert result.error == "Asset DOGE not found"
    
    @pytest.mark.asyncio
    async def test_cancel_unknown_order(self):
        adapter = MockExchangeAdapter()
        
        result = await adapter.cancel_order("BTC", "404")
        
        assert result.success is False
        assert result.error == "Order 404 not found"
