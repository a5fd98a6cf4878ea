"""
OKX Adapter Tests.

============================================================
PURPOSE
============================================================
OKX V5 request signing, contract conversion and response
handling with the transport patched out.

============================================================
"""

import base64
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from perp_gateway.adapters.okx import OKXAdapter
from perp_gateway.config import OKXConfig
from perp_gateway.signing import OkxSigner
from perp_gateway.types import OrderKind, OrderParameters, RejectedOrder, RestingOrder, TimeInForce


TIMESTAMP = "2020-12-08T09:08:57.715Z"

INSTRUMENTS = {
    "code": "0",
    "msg": "",
    "data": [
        {"instId": "BTC-USDT-SWAP", "lotSz": "0.01", "tickSz": "0.1", "ctVal": "0.01", "lever": "100"},
        {"instId": "ETH-USDT-SWAP", "lotSz": "1", "tickSz": "0.01", "ctVal": "0.1", "lever": "100"},
    ],
}


def ok(data):
    return 200, {"code": "0", "msg": "", "data": data}


def patch_send(adapter, *responses):
    return patch.object(adapter, "_send", AsyncMock(side_effect=list(responses)))


@pytest.fixture
def okx():
    config = OKXConfig(api_key="key", api_secret="secret", passphrase="phrase")
    return OKXAdapter(config, signer=OkxSigner("key", "secret", "phrase", clock=lambda: TIMESTAMP))


class TestOKXOrders:
    """Tests for order submission."""
    
    @pytest.mark.asyncio
    async def test_market_order_in_contracts(self, okx):
        """Test base-unit size conversion and the signed JSON body."""
        with patch_send(okx, (200, INSTRUMENTS), ok([{"ordId": "312269865356374016", "sCode": "0", "sMsg": ""}])) as send:
            result = await okx.place_order(OrderParameters(
                instrument="BTC-USDT-SWAP", is_buy=True, size=Decimal("0.01234"),
            ))
        
        assert result.data == RestingOrder(order_id="312269865356374016")
        
        args, kwargs = send.call_args
        assert args[1] == "https://www.okx.com/api/v5/trade/order"
        body = kwargs["data"]
        assert json.loads(body) == {
            "instId": "BTC-USDT-SWAP", "tdMode": "cross", "side": "buy", "sz": "1.23", "ordType": "market",
        }
        
        message = f"{TIMESTAMP}POST/api/v5/trade/order{body}"
        expected = base64.b64encode(hmac.new(b"secret", message.encode(), hashlib.sha256).digest()).decode()
        headers = kwargs["headers"]
        assert headers["OK-ACCESS-SIGN"] == expected
        assert headers["OK-ACCESS-TIMESTAMP"] == TIMESTAMP
        assert headers["OK-ACCESS-PASSPHRASE"] == "phrase"
        assert "x-simulated-trading" not in headers
    
    @pytest.mark.asyncio
    async def test_post_only_limit(self, okx):
        with patch_send(okx, (200, INSTRUMENTS), ok([{"ordId": "1", "sCode": "0"}])) as send:
            await okx.place_order(OrderParameters(
                instrument="ETH-USDT-SWAP", is_buy=False, size=Decimal("0.35"),
                order_kind=OrderKind.LIMIT, limit_price=Decimal("3100.123"),
                time_in_force=TimeInForce.ALO,
            ))
        
        body = json.loads(send.call_args.kwargs["data"])
        assert body["ordType"] == "post_only"
        assert body["px"] == "3100.12"
        assert body["sz"] == "3"
    
    @pytest.mark.asyncio
    async def test_stop_loss_is_algo_order(self, okx):
        """Test conditional order fields."""
        with patch_send(okx, (200, INSTRUMENTS), ok([{"algoId": "678", "sCode": "0"}])) as send:
            result = await okx.place_order(OrderParameters(
                instrument="BTC-USDT-SWAP", is_buy=False, size=Decimal("0.01"),
                order_kind=OrderKind.STOP, trigger_price=Decimal("49500"), reduce_only=True,
            ))
        
        assert result.data == RestingOrder(order_id="678")
        assert send.call_args.args[1].endswith("/api/v5/trade/order-algo")
        body = json.loads(send.call_args.kwargs["data"])
        assert body["ordType"] == "conditional"
        assert body["slTriggerPx"] == "49500"
        assert body["slOrdPx"] == "-1"
        assert body["reduceOnly"] is True
    
    @pytest.mark.asyncio
    async def test_item_error_message(self, okx):
        """Test that sMsg is surfaced for per-order failures."""
        reply = {
            "code": "1",
            "msg": "Operation failed.",
            "data": [{"ordId": "", "sCode": "51008", "sMsg": "Order failed. Insufficient USDT balance in account."}],
        }
        with patch_send(okx, (200, INSTRUMENTS), (200, reply)):
            result = await okx.place_order(OrderParameters(
                instrument="BTC-USDT-SWAP", is_buy=True, size=Decimal("1"),
            ))
        
        assert result.success is False
        assert result.error == "Order failed. Insufficient USDT balance in account."
        assert isinstance(result.data, RejectedOrder)
    
    @pytest.mark.asyncio
    async def test_below_one_lot(self, okx):
        with patch_send(okx, (200, INSTRUMENTS)):
            result = await okx.place_order(OrderParameters(
                instrument="ETH-USDT-SWAP", is_buy=True, size=Decimal("0.05"),
            ))
        
        assert result.success is False


class TestOKXReads:
    """Tests for public and account reads."""
    
    @pytest.mark.asyncio
    async def test_ticker_is_unsigned(self, okx):
        with patch_send(okx, ok([{"instId": "BTC-USDT-SWAP", "last": "50000.1"}])) as send:
            result = await okx.get_current_price("BTC-USDT-SWAP")
        
        assert result.data == Decimal("50000.1")
        args, kwargs = send.call_args
        assert args[1] == "https://www.okx.com/api/v5/market/ticker?instId=BTC-USDT-SWAP"
        assert "OK-ACCESS-SIGN" not in kwargs["headers"]
    
    @pytest.mark.asyncio
    async def test_positions_in_base_units(self, okx):
        """Test contract to base-unit conversion and short sign."""
        positions = [
            {"instId": "BTC-USDT-SWAP", "pos": "2", "posSide": "net", "avgPx": "50000", "upl": "1.5", "lever": "10"},
            {"instId": "ETH-USDT-SWAP", "pos": "3", "posSide": "short", "avgPx": "3000", "upl": "0", "lever": "5"},
        ]
        with patch_send(okx, ok(positions), (200, INSTRUMENTS)) as send:
            result = await okx.get_positions()
        
        assert send.call_args_list[0].args[1].endswith("/api/v5/account/positions?instType=SWAP")
        sizes = {p.instrument: p.signed_size for p in result.data}
        assert sizes == {"BTC-USDT-SWAP": Decimal("0.02"), "ETH-USDT-SWAP": Decimal("-0.3")}
    
    @pytest.mark.asyncio
    async def test_balance_uses_settlement_detail(self, okx):
        """Test the USDT detail of the account balance."""
        account = [{
            "totalEq": "10500.3",
            "imr": "800",
            "details": [
                {"ccy": "BTC", "eq": "0.1", "availEq": "0.1", "upl": "0"},
                {"ccy": "USDT", "eq": "5012.5", "availEq": "4200", "availBal": "4100", "upl": "12.5", "imr": "812.5"},
            ],
        }]
        with patch_send(okx, ok(account)) as send:
            result = await okx.get_balance()
        
        args, kwargs = send.call_args
        assert args[0] == "GET"
        assert args[1] == "https://www.okx.com/api/v5/account/balance?ccy=USDT"
        assert "OK-ACCESS-SIGN" in kwargs["headers"]
        
        balance = result.data
        assert balance.asset == "USDT"
        assert balance.total_equity == Decimal("5012.5")
        assert balance.available_balance == Decimal("4200")
        assert balance.unrealized_pnl == Decimal("12.5")
        assert balance.margin_used == Decimal("812.5")
    
    @pytest.mark.asyncio
    async def test_empty_balance_data(self, okx):
        with patch_send(okx, ok([])):
            result = await okx.get_balance()
        
        assert result.success is False
        assert result.error.startswith("Malformed okx response: IndexError")
    
    @pytest.mark.asyncio
    async def test_error_code(self, okx):
        with patch_send(okx, (401, {"code": "50111", "msg": "Invalid OK-ACCESS-KEY", "data": []})):
            result = await okx.get_positions()
        
        assert result.success is False
        assert result.error == "Invalid OK-ACCESS-KEY"


class TestOKXAccount:
    """Tests for leverage and cancels."""
    
    @pytest.mark.asyncio
    async def test_set_leverage(self, okx):
        with patch_send(okx, ok([{"instId": "BTC-USDT-SWAP", "lever": "10", "mgnMode": "isolated"}])) as send:
            result = await okx.set_leverage("BTC-USDT-SWAP", 10, cross=False)
        
        assert result.success is True
        assert json.loads(send.call_args.kwargs["data"]) == {
            "instId": "BTC-USDT-SWAP", "lever": "10", "mgnMode": "isolated",
        }
    
    @pytest.mark.asyncio
    async def test_cancel_all_batches(self, okx):
        pending = [
            {"instId": "BTC-USDT-SWAP", "ordId": "1", "side": "buy", "sz": "1", "px": "45000", "ordType": "limit"},
            {"instId": "ETH-USDT-SWAP", "ordId": "2", "side": "sell", "sz": "2", "px": "3500", "ordType": "limit"},
        ]
        with patch_send(okx, ok(pending), (200, INSTRUMENTS), ok([])) as send:
            result = await okx.cancel_all_orders()
        
        assert result.data == {"cancelled": 2}
        assert json.loads(send.call_args.kwargs["data"]) == [
            {"instId": "BTC-USDT-SWAP", "ordId": "1"},
            {"instId": "ETH-USDT-SWAP", "ordId": "2"},
        ]


def test_simulated_trading_header():
    signer = OkxSigner("key", "secret", "phrase", simulated=True, clock=lambda: TIMESTAMP)
    
    envelope = signer.sign("GET", "/api/v5/account/positions")
    
    assert envelope.headers["x-simulated-trading"] == "1"
