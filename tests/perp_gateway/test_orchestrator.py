"""
Order Orchestrator Tests.

============================================================
PURPOSE
============================================================
Workflow behaviour against the in-memory venue.

TEST CATEGORIES:
- Quick long / short: sizing, protective prices, failure paths
- Close position: validation before any order
- Close all: sequential, per-instrument outcomes
- Leverage bounds
- Balance reads through the reader views
- Concurrency: known race between close-all and quick trades,
  overlapping protective legs

============================================================
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from perp_gateway.adapters.mock import MockConfig, MockExchangeAdapter
from perp_gateway.errors import PartialProtectionFailure
from perp_gateway.orchestrator import OrderOrchestrator, protective_prices
from perp_gateway.readers import AdapterBalanceReader
from perp_gateway.types import (
    AccountBalance,
    ClosePositionOutcome,
    FilledOrder,
    OrderKind,
    Position,
    QuickTradeResult,
    ResultEnvelope,
    TimeInForce,
)


@pytest.fixture
def adapter():
    return MockExchangeAdapter()


@pytest.fixture
def orchestrator(adapter):
    return OrderOrchestrator(adapter)


# ============================================================
# PROTECTIVE PRICES
# ============================================================

class TestProtectivePrices:
    """Tests for the leverage-scaled stop/target formula."""
    
    def test_long(self):
        """Test long stop below and target above entry."""
        sl, tp = protective_prices(Decimal("50000"), True, Decimal("5"), Decimal("10"), 5)
        
        assert sl == Decimal("49500")
        assert tp == Decimal("51000")
    
    def test_short_is_mirrored(self):
        """Test short stop above and target below entry."""
        sl, tp = protective_prices(Decimal("50000"), False, Decimal("5"), Decimal("10"), 5)
        
        assert sl == Decimal("50500")
        assert tp == Decimal("49000")


# ============================================================
# QUICK TRADES
# ============================================================

class TestQuickTrade:
    """Tests for quick_long / quick_short."""
    
    @pytest.mark.asyncio
    async def test_quick_long_defaults(self, orchestrator, adapter):
        """Test the full happy path with default parameters."""
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is True
        trade = result.data
        assert isinstance(trade, QuickTradeResult)
        assert trade.computed_entry_price == Decimal("50000")
        assert trade.computed_size == Decimal("0.01")
        assert trade.computed_stop_loss_price == Decimal("49500")
        assert trade.computed_take_profit_price == Decimal("51000")
        assert trade.fully_protected
        
        assert adapter.leverage_calls == [("BTC", 5, True)]
        entry, first, second = adapter.submitted_orders
        assert entry.is_buy is True
        assert entry.order_kind == OrderKind.MARKET
        assert entry.time_in_force == TimeInForce.IOC
        assert entry.limit_price == Decimal("50500")
        assert entry.reduce_only is False
        
        protective = {first.order_kind: first, second.order_kind: second}
        stop = protective[OrderKind.STOP]
        target = protective[OrderKind.TAKE_PROFIT]
        assert stop.trigger_price == Decimal("49500") and target.trigger_price == Decimal("51000")
        for order in (stop, target):
            assert order.is_buy is False
            assert order.reduce_only is True
            assert order.size == trade.computed_size
        
        assert adapter.positions["BTC"].signed_size == Decimal("0.01")
    
    @pytest.mark.asyncio
    async def test_quick_short_mirrored(self, orchestrator, adapter):
        """Test short direction and mirrored protective orders."""
        result = await orchestrator.quick_short("BTC", 100)
        
        trade = result.data
        assert trade.computed_stop_loss_price == Decimal("50500")
        assert trade.computed_take_profit_price == Decimal("49000")
        
        entry = adapter.submitted_orders[0]
        assert entry.is_buy is False
        assert entry.limit_price == Decimal("49500")
        assert all(order.is_buy for order in adapter.submitted_orders[1:])
        assert adapter.positions["BTC"].signed_size == Decimal("-0.01")
    
    @pytest.mark.asyncio
    async def test_custom_parameters(self, orchestrator, adapter):
        """Test explicit leverage and percentages."""
        adapter.set_price("ETH", "2000")
        
        result = await orchestrator.quick_long(
            "ETH", 50, stop_loss_percent=2, take_profit_percent=4, leverage=10,
        )
        
        trade = result.data
        assert trade.computed_size == Decimal("0.25")
        assert trade.computed_stop_loss_price == Decimal("1996")
        assert trade.computed_take_profit_price == Decimal("2008")
        assert adapter.leverage_calls == [("ETH", 10, True)]
    
    @pytest.mark.asyncio
    async def test_price_failure_places_no_orders(self, orchestrator, adapter):
        """Test that a missing price aborts before any order."""
        adapter.fail("get_current_price", "upstream down")
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is False
        assert result.error == "Failed to get current price"
        assert adapter.submitted_orders == []
    
    @pytest.mark.asyncio
    async def test_leverage_failure_is_not_fatal(self, orchestrator, adapter):
        """Test that set-leverage failure only warns."""
        adapter.fail("set_leverage", "leverage locked")
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is True
        assert len(adapter.submitted_orders) == 3
    
    @pytest.mark.asyncio
    async def test_entry_failure_aborts(self, orchestrator, adapter):
        """Test that an entry rejection surfaces verbatim and stops the workflow."""
        adapter.fail("submit_order:market", "Insufficient margin to place order.")
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is False
        assert result.error == "Insufficient margin to place order."
        assert result.data is None
        assert "submit_order" in adapter.operation_log
        assert adapter.submitted_orders == []
    
    @pytest.mark.asyncio
    async def test_partial_protection_failure(self, orchestrator, adapter):
        """Test that a failed stop-loss is reported but the trade succeeds."""
        adapter.fail("submit_order:stop", "Trigger price too close")
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is True
        trade = result.data
        assert trade.entry_result.success is True
        assert trade.stop_loss_result.success is False
        assert trade.take_profit_result.success is True
        assert trade.protection_failures == [
            PartialProtectionFailure(leg="stop_loss", error="Trigger price too close"),
        ]
        assert not trade.fully_protected
    
    @pytest.mark.asyncio
    async def test_both_protective_legs_fail(self, orchestrator, adapter):
        """Test that each leg is recorded independently."""
        adapter.fail("submit_order:stop", "no sl")
        adapter.fail("submit_order:take_profit", "no tp")
        
        result = await orchestrator.quick_short("BTC", 100)
        
        assert result.success is True
        assert [f.leg for f in result.data.protection_failures] == ["stop_loss", "take_profit"]
    
    @pytest.mark.asyncio
    async def test_invalid_inputs(self, orchestrator, adapter):
        """Test local validation of leverage and amount."""
        result = await orchestrator.quick_long("BTC", 100, leverage=0)
        assert result.error == "Leverage must be between 1 and 50"
        
        result = await orchestrator.quick_long("BTC", 0)
        assert result.success is False
        
        assert adapter.operation_log == []
    
    @pytest.mark.asyncio
    async def test_zero_price_places_no_orders(self, orchestrator, adapter):
        adapter.set_price("BTC", 0)
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is False
        assert result.error == "Failed to get current price"
        assert adapter.submitted_orders == []
    
    @pytest.mark.asyncio
    async def test_unparseable_inputs(self, orchestrator, adapter):
        """Test that non-numeric amounts fail before any venue call."""
        result = await orchestrator.quick_long("BTC", "abc")
        assert result.success is False
        assert result.error == "Invalid USD amount: Not a number: 'abc'"
        
        result = await orchestrator.quick_short("BTC", 100, stop_loss_percent="five")
        assert result.success is False
        assert result.error.startswith("Invalid stop-loss percent")
        
        assert adapter.operation_log == []
    
    @pytest.mark.asyncio
    async def test_protective_leg_exception_is_reported(self, orchestrator, adapter):
        """Test that an exception in one leg still returns the filled trade."""
        with patch.object(orchestrator, "place_take_profit", AsyncMock(side_effect=RuntimeError("socket closed"))):
            result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is True
        trade = result.data
        assert isinstance(trade.entry_result.data, FilledOrder)
        assert trade.stop_loss_result.success is True
        assert trade.take_profit_result.success is False
        assert trade.take_profit_result.error == "RuntimeError: socket closed"
        assert trade.protection_failures == [
            PartialProtectionFailure(leg="take_profit", error="RuntimeError: socket closed"),
        ]
        assert adapter.positions["BTC"].signed_size == Decimal("0.01")


# ============================================================
# CLOSE POSITION
# ============================================================

class TestClosePosition:
    """Tests for close_position."""
    
    @pytest.mark.asyncio
    async def test_full_close_long(self, orchestrator, adapter):
        """Test reduce-only sell of the whole long."""
        adapter.set_position("BTC", "0.05")
        
        result = await orchestrator.close_position("BTC")
        
        assert result.success is True
        assert isinstance(result.data, FilledOrder)
        order = adapter.submitted_orders[0]
        assert order.is_buy is False
        assert order.reduce_only is True
        assert order.size == Decimal("0.05")
        assert order.limit_price == Decimal("49500")
        assert "BTC" not in adapter.positions
    
    @pytest.mark.asyncio
    async def test_partial_close_short(self, orchestrator, adapter):
        """Test reduce-only buy of part of a short."""
        adapter.set_position("ETH", "-0.5")
        
        result = await orchestrator.close_position("ETH", size="0.2", slippage_percent=2)
        
        assert result.success is True
        order = adapter.submitted_orders[0]
        assert order.is_buy is True
        assert order.size == Decimal("0.2")
        assert order.limit_price == Decimal("3060")
        assert adapter.positions["ETH"].signed_size == Decimal("-0.3")
    
    @pytest.mark.asyncio
    async def test_size_exceeding_position(self, orchestrator, adapter):
        """Test that an oversized close sends nothing."""
        adapter.set_position("BTC", "0.05")
        
        result = await orchestrator.close_position("BTC", size="0.1")
        
        assert result.success is False
        assert result.error == "Close size 0.1 exceeds position size 0.05"
        assert adapter.submitted_orders == []
    
    @pytest.mark.asyncio
    async def test_no_position(self, orchestrator, adapter):
        """Test closing a flat instrument."""
        result = await orchestrator.close_position("BTC")
        
        assert result.success is False
        assert result.error == "No position found for BTC"
        assert adapter.submitted_orders == []
    
    @pytest.mark.asyncio
    async def test_position_read_failure(self, orchestrator, adapter):
        """Test that a failed read is propagated."""
        adapter.fail("get_positions", "account endpoint down")
        
        result = await orchestrator.close_position("BTC")
        
        assert result.success is False
        assert result.error == "account endpoint down"


# ============================================================
# CLOSE ALL
# ============================================================

class TestCloseAllPositions:
    """Tests for close_all_positions."""
    
    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, orchestrator, adapter):
        """Test that one failing close does not fail the whole run."""
        adapter.set_position("BTC", "0.01")
        adapter.set_position("ETH", "-0.05")
        adapter.fail("submit_order:ETH", "Order could not immediately match")
        
        result = await orchestrator.close_all_positions()
        
        assert result.success is True
        outcomes = {o.instrument: o for o in result.data}
        assert all(isinstance(o, ClosePositionOutcome) for o in result.data)
        assert outcomes["BTC"].result.success is True
        assert outcomes["ETH"].result.success is False
        assert outcomes["ETH"].result.error == "Order could not immediately match"
        assert "BTC" not in adapter.positions
        assert adapter.positions["ETH"].signed_size == Decimal("-0.05")
    
    @pytest.mark.asyncio
    async def test_nothing_to_close(self, orchestrator, adapter):
        """Test the empty account message."""
        result = await orchestrator.close_all_positions()
        
        assert result.success is True
        assert result.data == {"message": "No open positions to close"}
    
    @pytest.mark.asyncio
    async def test_positions_unavailable(self, orchestrator, adapter):
        """Test failure when the position list cannot be read."""
        adapter.fail("get_positions", "boom")
        
        result = await orchestrator.close_all_positions()
        
        assert result.success is False
        assert result.error == "Failed to fetch positions"
    
    @pytest.mark.asyncio
    async def test_sequential_order(self, orchestrator, adapter):
        """Test that positions are closed one after another."""
        adapter.set_position("BTC", "0.01")
        adapter.set_position("ETH", "0.1")
        
        await orchestrator.close_all_positions()
        
        assert [o.instrument for o in adapter.submitted_orders] == ["BTC", "ETH"]


# ============================================================
# LEVERAGE
# ============================================================

class TestSetLeverage:
    """Tests for set_leverage."""
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("leverage", [0, 51, -3])
    async def test_out_of_range(self, orchestrator, adapter, leverage):
        """Test that invalid leverage never reaches the venue."""
        result = await orchestrator.set_leverage("BTC", leverage)
        
        assert result.success is False
        assert result.error == "Leverage must be between 1 and 50"
        assert adapter.leverage_calls == []
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("leverage", [1, 50])
    async def test_bounds_inclusive(self, orchestrator, adapter, leverage):
        """Test both ends of the range."""
        result = await orchestrator.set_leverage("BTC", leverage, cross=False)
        
        assert result.success is True
        assert adapter.leverage_calls == [("BTC", leverage, False)]


# ============================================================
# SINGLE ORDERS
# ============================================================

class TestSingleOrders:
    """Tests for direct order helpers."""
    
    @pytest.mark.asyncio
    async def test_limit_order_rests(self, orchestrator, adapter):
        """Test a GTC limit order becomes a resting order."""
        result = await orchestrator.place_limit_order("BTC", True, "0.01", "45000")
        
        assert result.success is True
        assert result.data.status == "resting"
        assert len(adapter.open_orders) == 1
    
    @pytest.mark.asyncio
    async def test_cancel_all(self, orchestrator, adapter):
        """Test cancelling resting orders."""
        await orchestrator.place_limit_order("BTC", True, "0.01", "45000")
        await orchestrator.place_limit_order("ETH", False, "0.1", "3500")
        
        result = await orchestrator.cancel_all_orders("BTC")
        
        assert result.data == {"cancelled": 1}
        assert [o.instrument for o in adapter.open_orders.values()] == ["ETH"]
    
    @pytest.mark.asyncio
    async def test_reduce_only_rejection_is_failure(self, orchestrator, adapter):
        """Test that a decoded rejection becomes a failed envelope."""
        result = await orchestrator.place_market_order("BTC", True, "0.01", reduce_only=True)
        
        assert result.success is False
        assert result.error == "Reduce only order would increase position"
    
    @pytest.mark.asyncio
    async def test_unparseable_order_inputs(self, orchestrator, adapter):
        """Test that bad sizes and prices never reach the venue."""
        limit = await orchestrator.place_limit_order("BTC", True, "0.01", "n/a")
        stop = await orchestrator.place_stop_loss("BTC", False, "lots", "49000")
        adapter.set_position("BTC", "0.05")
        close = await orchestrator.close_position("BTC", size="bad")
        
        assert limit.error == "Invalid price: Not a number: 'n/a'"
        assert stop.error == "Invalid size: Not a number: 'lots'"
        assert close.error == "Invalid close size: Not a number: 'bad'"
        assert adapter.submitted_orders == []


# ============================================================
# BALANCE
# ============================================================

class TestBalanceReads:
    """Tests for account balance through the reader view."""
    
    @pytest.mark.asyncio
    async def test_balance_after_quick_trade(self, orchestrator, adapter):
        """Test margin used by the filled entry at the applied leverage."""
        await orchestrator.quick_long("BTC", 100)
        reader = AdapterBalanceReader(adapter)
        
        result = await reader.get_balance()
        
        assert result.data == AccountBalance(
            asset="USD",
            total_equity=Decimal("10000"),
            available_balance=Decimal("9899"),
            unrealized_pnl=Decimal("0"),
            margin_used=Decimal("101"),
        )
        assert (await reader.get_available_balance()).data == Decimal("9899")
        assert (await reader.get_total_unrealized_pnl()).data == Decimal("0")
    
    @pytest.mark.asyncio
    async def test_balance_failure(self, adapter):
        adapter.fail("get_balance", "account endpoint down")
        reader = AdapterBalanceReader(adapter)
        
        result = await reader.get_available_balance()
        
        assert result.success is False
        assert result.error == "account endpoint down"


# ============================================================
# CONCURRENCY
# ============================================================

class TestConcurrency:
    """
    Workflows are not serialized against each other.
    
    close_all_positions acts on the position snapshot it read; a
    quick trade that fills after that read survives the close-all.
    These tests pin that behaviour so a change to it is deliberate.
    """
    
    @pytest.mark.asyncio
    async def test_close_all_races_with_concurrent_quick_trade(self):
        """Test that a position opened after the snapshot stays open."""
        adapter = MockExchangeAdapter(MockConfig(latency_seconds={"submit_order": 0.05}))
        orchestrator = OrderOrchestrator(adapter)
        
        trade, close_all = await asyncio.gather(
            orchestrator.quick_long("BTC", 100),
            orchestrator.close_all_positions(),
        )
        
        assert trade.success is True
        assert close_all.success is True
        assert close_all.data == {"message": "No open positions to close"}
        assert adapter.positions["BTC"].signed_size == Decimal("0.01")
    
    @pytest.mark.asyncio
    async def test_protective_legs_run_concurrently(self):
        """Test that SL and TP submissions overlap."""
        adapter = MockExchangeAdapter(MockConfig(latency_seconds={"submit_order": 0.01}))
        orchestrator = OrderOrchestrator(adapter)
        
        result = await orchestrator.quick_long("BTC", 100)
        
        assert result.success is True
        assert adapter.operation_log.count("submit_order") == 3
        assert adapter.peak_concurrency["submit_order"] == 2
    
    @pytest.mark.asyncio
    async def test_close_all_is_sequential(self):
        """Test that close-all never has two closes in flight."""
        adapter = MockExchangeAdapter(MockConfig(latency_seconds={"submit_order": 0.01}))
        adapter.set_position("BTC", "0.01")
        adapter.set_position("ETH", "-0.5")
        
        result = await OrderOrchestrator(adapter).close_all_positions()
        
        assert all(outcome.result.success for outcome in result.data)
        assert adapter.peak_concurrency["submit_order"] == 1


def test_envelope_to_dict():
    """Test envelope serialization keys."""
    ok = ResultEnvelope.ok({"x": 1}).to_dict()
    failed = ResultEnvelope.fail("nope").to_dict()
    
    assert ok["success"] is True and ok["data"] == {"x": 1} and "error" not in ok
    assert failed == {"success": False, "error": "nope", "timestamp": failed["timestamp"]}


def test_position_helpers():
    """Test signed size helpers."""
    short = Position(instrument="ETH", signed_size=Decimal("-0.05"))
    
    assert short.is_long is False
    assert short.abs_size == Decimal("0.05")
    assert short.is_open
