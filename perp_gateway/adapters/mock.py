"""
Perp Gateway - Mock Exchange Adapter.

============================================================
PURPOSE
============================================================
In-memory venue for tests and dry runs.

FEATURES:
- Configurable latency per operation
- Error injection per operation (and per order leg)
- Immediate fills for market / IOC orders, resting otherwise
- Position bookkeeping with signed sizes
- Account balance derived from positions and leverage
- Peak in-flight calls per operation, for overlap checks

============================================================
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..config import TimeoutConfig
from ..errors import ExchangeRejected, InstrumentNotFound
from ..types import (
    AccountBalance,
    AssetMetadata,
    FilledOrder,
    OpenOrder,
    OrderKind,
    OrderParameters,
    OrderResult,
    Position,
    RejectedOrder,
    RestingOrder,
    TimeInForce,
)
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

def _default_prices() -> Dict[str, Decimal]:
    return {"BTC": Decimal("50000"), "ETH": Decimal("3000")}


def _default_metadata() -> Dict[str, AssetMetadata]:
    return {
        "BTC": AssetMetadata(instrument="BTC", size_decimals=5, price_decimals=1, max_leverage=50, asset_index=0),
        "ETH": AssetMetadata(instrument="ETH", size_decimals=4, price_decimals=2, max_leverage=50, asset_index=1),
    }


@dataclass
class MockConfig:
    """Configuration for mock adapter."""
    
    prices: Dict[str, Decimal] = field(default_factory=_default_prices)
    metadata: Dict[str, AssetMetadata] = field(default_factory=_default_metadata)
    
    wallet_balance: Decimal = Decimal("10000")
    """Settlement balance reported by get_balance."""
    
    latency_seconds: Dict[str, float] = field(default_factory=dict)
    """Operation name -> simulated latency."""
    
    failures: Dict[str, str] = field(default_factory=dict)
    """
    Operation name -> error message raised as ExchangeRejected.
    
    Order submissions also check "submit_order:<order kind>" and
    "submit_order:<instrument>".
    """


# ============================================================
# MOCK ADAPTER
# ============================================================

class MockExchangeAdapter(ExchangeAdapter):
    """Mock exchange adapter for testing."""
    
    def __init__(
        self,
        config: Optional[MockConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        self.config = config or MockConfig()
        super().__init__(timeout_config)
        
        self.positions: Dict[str, Position] = {}
        self.open_orders: Dict[str, OpenOrder] = {}
        self.submitted_orders: List[OrderParameters] = []
        self.leverage_calls: List[Tuple[str, int, bool]] = []
        self.operation_log: List[str] = []
        self.peak_concurrency: Dict[str, int] = {}
        """Operation name -> most calls observed in flight at once."""
        self._in_flight: Dict[str, int] = {}
        self._order_ids = itertools.count(1000)
        self._connected = False
    
    @property
    def exchange_id(self) -> str:
        return "mock"
    
    @property
    def is_connected(self) -> bool:
        return self._connected
    
    async def connect(self) -> None:
        self._connected = True
    
    async def disconnect(self) -> None:
        self._connected = False
    
    # --------------------------------------------------------
    # TEST CONTROLS
    # --------------------------------------------------------
    
    def set_price(self, instrument: str, price: Any) -> None:
        self.config.prices[instrument] = Decimal(str(price))
    
    def set_position(self, instrument: str, signed_size: Any, entry_price: Any = None) -> None:
        size = Decimal(str(signed_size))
        if size == 0:
            self.positions.pop(instrument, None)
            return
        self.positions[instrument] = Position(
            instrument=instrument,
            signed_size=size,
            entry_price=Decimal(str(entry_price)) if entry_price is not None else self.config.prices.get(instrument),
        )
    
    def fail(self, operation: str, message: str = "Injected failure") -> None:
        self.config.failures[operation] = message
    
    def clear_failures(self) -> None:
        self.config.failures.clear()
    
    async def _simulate(self, operation: str, *keys: str) -> None:
        self.operation_log.append(operation)
        self._in_flight[operation] = self._in_flight.get(operation, 0) + 1
        self.peak_concurrency[operation] = max(self.peak_concurrency.get(operation, 0), self._in_flight[operation])
        try:
            delay = self.config.latency_seconds.get(operation, 0)
            if delay:
                await asyncio.sleep(delay)
        finally:
            self._in_flight[operation] -= 1
        for key in (operation,) + keys:
            if key in self.config.failures:
                raise ExchangeRejected(self.config.failures[key], exchange_id=self.exchange_id)
    
    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------
    
    async def _load_metadata(self) -> Dict[str, AssetMetadata]:
        await self._simulate("get_asset_metadata")
        return dict(self.config.metadata)
    
    async def _fetch_price(self, instrument: str) -> Decimal:
        await self._simulate("get_current_price", f"get_current_price:{instrument}")
        if instrument not in self.config.prices:
            raise InstrumentNotFound(instrument, self.exchange_id)
        return self.config.prices[instrument]
    
    async def _fetch_all_prices(self) -> Dict[str, Decimal]:
        await self._simulate("get_all_prices")
        return dict(self.config.prices)
    
    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------
    
    async def _fetch_positions(self) -> List[Position]:
        await self._simulate("get_positions")
        return list(self.positions.values())
    
    async def _fetch_open_orders(self, instrument: Optional[str] = None) -> List[OpenOrder]:
        await self._simulate("get_open_orders")
        return [o for o in self.open_orders.values() if instrument is None or o.instrument == instrument]
    
    async def _fetch_balance(self) -> AccountBalance:
        await self._simulate("get_balance")
        leverage = {instrument: lev for instrument, lev, _ in self.leverage_calls}
        margin_used = sum(
            (p.abs_size * (p.entry_price or Decimal("0")) / leverage.get(p.instrument, 1) for p in self.positions.values()),
            Decimal("0"),
        )
        unrealized = sum((p.unrealized_pnl for p in self.positions.values()), Decimal("0"))
        equity = self.config.wallet_balance + unrealized
        return AccountBalance(
            asset="USD",
            total_equity=equity,
            available_balance=equity - margin_used,
            unrealized_pnl=unrealized,
            margin_used=margin_used,
        )
    
    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------
    
    def _apply_fill(self, params: OrderParameters, price: Decimal) -> None:
        current = self.positions.get(params.instrument)
        held = current.signed_size if current else Decimal("0")
        delta = params.size if params.is_buy else -params.size
        self.set_position(params.instrument, held + delta, entry_price=current.entry_price if current else price)
    
    async def _submit_order(self, params: OrderParameters) -> OrderResult:
        await self._simulate(
            "submit_order",
            f"submit_order:{params.order_kind.value}",
            f"submit_order:{params.instrument}",
        )
        await self._metadata_for(params.instrument)
        self.submitted_orders.append(params)
        order_id = str(next(self._order_ids))
        
        if params.reduce_only and not params.order_kind.is_trigger:
            current = self.positions.get(params.instrument)
            if current is None or current.is_long == params.is_buy:
                return RejectedOrder(reason="Reduce only order would increase position")
        
        immediate = params.order_kind == OrderKind.MARKET or (
            params.order_kind == OrderKind.LIMIT and params.time_in_force in (TimeInForce.IOC, TimeInForce.FOK)
        )
        if immediate:
            price = params.limit_price or self.config.prices[params.instrument]
            self._apply_fill(params, price)
            return FilledOrder(order_id=order_id, filled_size=params.size, average_price=price)
        
        self.open_orders[order_id] = OpenOrder(
            order_id=order_id,
            instrument=params.instrument,
            side=params.side,
            size=params.size,
            price=params.limit_price or params.trigger_price,
            order_kind=params.order_kind.value,
            reduce_only=params.reduce_only,
        )
        return RestingOrder(order_id=order_id)
    
    async def _cancel_order(self, instrument: str, order_id: str) -> Dict[str, Any]:
        await self._simulate("cancel_order")
        order = self.open_orders.get(order_id)
        if order is None or order.instrument != instrument:
            raise ExchangeRejected(f"Order {order_id} not found", exchange_id=self.exchange_id)
        del self.open_orders[order_id]
        return {"instrument": instrument, "order_id": order_id}
    
    async def _cancel_all_orders(self, instrument: Optional[str] = None) -> Dict[str, Any]:
        await self._simulate("cancel_all_orders")
        doomed = [oid for oid, o in self.open_orders.items() if instrument is None or o.instrument == instrument]
        for oid in doomed:
            del self.open_orders[oid]
        return {"cancelled": len(doomed)}
    
    async def _update_leverage(self, instrument: str, leverage: int, cross: bool) -> Dict[str, Any]:
        await self._simulate("set_leverage")
        self.leverage_calls.append((instrument, leverage, cross))
        return {"instrument": instrument, "leverage": leverage, "cross": cross}
