"""
Perp Gateway - Order Orchestrator.

============================================================
PURPOSE
============================================================
Multi-step trading workflows on top of one exchange adapter.

WORKFLOWS:
- Quick long / quick short: leverage, price, sizing, entry,
  then stop-loss and take-profit protection
- Close position: validated reduce-only exit
- Close all positions: sequential close of every open position
- Leverage: validated locally before any network call

============================================================
DESIGN PRINCIPLES
============================================================
- Every workflow answers with a ResultEnvelope, never raises
- Decimal arithmetic end to end; wire strings only in adapters
- Entry failure aborts; protection failure is reported, not fatal
- No cross-request locking: concurrent workflows on the same
  account are not serialized

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, List, Optional, Tuple, Union

from .adapters.base import ExchangeAdapter
from .config import TradingDefaults
from .errors import (
    InvalidParameterError,
    LeverageValidationError,
    NoPositionError,
    PartialProtectionFailure,
    PriceUnavailable,
    SizeValidationError,
)
from .formatting import to_decimal
from .readers import AdapterBalanceReader, AdapterMarketReader, BalanceReader, MarketReader
from .types import (
    ClosePositionOutcome,
    OrderKind,
    OrderParameters,
    OrderResult,
    QuickTradeResult,
    ResultEnvelope,
    TimeInForce,
)


logger = logging.getLogger(__name__)


Number = Union[Decimal, int, float, str]

HUNDRED = Decimal("100")

FETCH_POSITIONS_FAILED = "Failed to fetch positions"
NO_OPEN_POSITIONS = "No open positions to close"


def protective_prices(
    entry_price: Decimal,
    is_long: bool,
    stop_loss_percent: Decimal,
    take_profit_percent: Decimal,
    leverage: int,
) -> Tuple[Decimal, Decimal]:
    """
    Stop-loss and take-profit trigger prices.
    
    Percentages are of margin, so the price distance is scaled
    down by leverage: a 5% stop at 5x leverage sits 1% away.
    
    Returns:
        (stop_loss_price, take_profit_price)
    """
    sl_move = stop_loss_percent / HUNDRED / leverage
    tp_move = take_profit_percent / HUNDRED / leverage
    if is_long:
        return entry_price * (1 - sl_move), entry_price * (1 + tp_move)
    return entry_price * (1 + sl_move), entry_price * (1 - tp_move)


class OrderOrchestrator:
    """
    Trading surface for one venue.
    
    Readers default to views over the same adapter.
    """
    
    def __init__(
        self,
        adapter: ExchangeAdapter,
        market_reader: Optional[MarketReader] = None,
        balance_reader: Optional[BalanceReader] = None,
        defaults: Optional[TradingDefaults] = None,
    ):
        self._adapter = adapter
        self._market = market_reader or AdapterMarketReader(adapter)
        self._balance = balance_reader or AdapterBalanceReader(adapter)
        self._defaults = defaults or TradingDefaults()
    
    @property
    def adapter(self) -> ExchangeAdapter:
        return self._adapter
    
    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------
    
    async def _reference_price(self, instrument: str) -> Decimal:
        result = await self._market.get_current_price(instrument)
        if not result.success or result.data is None:
            raise PriceUnavailable(instrument, result.error)
        if result.data <= 0:
            raise PriceUnavailable(instrument, f"non-positive price {result.data}")
        return result.data
    
    @staticmethod
    def _decimal(value: Number, name: str) -> Decimal:
        try:
            return to_decimal(value)
        except ValueError as e:
            raise InvalidParameterError(f"Invalid {name}: {e}", code="INVALID_PARAMETER", context={name: str(value)})
    
    def _percent(self, value: Optional[Number], default: Decimal, name: str) -> Decimal:
        return default if value is None else self._decimal(value, name)
    
    def _slippage_price(self, price: Decimal, is_buy: bool, slippage_percent: Decimal) -> Decimal:
        move = slippage_percent / HUNDRED
        return price * (1 + move) if is_buy else price * (1 - move)
    
    def _validate_leverage(self, leverage: int) -> None:
        low, high = self._defaults.min_leverage, self._defaults.max_leverage
        if not isinstance(leverage, int) or isinstance(leverage, bool) or not low <= leverage <= high:
            raise LeverageValidationError(
                f"Leverage must be between {low} and {high}",
                code="INVALID_LEVERAGE",
                context={"leverage": leverage},
            )
    
    # --------------------------------------------------------
    # SINGLE ORDERS
    # --------------------------------------------------------
    
    async def place_market_order(
        self,
        instrument: str,
        is_buy: bool,
        size: Number,
        slippage_percent: Optional[Number] = None,
        reduce_only: bool = False,
    ) -> ResultEnvelope[OrderResult]:
        """
        Market-like order: IOC limit at the reference price moved by
        the slippage band in the trade's direction.
        """
        try:
            slippage = self._percent(slippage_percent, self._defaults.slippage_percent, "slippage")
            order_size = self._decimal(size, "size")
            price = await self._reference_price(instrument)
        except (InvalidParameterError, PriceUnavailable) as e:
            return ResultEnvelope.fail(e)
        
        return await self._adapter.place_order(OrderParameters(
            instrument=instrument,
            is_buy=is_buy,
            size=order_size,
            order_kind=OrderKind.MARKET,
            limit_price=self._slippage_price(price, is_buy, slippage),
            time_in_force=TimeInForce.IOC,
            reduce_only=reduce_only,
        ))
    
    async def place_limit_order(
        self,
        instrument: str,
        is_buy: bool,
        size: Number,
        price: Number,
        time_in_force: TimeInForce = TimeInForce.GTC,
        reduce_only: bool = False,
    ) -> ResultEnvelope[OrderResult]:
        try:
            params = OrderParameters(
                instrument=instrument,
                is_buy=is_buy,
                size=self._decimal(size, "size"),
                order_kind=OrderKind.LIMIT,
                limit_price=self._decimal(price, "price"),
                time_in_force=time_in_force,
                reduce_only=reduce_only,
            )
        except InvalidParameterError as e:
            return ResultEnvelope.fail(e)
        return await self._adapter.place_order(params)
    
    async def place_stop_loss(
        self,
        instrument: str,
        is_buy: bool,
        size: Number,
        trigger_price: Number,
    ) -> ResultEnvelope[OrderResult]:
        """Reduce-only stop trigger that executes at market."""
        return await self._place_trigger(OrderKind.STOP, instrument, is_buy, size, trigger_price)
    
    async def place_take_profit(
        self,
        instrument: str,
        is_buy: bool,
        size: Number,
        trigger_price: Number,
    ) -> ResultEnvelope[OrderResult]:
        """Reduce-only take-profit trigger that executes at market."""
        return await self._place_trigger(OrderKind.TAKE_PROFIT, instrument, is_buy, size, trigger_price)
    
    async def _place_trigger(
        self,
        kind: OrderKind,
        instrument: str,
        is_buy: bool,
        size: Number,
        trigger_price: Number,
    ) -> ResultEnvelope[OrderResult]:
        try:
            params = OrderParameters(
                instrument=instrument,
                is_buy=is_buy,
                size=self._decimal(size, "size"),
                order_kind=kind,
                trigger_price=self._decimal(trigger_price, "trigger price"),
                reduce_only=True,
            )
        except InvalidParameterError as e:
            return ResultEnvelope.fail(e)
        return await self._adapter.place_order(params)
    
    async def cancel_order(self, instrument: str, order_id: str) -> ResultEnvelope:
        return await self._adapter.cancel_order(instrument, order_id)
    
    async def cancel_all_orders(self, instrument: Optional[str] = None) -> ResultEnvelope:
        return await self._adapter.cancel_all_orders(instrument)
    
    # --------------------------------------------------------
    # LEVERAGE
    # --------------------------------------------------------
    
    async def set_leverage(self, instrument: str, leverage: int, cross: bool = True) -> ResultEnvelope:
        """Set leverage; values outside the accepted range never reach the venue."""
        try:
            self._validate_leverage(leverage)
        except LeverageValidationError as e:
            return ResultEnvelope.fail(e)
        return await self._adapter.set_leverage(instrument, leverage, cross)
    
    # --------------------------------------------------------
    # QUICK TRADES
    # --------------------------------------------------------
    
    async def quick_long(
        self,
        instrument: str,
        usd_amount: Number,
        stop_loss_percent: Optional[Number] = None,
        take_profit_percent: Optional[Number] = None,
        leverage: Optional[int] = None,
        slippage_percent: Optional[Number] = None,
    ) -> ResultEnvelope[QuickTradeResult]:
        """Open a protected long sized by margin in USD."""
        return await self._quick_trade(
            instrument, True, usd_amount,
            stop_loss_percent, take_profit_percent, leverage, slippage_percent,
        )
    
    async def quick_short(
        self,
        instrument: str,
        usd_amount: Number,
        stop_loss_percent: Optional[Number] = None,
        take_profit_percent: Optional[Number] = None,
        leverage: Optional[int] = None,
        slippage_percent: Optional[Number] = None,
    ) -> ResultEnvelope[QuickTradeResult]:
        """Open a protected short sized by margin in USD."""
        return await self._quick_trade(
            instrument, False, usd_amount,
            stop_loss_percent, take_profit_percent, leverage, slippage_percent,
        )
    
    async def _quick_trade(
        self,
        instrument: str,
        is_long: bool,
        usd_amount: Number,
        stop_loss_percent: Optional[Number],
        take_profit_percent: Optional[Number],
        leverage: Optional[int],
        slippage_percent: Optional[Number],
    ) -> ResultEnvelope[QuickTradeResult]:
        direction = "long" if is_long else "short"
        defaults = self._defaults
        leverage = defaults.leverage if leverage is None else leverage
        
        try:
            self._validate_leverage(leverage)
            sl_percent = self._percent(stop_loss_percent, defaults.stop_loss_percent, "stop-loss percent")
            tp_percent = self._percent(take_profit_percent, defaults.take_profit_percent, "take-profit percent")
            slippage = self._percent(slippage_percent, defaults.slippage_percent, "slippage")
            usd = self._decimal(usd_amount, "USD amount")
            if usd <= 0:
                raise SizeValidationError("USD amount must be positive", code="INVALID_SIZE")
        except (LeverageValidationError, InvalidParameterError, SizeValidationError) as e:
            return ResultEnvelope.fail(e)
        
        logger.info(f"Quick {direction} {instrument}: ${usd} at {leverage}x (SL {sl_percent}%, TP {tp_percent}%)")
        
        # 1. Leverage (best effort)
        leverage_result = await self._adapter.set_leverage(instrument, leverage, defaults.cross_margin)
        if not leverage_result.success:
            logger.warning(f"Failed to set leverage for {instrument}: {leverage_result.error}, continuing")
        
        # 2. Reference price
        try:
            price = await self._reference_price(instrument)
        except PriceUnavailable as e:
            return ResultEnvelope.fail(e)
        
        # 3. Sizing and protective levels
        size = usd * leverage / price
        stop_loss_price, take_profit_price = protective_prices(price, is_long, sl_percent, tp_percent, leverage)
        
        # 4. Entry
        entry_result = await self._adapter.place_order(OrderParameters(
            instrument=instrument,
            is_buy=is_long,
            size=size,
            order_kind=OrderKind.MARKET,
            limit_price=self._slippage_price(price, is_long, slippage),
            time_in_force=TimeInForce.IOC,
        ))
        if not entry_result.success:
            logger.error(f"Quick {direction} entry failed for {instrument}: {entry_result.error}")
            return ResultEnvelope(success=False, error=entry_result.error)
        
        # 5. Protection, both legs independent of each other
        outcomes = await asyncio.gather(
            self.place_stop_loss(instrument, not is_long, size, stop_loss_price),
            self.place_take_profit(instrument, not is_long, size, take_profit_price),
            return_exceptions=True,
        )
        
        failures: List[PartialProtectionFailure] = []
        legs: List[ResultEnvelope] = []
        for leg, outcome in zip(("stop_loss", "take_profit"), outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.error(f"Quick {direction} {instrument}: {leg} raised", exc_info=outcome)
                outcome = ResultEnvelope.fail(f"{type(outcome).__name__}: {outcome}")
            if not outcome.success:
                logger.warning(f"Quick {direction} {instrument}: {leg} not placed: {outcome.error}")
                failures.append(PartialProtectionFailure(leg=leg, error=outcome.error or "unknown error"))
            legs.append(outcome)
        stop_loss_result, take_profit_result = legs
        
        return ResultEnvelope.ok(QuickTradeResult(
            entry_result=entry_result,
            stop_loss_result=stop_loss_result,
            take_profit_result=take_profit_result,
            computed_entry_price=price,
            computed_size=size,
            computed_stop_loss_price=stop_loss_price,
            computed_take_profit_price=take_profit_price,
            protection_failures=failures,
        ))
    
    # --------------------------------------------------------
    # CLOSING
    # --------------------------------------------------------
    
    async def close_position(
        self,
        instrument: str,
        size: Optional[Number] = None,
        slippage_percent: Optional[Number] = None,
    ) -> ResultEnvelope[OrderResult]:
        """
        Close all or part of a position with a reduce-only IOC order.
        
        The position is re-read before sizing; a size larger than the
        position is refused without sending an order.
        """
        position_result = await self._balance.get_position(instrument)
        if not position_result.success:
            return ResultEnvelope.fail(position_result.error)
        
        position = position_result.data
        try:
            if position is None or not position.is_open:
                raise NoPositionError(instrument)
            
            close_size = position.abs_size if size is None else self._decimal(size, "close size")
            if close_size <= 0:
                raise SizeValidationError("Close size must be positive", code="INVALID_SIZE")
            if close_size > position.abs_size:
                raise SizeValidationError(
                    f"Close size {close_size} exceeds position size {position.abs_size}",
                    code="SIZE_EXCEEDS_POSITION",
                    context={"instrument": instrument},
                )
        except (NoPositionError, InvalidParameterError, SizeValidationError) as e:
            return ResultEnvelope.fail(e)
        
        logger.info(f"Closing {close_size} of {instrument} ({'long' if position.is_long else 'short'})")
        return await self.place_market_order(
            instrument,
            is_buy=not position.is_long,
            size=close_size,
            slippage_percent=slippage_percent,
            reduce_only=True,
        )
    
    async def close_all_positions(self, slippage_percent: Optional[Number] = None) -> ResultEnvelope[Any]:
        """
        Close every open position, one after another.
        
        Succeeds once the position list is obtained; each
        instrument's own outcome is kept in the returned list.
        """
        positions_result = await self._balance.get_positions()
        if not positions_result.success:
            logger.error(f"Close all: {positions_result.error}")
            return ResultEnvelope.fail(FETCH_POSITIONS_FAILED)
        
        open_positions = [p for p in positions_result.data or [] if p.is_open]
        if not open_positions:
            return ResultEnvelope.ok({"message": NO_OPEN_POSITIONS})
        
        outcomes: List[ClosePositionOutcome] = []
        for position in open_positions:
            result = await self.close_position(position.instrument, slippage_percent=slippage_percent)
            if not result.success:
                logger.warning(f"Close all: {position.instrument} failed: {result.error}")
            outcomes.append(ClosePositionOutcome(instrument=position.instrument, result=result))
        
        closed = sum(1 for outcome in outcomes if outcome.result.success)
        logger.info(f"Close all: {closed}/{len(outcomes)} positions closed")
        return ResultEnvelope.ok(outcomes)
