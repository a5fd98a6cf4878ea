"""
Perp Gateway - Binance USD-M Futures Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Binance futures REST API (fapi).

AUTHENTICATION:
- HMAC-SHA256 over the insertion-ordered query string
- X-MBX-APIKEY header
- POST bodies are form-encoded; GET/DELETE carry the query

The Aster adapter reuses this class: both venues speak the
same order, position and error dialect.

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..config import BinanceConfig, TimeoutConfig
from ..errors import ExchangeRejected, GatewayError, SizeValidationError, map_binance_error
from ..formatting import (
    decimals_from_step,
    format_decimal,
    round_to_step,
    truncate_to_step,
)
from ..signing import HmacSigner, encode_query, ensure_signed
from ..types import (
    AccountBalance,
    AssetMetadata,
    OpenOrder,
    OrderKind,
    OrderParameters,
    OrderResult,
    OrderSide,
    Position,
    RejectedOrder,
    TimeInForce,
)
from .base import ExchangeAdapter, filled_or_resting


logger = logging.getLogger(__name__)


FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}

TIME_IN_FORCE = {
    TimeInForce.GTC: "GTC",
    TimeInForce.IOC: "IOC",
    TimeInForce.FOK: "FOK",
    TimeInForce.ALO: "GTX",
}

ORDER_TYPES = {
    OrderKind.MARKET: "MARKET",
    OrderKind.LIMIT: "LIMIT",
    OrderKind.STOP: "STOP_MARKET",
    OrderKind.TAKE_PROFIT: "TAKE_PROFIT_MARKET",
}

# "No need to change margin type"
MARGIN_TYPE_UNCHANGED = -4046


def decode_order_response(data: Dict[str, Any]) -> OrderResult:
    """Decode a Binance-dialect order response into a tagged result."""
    status = data.get("status", "")
    executed = Decimal(str(data.get("executedQty") or "0"))
    average = Decimal(str(data.get("avgPrice") or "0"))
    
    if status in ("REJECTED", "EXPIRED") and executed == 0:
        return RejectedOrder(reason=f"Order {status.lower()} without fill")
    return filled_or_resting(data["orderId"], executed, average if average > 0 else None)


def parse_symbol_metadata(symbol: Dict[str, Any]) -> AssetMetadata:
    """Build AssetMetadata from an exchangeInfo symbol entry."""
    quantity_step = price_step = None
    for filt in symbol.get("filters", []):
        if filt["filterType"] == "LOT_SIZE":
            quantity_step = Decimal(filt["stepSize"])
        elif filt["filterType"] == "PRICE_FILTER":
            price_step = Decimal(filt["tickSize"])
    
    return AssetMetadata(
        instrument=symbol["symbol"],
        size_decimals=decimals_from_step(quantity_step) if quantity_step else int(symbol.get("quantityPrecision", 3)),
        price_decimals=decimals_from_step(price_step) if price_step else int(symbol.get("pricePrecision", 2)),
        max_leverage=125,
        quantity_step=quantity_step,
        price_step=price_step,
    )


def parse_account_balance(data: Dict[str, Any], asset: str = "USDT") -> AccountBalance:
    """Build AccountBalance from a futures account snapshot (multi-asset totals)."""
    def amount(key: str) -> Decimal:
        return Decimal(str(data.get(key) or "0"))
    
    return AccountBalance(
        asset=asset,
        total_equity=amount("totalMarginBalance"),
        available_balance=amount("availableBalance"),
        unrealized_pnl=amount("totalUnrealizedProfit"),
        margin_used=amount("totalInitialMargin"),
    )


# ============================================================
# BINANCE FUTURES ADAPTER
# ============================================================

class BinanceAdapter(ExchangeAdapter):
    """
    Binance USD-M futures adapter.
    
    Instruments are venue symbols such as "BTCUSDT".
    """
    
    # Endpoints
    EXCHANGE_INFO_PATH = "/fapi/v1/exchangeInfo"
    PRICE_PATH = "/fapi/v1/ticker/price"
    ORDER_PATH = "/fapi/v1/order"
    CANCEL_PATH = "/fapi/v1/order"
    CANCEL_ALL_PATH = "/fapi/v1/allOpenOrders"
    OPEN_ORDERS_PATH = "/fapi/v1/openOrders"
    POSITIONS_PATH = "/fapi/v2/positionRisk"
    ACCOUNT_PATH = "/fapi/v2/account"
    LEVERAGE_PATH = "/fapi/v1/leverage"
    MARGIN_TYPE_PATH = "/fapi/v1/marginType"
    
    # workingType sent with trigger orders (None: venue default)
    TRIGGER_WORKING_TYPE: Optional[str] = None
    
    def __init__(
        self,
        config: BinanceConfig,
        timeout_config: Optional[TimeoutConfig] = None,
        signer: Optional[HmacSigner] = None,
    ):
        """
        Initialize Binance adapter.
        
        Args:
            config: Venue configuration
            timeout_config: Request timeouts
            signer: Pre-built signer (built from config when omitted)
            
        Raises:
            CredentialError: API key or secret missing
        """
        self._config = config
        self._base_url = config.base_url
        if signer is None:
            credentials = config.credentials
            logger.debug(f"Building HMAC signer for {credentials!r}")
            signer = HmacSigner(credentials.api_key, credentials.api_secret, recv_window=config.recv_window)
        self._signer = signer
        super().__init__(timeout_config)
    
    @property
    def exchange_id(self) -> str:
        return "binance"
    
    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------
    
    def _raise_for_error(self, status: int, payload: Any) -> None:
        code = msg = None
        if isinstance(payload, dict) and "code" in payload and "msg" in payload:
            code, msg = payload["code"], payload["msg"]
            if status < 400 and int(code) >= 0:
                return
        elif status < 400:
            return
        raise map_binance_error(
            int(code) if code is not None else status,
            msg or str(payload)[:200],
            status,
            exchange_id=self.exchange_id,
        )
    
    async def _public(self, path: str, params: Optional[Dict[str, Any]] = None, operation: str = "") -> Any:
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{encode_query(params)}"
        status, payload = await self._send("GET", url, operation or path)
        self._raise_for_error(status, payload)
        return payload
    
    async def _signed(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        operation: str = "",
    ) -> Any:
        """HMAC-signed request; the signed string is the transmitted string."""
        envelope = ensure_signed(self._signer.sign(params or {}))
        return await self._dispatch(method, path, envelope.body, envelope.headers, envelope.parameters, operation)
    
    async def _dispatch(
        self,
        method: str,
        path: str,
        body: str,
        headers: Dict[str, str],
        log_params: Dict[str, Any],
        operation: str,
    ) -> Any:
        if method == "POST":
            status, payload = await self._send(
                method, f"{self._base_url}{path}", operation or path,
                headers={**headers, **FORM_HEADERS},
                data=body,
                log_params=log_params,
            )
        else:
            status, payload = await self._send(
                method, f"{self._base_url}{path}?{body}", operation or path,
                headers=headers,
                log_params=log_params,
            )
        self._raise_for_error(status, payload)
        return payload
    
    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------
    
    async def _load_metadata(self) -> Dict[str, AssetMetadata]:
        data = await self._public(self.EXCHANGE_INFO_PATH, operation="exchange_info")
        return {
            symbol["symbol"]: parse_symbol_metadata(symbol)
            for symbol in data.get("symbols", [])
        }
    
    async def _fetch_price(self, instrument: str) -> Decimal:
        data = await self._public(self.PRICE_PATH, {"symbol": instrument}, operation="ticker_price")
        return Decimal(str(data["price"]))
    
    async def _fetch_all_prices(self) -> Dict[str, Decimal]:
        data = await self._public(self.PRICE_PATH, operation="ticker_price")
        return {item["symbol"]: Decimal(str(item["price"])) for item in data}
    
    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------
    
    async def _fetch_positions(self) -> List[Position]:
        data = await self._signed("GET", self.POSITIONS_PATH, operation="positions")
        positions = []
        for pos in data:
            entry = Decimal(str(pos.get("entryPrice") or "0"))
            positions.append(Position(
                instrument=pos["symbol"],
                signed_size=Decimal(str(pos["positionAmt"])),
                entry_price=entry if entry > 0 else None,
                unrealized_pnl=Decimal(str(pos.get("unRealizedProfit") or "0")),
                leverage=int(pos["leverage"]) if pos.get("leverage") else None,
            ))
        return positions
    
    async def _fetch_open_orders(self, instrument: Optional[str] = None) -> List[OpenOrder]:
        params = {"symbol": instrument} if instrument else {}
        data = await self._signed("GET", self.OPEN_ORDERS_PATH, params, operation="open_orders")
        return [
            OpenOrder(
                order_id=str(order["orderId"]),
                instrument=order["symbol"],
                side=OrderSide(order["side"]),
                size=Decimal(str(order["origQty"])),
                price=Decimal(str(order["price"])) if Decimal(str(order.get("price") or "0")) > 0 else None,
                order_kind=order.get("type"),
                reduce_only=bool(order.get("reduceOnly", False)),
            )
            for order in data
        ]
    
    async def _fetch_balance(self) -> AccountBalance:
        data = await self._signed("GET", self.ACCOUNT_PATH, operation="account")
        return parse_account_balance(data)
    
    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------
    
    def _format_size(self, size: Decimal, metadata: AssetMetadata) -> str:
        if metadata.quantity_step:
            size = truncate_to_step(size, metadata.quantity_step)
        text = format_decimal(size, metadata.size_decimals)
        if text == "0":
            raise SizeValidationError(
                f"Order size {size} rounds to zero for {metadata.instrument}",
                code="SIZE_TOO_SMALL",
            )
        return text
    
    def _format_price(self, price: Decimal, metadata: AssetMetadata) -> str:
        if metadata.price_step:
            price = round_to_step(price, metadata.price_step)
        return format_decimal(price, metadata.price_decimals)
    
    def _order_params(self, params: OrderParameters, metadata: AssetMetadata) -> Dict[str, Any]:
        """Wire parameters in the order they are signed and sent."""
        wire: Dict[str, Any] = {
            "symbol": params.instrument,
            "side": params.side.value,
            "type": ORDER_TYPES[params.order_kind],
            "quantity": self._format_size(params.size, metadata),
        }
        if params.order_kind == OrderKind.LIMIT:
            if params.limit_price is None:
                raise GatewayError("Limit order requires a price", code="INVALID_ORDER")
            wire["price"] = self._format_price(params.limit_price, metadata)
            wire["timeInForce"] = TIME_IN_FORCE[params.time_in_force]
        if params.order_kind.is_trigger:
            if params.trigger_price is None:
                raise GatewayError("Trigger order requires a trigger price", code="INVALID_ORDER")
            wire["stopPrice"] = self._format_price(params.trigger_price, metadata)
            if self.TRIGGER_WORKING_TYPE:
                wire["workingType"] = self.TRIGGER_WORKING_TYPE
        if params.reduce_only:
            wire["reduceOnly"] = True
        if params.client_order_id:
            wire["newClientOrderId"] = params.client_order_id
        return wire
    
    async def _submit_order(self, params: OrderParameters) -> OrderResult:
        metadata = await self._metadata_for(params.instrument)
        wire = self._order_params(params, metadata)
        try:
            data = await self._signed("POST", self.ORDER_PATH, wire, operation="submit_order")
        except ExchangeRejected as e:
            return RejectedOrder(reason=e.message)
        return decode_order_response(data)
    
    async def _cancel_order(self, instrument: str, order_id: str) -> Dict[str, Any]:
        return await self._signed(
            "DELETE", self.CANCEL_PATH,
            {"symbol": instrument, "orderId": order_id},
            operation="cancel_order",
        )
    
    async def _cancel_all_orders(self, instrument: Optional[str] = None) -> Dict[str, Any]:
        if instrument:
            symbols = [instrument]
        else:
            symbols = sorted({order.instrument for order in await self._fetch_open_orders()})
        
        for symbol in symbols:
            await self._signed("DELETE", self.CANCEL_ALL_PATH, {"symbol": symbol}, operation="cancel_all")
        return {"instruments": symbols}
    
    async def _update_leverage(self, instrument: str, leverage: int, cross: bool) -> Dict[str, Any]:
        try:
            await self._signed(
                "POST", self.MARGIN_TYPE_PATH,
                {"symbol": instrument, "marginType": "CROSSED" if cross else "ISOLATED"},
                operation="margin_type",
            )
        except ExchangeRejected as e:
            if e.exchange_code != str(MARGIN_TYPE_UNCHANGED):
                raise
        
        return await self._signed(
            "POST", self.LEVERAGE_PATH,
            {"symbol": instrument, "leverage": leverage},
            operation="set_leverage",
        )
