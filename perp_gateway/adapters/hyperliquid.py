"""
Perp Gateway - Hyperliquid Perpetuals Adapter.

============================================================
PURPOSE
============================================================
Adapter for the Hyperliquid API.

ENDPOINTS:
- POST /info      unsigned reads (meta, allMids, clearinghouseState,
                  openOrders)
- POST /exchange  L1-action signed writes (order, cancel,
                  updateLeverage)

WIRE RULES:
- Order wire dict keys in order a, b, p, s, r, t
- Prices and sizes are decimal strings
- A 200 response can still carry per-order errors; each status
  is decoded into RestingOrder / FilledOrder / RejectedOrder

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..config import HyperliquidConfig, TimeoutConfig
from ..errors import GatewayError, InstrumentNotFound, InvalidParameterError, SizeValidationError, map_hyperliquid_error
from ..formatting import format_decimal, hyperliquid_price
from ..signing import L1ActionSigner, ensure_signed
from ..types import (
    AccountBalance,
    AssetMetadata,
    FilledOrder,
    OpenOrder,
    OrderKind,
    OrderParameters,
    OrderResult,
    OrderSide,
    Position,
    RejectedOrder,
    RestingOrder,
    TimeInForce,
)
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


TIME_IN_FORCE = {
    TimeInForce.GTC: "Gtc",
    TimeInForce.IOC: "Ioc",
    TimeInForce.ALO: "Alo",
}

# Slippage band for market orders submitted without a limit price
DEFAULT_MARKET_SLIPPAGE = Decimal("0.01")


def decode_status(status: Any) -> OrderResult:
    """Decode one entry of response.data.statuses."""
    if isinstance(status, dict):
        if "error" in status:
            return RejectedOrder(reason=str(status["error"]))
        if "filled" in status:
            filled = status["filled"]
            return FilledOrder(
                order_id=str(filled["oid"]),
                filled_size=Decimal(str(filled["totalSz"])),
                average_price=Decimal(str(filled["avgPx"])),
            )
        if "resting" in status:
            return RestingOrder(order_id=str(status["resting"]["oid"]))
    if status == "waitingForFill" or status == "waitingForTrigger":
        return RestingOrder(order_id="")
    return RejectedOrder(reason=f"Unrecognized order status: {status}")


# ============================================================
# HYPERLIQUID ADAPTER
# ============================================================

class HyperliquidAdapter(ExchangeAdapter):
    """
    Hyperliquid perpetuals adapter.
    
    Instruments are coin names such as "BTC". Reads are made for
    config.user_address; writes are signed by the API wallet.
    """
    
    def __init__(
        self,
        config: HyperliquidConfig,
        timeout_config: Optional[TimeoutConfig] = None,
        signer: Optional[L1ActionSigner] = None,
    ):
        """
        Initialize Hyperliquid adapter.
        
        Raises:
            CredentialError: Private key missing or invalid
        """
        self._config = config
        self._base_url = config.base_url
        credentials = config.credentials
        self._user_address = credentials.user_address
        self._signer = signer or L1ActionSigner(
            credentials.private_key,
            is_mainnet=not config.is_testnet,
            vault_address=config.vault_address,
        )
        super().__init__(timeout_config)
    
    @property
    def exchange_id(self) -> str:
        return "hyperliquid"
    
    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------
    
    async def _info(self, body: Dict[str, Any]) -> Any:
        status, payload = await self._send(
            "POST", f"{self._base_url}/info", f"info.{body['type']}",
            headers={"Content-Type": "application/json"},
            json_body=body,
        )
        if status >= 400:
            raise map_hyperliquid_error(str(payload)[:200], status)
        return payload
    
    async def _exchange(self, action: Dict[str, Any], operation: str) -> Dict[str, Any]:
        """
        Sign and post an action.
        
        Returns:
            response.data (or response) of an "ok" reply
            
        Raises:
            ExchangeRejected: status "err" or HTTP error
        """
        envelope = ensure_signed(self._signer.sign(action))
        status, payload = await self._send(
            "POST", f"{self._base_url}/exchange", operation,
            headers={"Content-Type": "application/json"},
            json_body=envelope.body,
            log_params={"action": action, "nonce": envelope.nonce},
        )
        if status >= 400:
            raise map_hyperliquid_error(str(payload)[:200], status)
        if not isinstance(payload, dict) or payload.get("status") != "ok":
            message = payload.get("response") if isinstance(payload, dict) else payload
            raise map_hyperliquid_error(str(message), status)
        
        response = payload.get("response") or {}
        if isinstance(response, dict) and "data" in response:
            return response["data"]
        return response
    
    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------
    
    async def _load_metadata(self) -> Dict[str, AssetMetadata]:
        data = await self._info({"type": "meta"})
        metadata = {}
        for index, asset in enumerate(data.get("universe", [])):
            size_decimals = int(asset["szDecimals"])
            metadata[asset["name"]] = AssetMetadata(
                instrument=asset["name"],
                size_decimals=size_decimals,
                price_decimals=max(6 - size_decimals, 0),
                max_leverage=int(asset.get("maxLeverage", 50)),
                isolated_only=bool(asset.get("onlyIsolated", False)),
                asset_index=index,
            )
        return metadata
    
    async def _fetch_all_prices(self) -> Dict[str, Decimal]:
        data = await self._info({"type": "allMids"})
        return {coin: Decimal(str(mid)) for coin, mid in data.items()}
    
    async def _fetch_price(self, instrument: str) -> Decimal:
        mids = await self._fetch_all_prices()
        if instrument not in mids:
            raise InstrumentNotFound(instrument, self.exchange_id)
        return mids[instrument]
    
    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------
    
    def _require_user(self) -> str:
        if not self._user_address:
            raise GatewayError("HYPERLIQUID_USER_ADDRESS is not configured", code="CREDENTIALS_MISSING")
        return self._user_address
    
    async def _fetch_positions(self) -> List[Position]:
        data = await self._info({"type": "clearinghouseState", "user": self._require_user()})
        positions = []
        for item in data.get("assetPositions", []):
            pos = item["position"]
            leverage = pos.get("leverage") or {}
            positions.append(Position(
                instrument=pos["coin"],
                signed_size=Decimal(str(pos["szi"])),
                entry_price=Decimal(str(pos["entryPx"])) if pos.get("entryPx") else None,
                unrealized_pnl=Decimal(str(pos.get("unrealizedPnl") or "0")),
                leverage=int(leverage["value"]) if leverage.get("value") else None,
            ))
        return positions
    
    async def _fetch_open_orders(self, instrument: Optional[str] = None) -> List[OpenOrder]:
        data = await self._info({"type": "openOrders", "user": self._require_user()})
        return [
            OpenOrder(
                order_id=str(order["oid"]),
                instrument=order["coin"],
                side=OrderSide.BUY if order["side"] == "B" else OrderSide.SELL,
                size=Decimal(str(order["sz"])),
                price=Decimal(str(order["limitPx"])),
                order_kind=order.get("orderType"),
                reduce_only=bool(order.get("reduceOnly", False)),
            )
            for order in data
            if instrument is None or order["coin"] == instrument
        ]
    
    async def _fetch_balance(self) -> AccountBalance:
        data = await self._info({"type": "clearinghouseState", "user": self._require_user()})
        summary = data["marginSummary"]
        unrealized = sum(
            (Decimal(str(item["position"].get("unrealizedPnl") or "0")) for item in data.get("assetPositions", [])),
            Decimal("0"),
        )
        return AccountBalance(
            asset="USDC",
            total_equity=Decimal(str(summary["accountValue"])),
            available_balance=Decimal(str(data.get("withdrawable") or "0")),
            unrealized_pnl=unrealized,
            margin_used=Decimal(str(summary.get("totalMarginUsed") or "0")),
        )
    
    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------
    
    def _wire_price(self, price: Decimal, metadata: AssetMetadata) -> str:
        return format_decimal(hyperliquid_price(price, metadata.size_decimals), metadata.price_decimals)
    
    async def order_wire(self, params: OrderParameters) -> Dict[str, Any]:
        """Build the order wire dict {a, b, p, s, r, t}."""
        metadata = await self._metadata_for(params.instrument)
        size = format_decimal(params.size, metadata.size_decimals)
        if size == "0":
            raise SizeValidationError(
                f"Order size {params.size} rounds to zero for {params.instrument}",
                code="SIZE_TOO_SMALL",
            )
        
        if params.order_kind.is_trigger:
            if params.trigger_price is None:
                raise GatewayError("Trigger order requires a trigger price", code="INVALID_ORDER")
            trigger_px = self._wire_price(params.trigger_price, metadata)
            price = self._wire_price(params.limit_price, metadata) if params.limit_price else trigger_px
            order_type = {
                "trigger": {
                    "isMarket": True,
                    "triggerPx": trigger_px,
                    "tpsl": "sl" if params.order_kind == OrderKind.STOP else "tp",
                }
            }
        elif params.order_kind == OrderKind.MARKET:
            limit_price = params.limit_price
            if limit_price is None:
                mid = await self._fetch_price(params.instrument)
                factor = 1 + DEFAULT_MARKET_SLIPPAGE if params.is_buy else 1 - DEFAULT_MARKET_SLIPPAGE
                limit_price = mid * factor
            price = self._wire_price(limit_price, metadata)
            order_type = {"limit": {"tif": "Ioc"}}
        else:
            if params.limit_price is None:
                raise GatewayError("Limit order requires a price", code="INVALID_ORDER")
            if params.time_in_force not in TIME_IN_FORCE:
                raise GatewayError(
                    f"Time in force {params.time_in_force.value} not supported by hyperliquid",
                    code="INVALID_ORDER",
                )
            price = self._wire_price(params.limit_price, metadata)
            order_type = {"limit": {"tif": TIME_IN_FORCE[params.time_in_force]}}
        
        wire = {
            "a": metadata.asset_index,
            "b": params.is_buy,
            "p": price,
            "s": size,
            "r": params.reduce_only,
            "t": order_type,
        }
        if params.client_order_id:
            wire["c"] = params.client_order_id
        return wire
    
    async def _submit_order(self, params: OrderParameters) -> OrderResult:
        wire = await self.order_wire(params)
        action = {"type": "order", "orders": [wire], "grouping": "na"}
        data = await self._exchange(action, "submit_order")
        
        statuses = data.get("statuses", []) if isinstance(data, dict) else []
        if not statuses:
            return RejectedOrder(reason="Empty order status list")
        return decode_status(statuses[0])
    
    async def _cancel_order(self, instrument: str, order_id: str) -> Dict[str, Any]:
        if not str(order_id).isdigit():
            raise InvalidParameterError(f"Invalid order id: {order_id!r}", code="INVALID_PARAMETER")
        metadata = await self._metadata_for(instrument)
        action = {"type": "cancel", "cancels": [{"a": metadata.asset_index, "o": int(order_id)}]}
        data = await self._exchange(action, "cancel_order")
        self._raise_on_status_errors(data)
        return {"instrument": instrument, "order_id": order_id, "statuses": data.get("statuses", [])}
    
    async def _cancel_all_orders(self, instrument: Optional[str] = None) -> Dict[str, Any]:
        orders = await self._fetch_open_orders(instrument)
        if not orders:
            return {"cancelled": 0}
        
        cancels = []
        for order in orders:
            metadata = await self._metadata_for(order.instrument)
            cancels.append({"a": metadata.asset_index, "o": int(order.order_id)})
        
        data = await self._exchange({"type": "cancel", "cancels": cancels}, "cancel_all")
        self._raise_on_status_errors(data)
        return {"cancelled": len(cancels), "statuses": data.get("statuses", [])}
    
    async def _update_leverage(self, instrument: str, leverage: int, cross: bool) -> Dict[str, Any]:
        metadata = await self._metadata_for(instrument)
        action = {
            "type": "updateLeverage",
            "asset": metadata.asset_index,
            "isCross": cross,
            "leverage": leverage,
        }
        await self._exchange(action, "set_leverage")
        return {"instrument": instrument, "leverage": leverage, "cross": cross}
    
    @staticmethod
    def _raise_on_status_errors(data: Any) -> None:
        if not isinstance(data, dict):
            return
        errors = [s["error"] for s in data.get("statuses", []) if isinstance(s, dict) and "error" in s]
        if errors:
            raise map_hyperliquid_error("; ".join(errors))
