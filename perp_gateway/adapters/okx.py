"""
Perp Gateway - OKX Perpetual Swap Adapter.

============================================================
PURPOSE
============================================================
Adapter for OKX V5 swaps.

AUTHENTICATION:
- OK-ACCESS-SIGN = base64(HMAC-SHA256(ts + METHOD + path + body))
- Passphrase header
- x-simulated-trading: 1 in demo mode

SIZE UNITS:
- OKX trades contracts; sizes are converted with ctVal so the
  gateway keeps working in base units

============================================================
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..config import OKXConfig, TimeoutConfig
from ..errors import ExchangeRejected, GatewayError, SizeValidationError, map_okx_error
from ..formatting import decimals_from_step, format_decimal, round_to_step, truncate_to_step
from ..signing import OkxSigner, encode_query, ensure_signed
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
    RestingOrder,
    TimeInForce,
)
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


SETTLEMENT_CCY = "USDT"

LIMIT_ORDER_TYPES = {
    TimeInForce.GTC: "limit",
    TimeInForce.IOC: "ioc",
    TimeInForce.FOK: "fok",
    TimeInForce.ALO: "post_only",
}


class OKXAdapter(ExchangeAdapter):
    """
    OKX perpetual swap adapter.
    
    Instruments are instIds such as "BTC-USDT-SWAP".
    """
    
    def __init__(
        self,
        config: OKXConfig,
        timeout_config: Optional[TimeoutConfig] = None,
        signer: Optional[OkxSigner] = None,
        margin_mode: str = "cross",
    ):
        """
        Initialize OKX adapter.
        
        Raises:
            CredentialError: Key, secret or passphrase missing
        """
        self._config = config
        self._base_url = config.rest_url
        if signer is None:
            credentials = config.credentials
            logger.debug(f"Building OKX signer for {credentials!r}")
            signer = OkxSigner(
                credentials.api_key,
                credentials.api_secret,
                credentials.passphrase,
                simulated=config.use_simulated,
            )
        self._signer = signer
        self._margin_mode = margin_mode
        super().__init__(timeout_config)
    
    @property
    def exchange_id(self) -> str:
        return "okx"
    
    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------
    
    def _handle_response(self, status: int, payload: Any) -> Any:
        if not isinstance(payload, dict):
            raise map_okx_error(str(status), str(payload)[:200], status)
        code = str(payload.get("code", "0"))
        if code != "0":
            # Per-item errors carry the useful message
            items = payload.get("data") or []
            if items and isinstance(items[0], dict) and str(items[0].get("sCode", "0")) != "0":
                raise map_okx_error(items[0]["sCode"], items[0].get("sMsg", ""), status)
            raise map_okx_error(code, payload.get("msg", ""), status)
        return payload.get("data", [])
    
    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        signed: bool = True,
        operation: str = "",
    ) -> Any:
        request_path = f"{path}?{encode_query(params)}" if params else path
        body_text = json.dumps(body, separators=(",", ":")) if body is not None else ""
        
        headers = {"Content-Type": "application/json"}
        if signed:
            envelope = ensure_signed(self._signer.sign(method, request_path, body_text))
            headers = envelope.headers
        
        status, payload = await self._send(
            method, f"{self._base_url}{request_path}", operation or path,
            headers=headers,
            data=body_text or None,
            log_params=body if isinstance(body, dict) else params,
        )
        return self._handle_response(status, payload)
    
    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------
    
    async def _load_metadata(self) -> Dict[str, AssetMetadata]:
        data = await self._request(
            "GET", "/api/v5/public/instruments", {"instType": "SWAP"},
            signed=False, operation="instruments",
        )
        metadata = {}
        for inst in data:
            lot_size = Decimal(inst["lotSz"])
            tick_size = Decimal(inst["tickSz"])
            metadata[inst["instId"]] = AssetMetadata(
                instrument=inst["instId"],
                size_decimals=decimals_from_step(lot_size),
                price_decimals=decimals_from_step(tick_size),
                max_leverage=int(Decimal(inst.get("lever") or "50")),
                quantity_step=lot_size,
                price_step=tick_size,
                contract_value=Decimal(inst.get("ctVal") or "1"),
            )
        return metadata
    
    async def _fetch_price(self, instrument: str) -> Decimal:
        data = await self._request(
            "GET", "/api/v5/market/ticker", {"instId": instrument},
            signed=False, operation="ticker",
        )
        if not data:
            raise GatewayError(f"No ticker for {instrument}", code="PRICE_UNAVAILABLE")
        return Decimal(data[0]["last"])
    
    async def _fetch_all_prices(self) -> Dict[str, Decimal]:
        data = await self._request(
            "GET", "/api/v5/market/tickers", {"instType": "SWAP"},
            signed=False, operation="tickers",
        )
        return {item["instId"]: Decimal(item["last"]) for item in data}
    
    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------
    
    async def _fetch_positions(self) -> List[Position]:
        data = await self._request("GET", "/api/v5/account/positions", {"instType": "SWAP"}, operation="positions")
        positions = []
        for pos in data:
            contracts = Decimal(pos.get("pos") or "0")
            if pos.get("posSide") == "short":
                contracts = -abs(contracts)
            metadata = await self._metadata_for(pos["instId"])
            positions.append(Position(
                instrument=pos["instId"],
                signed_size=contracts * metadata.contract_value,
                entry_price=Decimal(pos["avgPx"]) if pos.get("avgPx") else None,
                unrealized_pnl=Decimal(pos.get("upl") or "0"),
                leverage=int(Decimal(pos["lever"])) if pos.get("lever") else None,
            ))
        return positions
    
    async def _fetch_open_orders(self, instrument: Optional[str] = None) -> List[OpenOrder]:
        params = {"instType": "SWAP"}
        if instrument:
            params["instId"] = instrument
        data = await self._request("GET", "/api/v5/trade/orders-pending", params, operation="open_orders")
        orders = []
        for order in data:
            metadata = await self._metadata_for(order["instId"])
            orders.append(OpenOrder(
                order_id=order["ordId"],
                instrument=order["instId"],
                side=OrderSide(order["side"].upper()),
                size=Decimal(order["sz"]) * metadata.contract_value,
                price=Decimal(order["px"]) if order.get("px") else None,
                order_kind=order.get("ordType"),
                reduce_only=order.get("reduceOnly") == "true",
            ))
        return orders
    
    async def _fetch_balance(self) -> AccountBalance:
        data = await self._request(
            "GET", "/api/v5/account/balance", {"ccy": SETTLEMENT_CCY}, operation="balance",
        )
        account = data[0]
        detail = next((d for d in account.get("details", []) if d.get("ccy") == SETTLEMENT_CCY), {})
        return AccountBalance(
            asset=SETTLEMENT_CCY,
            total_equity=Decimal(detail.get("eq") or account.get("totalEq") or "0"),
            available_balance=Decimal(detail.get("availEq") or detail.get("availBal") or "0"),
            unrealized_pnl=Decimal(detail.get("upl") or "0"),
            margin_used=Decimal(detail.get("imr") or account.get("imr") or "0"),
        )
    
    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------
    
    def _contracts(self, size: Decimal, metadata: AssetMetadata) -> str:
        contracts = truncate_to_step(size / metadata.contract_value, metadata.quantity_step or Decimal("1"))
        text = format_decimal(contracts, metadata.size_decimals)
        if text == "0":
            raise SizeValidationError(
                f"Order size {size} is below one lot for {metadata.instrument}",
                code="SIZE_TOO_SMALL",
            )
        return text
    
    def _price(self, price: Decimal, metadata: AssetMetadata) -> str:
        if metadata.price_step:
            price = round_to_step(price, metadata.price_step)
        return format_decimal(price, metadata.price_decimals)
    
    async def _submit_order(self, params: OrderParameters) -> OrderResult:
        metadata = await self._metadata_for(params.instrument)
        body: Dict[str, Any] = {
            "instId": params.instrument,
            "tdMode": self._margin_mode,
            "side": params.side.value.lower(),
            "sz": self._contracts(params.size, metadata),
        }
        if params.reduce_only:
            body["reduceOnly"] = True
        if params.client_order_id:
            body["clOrdId"] = params.client_order_id
        
        if params.order_kind.is_trigger:
            if params.trigger_price is None:
                raise GatewayError("Trigger order requires a trigger price", code="INVALID_ORDER")
            prefix = "sl" if params.order_kind == OrderKind.STOP else "tp"
            body["ordType"] = "conditional"
            body[f"{prefix}TriggerPx"] = self._price(params.trigger_price, metadata)
            body[f"{prefix}OrdPx"] = "-1"
            path, id_key = "/api/v5/trade/order-algo", "algoId"
        else:
            if params.order_kind == OrderKind.MARKET:
                body["ordType"] = "market"
            else:
                if params.limit_price is None:
                    raise GatewayError("Limit order requires a price", code="INVALID_ORDER")
                body["ordType"] = LIMIT_ORDER_TYPES[params.time_in_force]
                body["px"] = self._price(params.limit_price, metadata)
            path, id_key = "/api/v5/trade/order", "ordId"
        
        try:
            data = await self._request("POST", path, body=body, operation="submit_order")
        except ExchangeRejected as e:
            return RejectedOrder(reason=e.message)
        if not data:
            return RejectedOrder(reason="Empty order response")
        return RestingOrder(order_id=str(data[0].get(id_key, "")))
    
    async def _cancel_order(self, instrument: str, order_id: str) -> Dict[str, Any]:
        data = await self._request(
            "POST", "/api/v5/trade/cancel-order",
            body={"instId": instrument, "ordId": order_id},
            operation="cancel_order",
        )
        return {"instrument": instrument, "order_id": order_id, "data": data}
    
    async def _cancel_all_orders(self, instrument: Optional[str] = None) -> Dict[str, Any]:
        orders = await self._fetch_open_orders(instrument)
        if not orders:
            return {"cancelled": 0}
        # cancel-batch-orders accepts at most 20 per request
        for start in range(0, len(orders), 20):
            batch = [{"instId": o.instrument, "ordId": o.order_id} for o in orders[start:start + 20]]
            await self._request("POST", "/api/v5/trade/cancel-batch-orders", body=batch, operation="cancel_all")
        return {"cancelled": len(orders)}
    
    async def _update_leverage(self, instrument: str, leverage: int, cross: bool) -> Dict[str, Any]:
        data = await self._request(
            "POST", "/api/v5/account/set-leverage",
            body={"instId": instrument, "lever": str(leverage), "mgnMode": "cross" if cross else "isolated"},
            operation="set_leverage",
        )
        return data[0] if data else {}
