"""
Perp Gateway - Exchange Adapter Interface.

============================================================
PURPOSE
============================================================
Abstract interface every venue adapter implements.

DESIGN PRINCIPLES:
- One adapter per venue, one transport choke point (_send)
- Internal helpers raise GatewayError subclasses
- Public operations convert them into ResultEnvelope and never raise
- No retries: a failed request is reported, not repeated
- Asset metadata is loaded once per adapter and cached

============================================================
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Awaitable, Dict, List, Optional, Tuple

import aiohttp
from yarl import URL

from ..config import TimeoutConfig
from ..errors import ExchangeRejected, GatewayError, InstrumentNotFound, NetworkError, RequestTimeout
from ..logging_utils import AdapterLogger
from ..types import (
    AccountBalance,
    AssetMetadata,
    FilledOrder,
    OpenOrder,
    OrderParameters,
    OrderResult,
    Position,
    RejectedOrder,
    RestingOrder,
    ResultEnvelope,
)


logger = logging.getLogger(__name__)


# Raised while decoding an unexpected venue payload
DECODE_ERRORS = (LookupError, TypeError, ValueError, AttributeError, ArithmeticError)


# ============================================================
# EXCHANGE ADAPTER INTERFACE
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract exchange adapter.
    
    Subclasses implement the underscore-prefixed venue operations;
    the public surface wraps them into ResultEnvelope.
    """
    
    def __init__(self, timeout_config: Optional[TimeoutConfig] = None):
        self._timeout_config = timeout_config or TimeoutConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._logger = AdapterLogger(self.exchange_id)
        
        # Asset metadata cache
        self._metadata: Dict[str, AssetMetadata] = {}
        self._metadata_loaded = False
        self._metadata_lock = asyncio.Lock()
    
    @property
    @abstractmethod
    def exchange_id(self) -> str:
        """Venue identifier."""
        pass
    
    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed
    
    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------
    
    async def connect(self) -> None:
        """Open the HTTP session."""
        if self.is_connected:
            return
        timeout = aiohttp.ClientTimeout(
            total=self._timeout_config.request_timeout_seconds,
            connect=self._timeout_config.connection_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        self._logger.info("Session opened")
    
    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            self._logger.info("Session closed")
    
    async def __aenter__(self) -> "ExchangeAdapter":
        await self.connect()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
    
    # --------------------------------------------------------
    # TRANSPORT
    # --------------------------------------------------------
    
    async def _send(
        self,
        method: str,
        url: str,
        operation: str,
        headers: Optional[Dict[str, str]] = None,
        data: Optional[str] = None,
        json_body: Any = None,
        log_params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Any]:
        """
        Perform one HTTP request.
        
        The URL is sent as already encoded so a signed query string
        reaches the venue byte for byte.
        
        Returns:
            (HTTP status, decoded JSON or raw text)
            
        Raises:
            RequestTimeout: Timeout budget exceeded
            NetworkError: Connection-level failure
        """
        if not self.is_connected:
            await self.connect()
        
        request_id = self._logger.log_request(
            operation, method, url,
            headers=headers,
            params=log_params,
            body=data if data is not None else json_body,
        )
        start = time.monotonic()
        
        try:
            async with self._session.request(
                method,
                URL(url, encoded=True),
                headers=headers,
                data=data,
                json=json_body,
            ) as response:
                status = response.status
                text = await response.text()
        except asyncio.TimeoutError:
            raise RequestTimeout(
                f"Request timeout after {self._timeout_config.request_timeout_seconds}s",
                code="TIMEOUT",
                context={"operation": operation},
            )
        except aiohttp.ClientError as e:
            raise NetworkError(f"Network error: {e}", code="NETWORK", context={"operation": operation})
        
        latency_ms = (time.monotonic() - start) * 1000
        try:
            payload = json.loads(text) if text else None
        except ValueError:
            payload = text
        
        self._logger.log_response(
            operation,
            request_id,
            status_code=status,
            latency_ms=latency_ms,
            success=status < 400,
            response_body=payload,
        )
        return status, payload
    
    async def _envelope(self, operation: str, call: Awaitable[Any]) -> ResultEnvelope:
        """
        Run a venue operation and wrap its outcome.
        
        A payload the decoders cannot read is reported as a
        malformed-response failure.
        """
        try:
            return ResultEnvelope.ok(await call)
        except GatewayError as e:
            self._logger.warning(f"{operation} failed: {e}")
            return ResultEnvelope.fail(e)
        except DECODE_ERRORS as e:
            error = ExchangeRejected(
                f"Malformed {self.exchange_id} response: {type(e).__name__}: {e}",
                exchange_id=self.exchange_id,
            )
            self._logger.error(f"{operation} failed: {error}", exc_info=True)
            return ResultEnvelope.fail(error)
    
    # --------------------------------------------------------
    # METADATA
    # --------------------------------------------------------
    
    async def _metadata_for(self, instrument: str) -> AssetMetadata:
        """Cached metadata lookup; loads the catalog on first use."""
        if not self._metadata_loaded:
            async with self._metadata_lock:
                if not self._metadata_loaded:
                    self._metadata = await self._load_metadata()
                    self._metadata_loaded = True
                    self._logger.info(f"Loaded metadata for {len(self._metadata)} instruments")
        
        metadata = self._metadata.get(instrument)
        if metadata is None:
            raise InstrumentNotFound(instrument, self.exchange_id)
        return metadata
    
    def invalidate_metadata(self) -> None:
        """Force the next lookup to reload the catalog."""
        self._metadata_loaded = False
    
    # --------------------------------------------------------
    # VENUE OPERATIONS (implemented by subclasses)
    # --------------------------------------------------------
    
    @abstractmethod
    async def _load_metadata(self) -> Dict[str, AssetMetadata]:
        pass
    
    @abstractmethod
    async def _fetch_price(self, instrument: str) -> Decimal:
        pass
    
    @abstractmethod
    async def _fetch_all_prices(self) -> Dict[str, Decimal]:
        pass
    
    @abstractmethod
    async def _fetch_positions(self) -> List[Position]:
        pass
    
    @abstractmethod
    async def _fetch_open_orders(self, instrument: Optional[str] = None) -> List[OpenOrder]:
        pass
    
    @abstractmethod
    async def _fetch_balance(self) -> AccountBalance:
        pass
    
    @abstractmethod
    async def _submit_order(self, params: OrderParameters) -> OrderResult:
        pass
    
    @abstractmethod
    async def _cancel_order(self, instrument: str, order_id: str) -> Dict[str, Any]:
        pass
    
    @abstractmethod
    async def _cancel_all_orders(self, instrument: Optional[str] = None) -> Dict[str, Any]:
        pass
    
    @abstractmethod
    async def _update_leverage(self, instrument: str, leverage: int, cross: bool) -> Dict[str, Any]:
        pass
    
    # --------------------------------------------------------
    # MARKET DATA
    # --------------------------------------------------------
    
    async def get_current_price(self, instrument: str) -> ResultEnvelope[Decimal]:
        """Latest reference price for the instrument."""
        return await self._envelope("get_current_price", self._fetch_price(instrument))
    
    async def get_all_prices(self) -> ResultEnvelope[Dict[str, Decimal]]:
        """Reference prices for every listed instrument."""
        return await self._envelope("get_all_prices", self._fetch_all_prices())
    
    async def get_asset_metadata(self, instrument: str) -> ResultEnvelope[AssetMetadata]:
        """Trading rules for the instrument."""
        return await self._envelope("get_asset_metadata", self._metadata_for(instrument))
    
    # --------------------------------------------------------
    # ACCOUNT
    # --------------------------------------------------------
    
    async def get_positions(self) -> ResultEnvelope[List[Position]]:
        """All positions with a nonzero size."""
        async def _open_positions() -> List[Position]:
            return [p for p in await self._fetch_positions() if p.is_open]
        return await self._envelope("get_positions", _open_positions())
    
    async def get_position(self, instrument: str) -> ResultEnvelope[Optional[Position]]:
        """Position for one instrument; data is None when flat."""
        async def _one() -> Optional[Position]:
            for position in await self._fetch_positions():
                if position.instrument == instrument and position.is_open:
                    return position
            return None
        return await self._envelope("get_position", _one())
    
    async def get_open_orders(self, instrument: Optional[str] = None) -> ResultEnvelope[List[OpenOrder]]:
        """Resting orders, optionally for one instrument."""
        return await self._envelope("get_open_orders", self._fetch_open_orders(instrument))
    
    async def get_balance(self) -> ResultEnvelope[AccountBalance]:
        """Equity, available margin and unrealized PnL of the account."""
        return await self._envelope("get_balance", self._fetch_balance())
    
    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------
    
    async def place_order(self, params: OrderParameters) -> ResultEnvelope[OrderResult]:
        """
        Submit an order.
        
        A RejectedOrder decoded from an otherwise successful response
        is reported as a failure carrying the venue's reason.
        """
        result = await self._envelope("place_order", self._submit_order(params))
        
        if result.success and isinstance(result.data, RejectedOrder):
            self._logger.log_order(
                "submit", params.instrument,
                side=params.side.value, size=str(params.size),
                status="rejected", error_message=result.data.reason,
            )
            return ResultEnvelope(success=False, data=result.data, error=result.data.reason)
        
        if result.success:
            data = result.data
            self._logger.log_order(
                "submit", params.instrument,
                side=params.side.value,
                size=str(params.size),
                price=str(params.limit_price or params.trigger_price or ""),
                status=data.status,
                order_id=data.order_id,
            )
        else:
            self._logger.log_order(
                "submit", params.instrument,
                side=params.side.value, size=str(params.size),
                error_message=result.error,
            )
        return result
    
    async def cancel_order(self, instrument: str, order_id: str) -> ResultEnvelope[Dict[str, Any]]:
        """Cancel one order."""
        return await self._envelope("cancel_order", self._cancel_order(instrument, order_id))
    
    async def cancel_all_orders(self, instrument: Optional[str] = None) -> ResultEnvelope[Dict[str, Any]]:
        """Cancel all resting orders, optionally for one instrument."""
        return await self._envelope("cancel_all_orders", self._cancel_all_orders(instrument))
    
    async def set_leverage(self, instrument: str, leverage: int, cross: bool = True) -> ResultEnvelope[Dict[str, Any]]:
        """Set leverage and margin mode for the instrument."""
        return await self._envelope("set_leverage", self._update_leverage(instrument, leverage, cross))


def filled_or_resting(order_id: Any, filled_size: Decimal, average_price: Optional[Decimal]) -> OrderResult:
    """Pick the tagged result for venues that report fills inline."""
    if filled_size > 0 and average_price:
        return FilledOrder(order_id=str(order_id), filled_size=filled_size, average_price=average_price)
    return RestingOrder(order_id=str(order_id))
