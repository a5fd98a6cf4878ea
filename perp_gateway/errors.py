"""
Perp Gateway - Error Taxonomy and Venue Error Mapping.

============================================================
PURPOSE
============================================================
One exception hierarchy for the whole gateway plus tables that
translate venue-specific error codes into unified categories.

HIERARCHY:
    GatewayError
    ├── CredentialError          (construction time, fatal)
    ├── SigningError             (payload could not be signed)
    ├── PriceUnavailable
    ├── SizeValidationError
    ├── LeverageValidationError
    ├── InvalidParameterError
    ├── NoPositionError
    ├── InstrumentNotFound
    ├── ExchangeRejected         (venue refused, message verbatim)
    ├── NetworkError
    │   └── RequestTimeout
    └── RegistryError
        ├── ExchangeNotRegistered
        └── RegistryFrozenError

PartialProtectionFailure is a record, not an exception: it is
carried inside QuickTradeResult.

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


logger = logging.getLogger(__name__)


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Standardized error categories."""
    
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    AUTHENTICATION = "AUTHENTICATION"
    INVALID_ORDER = "INVALID_ORDER"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_MARGIN = "INSUFFICIENT_MARGIN"
    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    SYMBOL_NOT_FOUND = "SYMBOL_NOT_FOUND"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PRICE = "INVALID_PRICE"
    INVALID_LEVERAGE = "INVALID_LEVERAGE"
    MIN_NOTIONAL = "MIN_NOTIONAL"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


# ============================================================
# EXCEPTIONS
# ============================================================

class GatewayError(Exception):
    """Base exception for the gateway."""
    
    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}


class CredentialError(GatewayError):
    """Signing material missing or malformed."""
    pass


class SigningError(GatewayError):
    """Parameters could not be serialized or signed."""
    pass


class PriceUnavailable(GatewayError):
    """Reference price could not be fetched."""
    
    def __init__(self, instrument: str, reason: Optional[str] = None):
        super().__init__(
            "Failed to get current price",
            code="PRICE_UNAVAILABLE",
            context={"instrument": instrument, "reason": reason},
        )


class SizeValidationError(GatewayError):
    """Requested size is not acceptable for the position."""
    pass


class LeverageValidationError(GatewayError):
    """Leverage outside the accepted range."""
    pass


class InvalidParameterError(GatewayError):
    """Caller input is not a usable number."""
    pass


class NoPositionError(GatewayError):
    """No open position for the instrument."""
    
    def __init__(self, instrument: str):
        super().__init__(
            f"No position found for {instrument}",
            code="NO_POSITION",
            context={"instrument": instrument},
        )


class InstrumentNotFound(GatewayError):
    """Instrument missing from the venue catalog."""
    
    def __init__(self, instrument: str, exchange_id: Optional[str] = None):
        super().__init__(
            f"Asset {instrument} not found",
            code="SYMBOL_NOT_FOUND",
            context={"instrument": instrument, "exchange_id": exchange_id},
        )


class ExchangeRejected(GatewayError):
    """
    Venue refused the request.
    
    The venue's own message is preserved verbatim as the
    exception message.
    """
    
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        exchange_id: Optional[str] = None,
        exchange_code: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(
            message,
            code=f"{(exchange_id or 'EXCHANGE').upper()}_{exchange_code}" if exchange_code else category.value,
        )
        self.category = category
        self.exchange_id = exchange_id
        self.exchange_code = exchange_code
        self.http_status = http_status
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "exchange_id": self.exchange_id,
            "exchange_code": self.exchange_code,
            "http_status": self.http_status,
        }


class NetworkError(GatewayError):
    """Transport-level failure."""
    pass


class RequestTimeout(NetworkError):
    """Request exceeded the configured timeout."""
    pass


class RegistryError(GatewayError):
    """Registry misuse."""
    pass


class ExchangeNotRegistered(RegistryError):
    """No bundle for the (exchange, trading type) pair."""
    
    def __init__(self, exchange: str, trading_type: str):
        super().__init__(
            f"Exchange {exchange} with trading type {trading_type} not registered",
            code="NOT_REGISTERED",
            context={"exchange": exchange, "trading_type": trading_type},
        )


class RegistryFrozenError(RegistryError):
    """Registration attempted after startup."""
    pass


# ============================================================
# PROTECTION FAILURE RECORD
# ============================================================

@dataclass(frozen=True)
class PartialProtectionFailure:
    """A protective leg (stop-loss or take-profit) that was not placed."""
    
    leg: str
    """"stop_loss" or "take_profit"."""
    
    error: str
    """Venue or transport error, verbatim."""


# ============================================================
# BINANCE / ASTER ERROR MAPPING
# ============================================================

# Binance-family error codes to unified category (Aster shares the scheme)
BINANCE_ERROR_MAP: Dict[int, ErrorCategory] = {
    # Rate limiting
    -1003: ErrorCategory.RATE_LIMIT,
    -1015: ErrorCategory.RATE_LIMIT,
    
    # Authentication
    -1002: ErrorCategory.AUTHENTICATION,
    -1022: ErrorCategory.AUTHENTICATION,
    -2014: ErrorCategory.AUTHENTICATION,
    -2015: ErrorCategory.AUTHENTICATION,
    
    # Order validation
    -1013: ErrorCategory.INVALID_QUANTITY,
    -1021: ErrorCategory.TIMEOUT,
    -1100: ErrorCategory.INVALID_ORDER,
    -1102: ErrorCategory.INVALID_ORDER,
    -1111: ErrorCategory.INVALID_QUANTITY,
    -1116: ErrorCategory.INVALID_ORDER,
    -1121: ErrorCategory.SYMBOL_NOT_FOUND,
    -4003: ErrorCategory.INVALID_QUANTITY,
    -4014: ErrorCategory.INVALID_PRICE,
    -4028: ErrorCategory.INVALID_LEVERAGE,
    -4164: ErrorCategory.MIN_NOTIONAL,
    
    # Funds / margin
    -2010: ErrorCategory.INSUFFICIENT_FUNDS,
    -2018: ErrorCategory.INSUFFICIENT_FUNDS,
    -2019: ErrorCategory.INSUFFICIENT_MARGIN,
    
    # Orders / positions
    -2011: ErrorCategory.ORDER_NOT_FOUND,
    -2013: ErrorCategory.ORDER_NOT_FOUND,
    -2022: ErrorCategory.POSITION_NOT_FOUND,
    
    # Exchange internal
    -1000: ErrorCategory.EXCHANGE_ERROR,
    -1001: ErrorCategory.EXCHANGE_ERROR,
    -1007: ErrorCategory.TIMEOUT,
}


def _category_from_http(http_status: Optional[int]) -> ErrorCategory:
    if http_status in (418, 429):
        return ErrorCategory.RATE_LIMIT
    if http_status in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if http_status and http_status >= 500:
        return ErrorCategory.EXCHANGE_ERROR
    return ErrorCategory.UNKNOWN


def map_binance_error(
    code: int,
    message: str,
    http_status: int = None,
    exchange_id: str = "binance",
) -> ExchangeRejected:
    """
    Map a Binance-family error payload to ExchangeRejected.
    
    Args:
        code: Venue error code
        message: Venue error message
        http_status: HTTP status code
        exchange_id: "binance" or "aster"
        
    Returns:
        ExchangeRejected carrying the venue message verbatim
    """
    category = BINANCE_ERROR_MAP.get(code) or _category_from_http(http_status)
    return ExchangeRejected(
        message,
        category=category,
        exchange_id=exchange_id,
        exchange_code=str(code),
        http_status=http_status,
    )


def map_aster_error(code: int, message: str, http_status: int = None) -> ExchangeRejected:
    """Aster speaks the Binance error dialect."""
    return map_binance_error(code, message, http_status, exchange_id="aster")


# ============================================================
# OKX ERROR MAPPING
# ============================================================

OKX_ERROR_MAP: Dict[str, ErrorCategory] = {
    "50011": ErrorCategory.RATE_LIMIT,
    "50013": ErrorCategory.RATE_LIMIT,
    "50101": ErrorCategory.AUTHENTICATION,
    "50102": ErrorCategory.AUTHENTICATION,
    "50103": ErrorCategory.AUTHENTICATION,
    "50104": ErrorCategory.AUTHENTICATION,
    "50105": ErrorCategory.AUTHENTICATION,
    "50111": ErrorCategory.AUTHENTICATION,
    "50113": ErrorCategory.AUTHENTICATION,
    "51000": ErrorCategory.INVALID_ORDER,
    "51001": ErrorCategory.SYMBOL_NOT_FOUND,
    "51006": ErrorCategory.INVALID_PRICE,
    "51008": ErrorCategory.INSUFFICIENT_FUNDS,
    "51020": ErrorCategory.INVALID_QUANTITY,
    "51119": ErrorCategory.INSUFFICIENT_MARGIN,
    "51400": ErrorCategory.ORDER_NOT_FOUND,
    "51603": ErrorCategory.ORDER_NOT_FOUND,
    "59102": ErrorCategory.INVALID_LEVERAGE,
    "50000": ErrorCategory.EXCHANGE_ERROR,
    "50001": ErrorCategory.EXCHANGE_ERROR,
    "50004": ErrorCategory.TIMEOUT,
}


def map_okx_error(
    code: str,
    message: str,
    http_status: int = None,
) -> ExchangeRejected:
    """Map an OKX error payload to ExchangeRejected."""
    code = str(code)
    category = OKX_ERROR_MAP.get(code) or _category_from_http(http_status)
    return ExchangeRejected(
        message,
        category=category,
        exchange_id="okx",
        exchange_code=code,
        http_status=http_status,
    )


# ============================================================
# HYPERLIQUID ERROR MAPPING
# ============================================================

# Hyperliquid reports errors as free text; match on known fragments
HYPERLIQUID_ERROR_PATTERNS: Tuple[Tuple[str, ErrorCategory], ...] = (
    ("insufficient margin", ErrorCategory.INSUFFICIENT_MARGIN),
    ("minimum value", ErrorCategory.MIN_NOTIONAL),
    ("invalid size", ErrorCategory.INVALID_QUANTITY),
    ("tick size", ErrorCategory.INVALID_PRICE),
    ("price too far", ErrorCategory.INVALID_PRICE),
    ("reduce only", ErrorCategory.POSITION_NOT_FOUND),
    ("leverage", ErrorCategory.INVALID_LEVERAGE),
    ("user or api wallet", ErrorCategory.AUTHENTICATION),
    ("does not exist", ErrorCategory.AUTHENTICATION),
    ("too many", ErrorCategory.RATE_LIMIT),
)


def map_hyperliquid_error(message: str, http_status: int = None) -> ExchangeRejected:
    """Map a Hyperliquid error string to ExchangeRejected."""
    lowered = (message or "").lower()
    category = _category_from_http(http_status)
    for fragment, mapped in HYPERLIQUID_ERROR_PATTERNS:
        if fragment in lowered:
            category = mapped
            break
    return ExchangeRejected(
        message,
        category=category,
        exchange_id="hyperliquid",
        http_status=http_status,
    )


def map_exchange_error(
    exchange_id: str,
    code: Any,
    message: str,
    http_status: int = None,
) -> ExchangeRejected:
    """Route to the venue-specific mapper."""
    exchange_id = exchange_id.lower()
    if exchange_id == "binance":
        return map_binance_error(int(code), message, http_status)
    if exchange_id == "aster":
        return map_aster_error(int(code), message, http_status)
    if exchange_id == "okx":
        return map_okx_error(str(code), message, http_status)
    if exchange_id == "hyperliquid":
        return map_hyperliquid_error(message, http_status)
    return ExchangeRejected(
        message,
        exchange_id=exchange_id,
        exchange_code=str(code) if code is not None else None,
        http_status=http_status,
    )
