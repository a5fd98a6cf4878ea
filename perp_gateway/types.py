"""
Perp Gateway - Types.

============================================================
PURPOSE
============================================================
Core data model shared by signers, adapters, readers and the
order orchestrator.

PRINCIPLES:
- Prices and sizes are Decimal end to end
- Conversion to wire strings happens only inside adapters
- Order outcomes are tagged variants decoded at the adapter
- Every public operation answers with a ResultEnvelope

============================================================
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from .errors import PartialProtectionFailure
from .logging_utils import mask_value


T = TypeVar("T")


def current_millis() -> int:
    """Wall clock in integer milliseconds."""
    return int(time.time() * 1000)


# ============================================================
# ENUMS
# ============================================================

class ExchangeName(Enum):
    """Supported venues."""
    
    BINANCE = "binance"
    OKX = "okx"
    ASTER = "aster"
    HYPERLIQUID = "hyperliquid"
    MOCK = "mock"


class TradingType(Enum):
    """Product line served by an adapter bundle."""
    
    PERPETUAL = "perpetual"


class OrderSide(Enum):
    """Order side."""
    
    BUY = "BUY"
    SELL = "SELL"
    
    @classmethod
    def from_is_buy(cls, is_buy: bool) -> "OrderSide":
        return cls.BUY if is_buy else cls.SELL


class OrderKind(Enum):
    """Order kind as understood by the orchestrator."""
    
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"               # Stop-loss trigger, executes at market
    TAKE_PROFIT = "take_profit"  # Take-profit trigger, executes at market
    
    @property
    def is_trigger(self) -> bool:
        return self in (OrderKind.STOP, OrderKind.TAKE_PROFIT)


class TimeInForce(Enum):
    """Time in force."""
    
    GTC = "GTC"  # Good till cancel
    IOC = "IOC"  # Immediate or cancel
    FOK = "FOK"  # Fill or kill
    ALO = "ALO"  # Add liquidity only (post-only)


# ============================================================
# CREDENTIALS
# ============================================================

@dataclass(frozen=True)
class HmacCredentials:
    """API key credentials for HMAC-signed venues."""
    
    api_key: str
    """Public API key, sent as a header."""
    
    api_secret: str
    """Shared secret used as the HMAC key."""
    
    passphrase: Optional[str] = None
    """OKX only."""
    
    def masked(self) -> Dict[str, Any]:
        return {
            "api_key": mask_value(self.api_key),
            "api_secret": "***",
            "passphrase": "***" if self.passphrase else None,
        }
    
    def __repr__(self) -> str:
        return f"HmacCredentials({self.masked()})"


@dataclass(frozen=True)
class WalletCredentials:
    """Wallet credentials for signature-based venues."""
    
    private_key: str
    """Hex private key of the signing (API/agent) wallet."""
    
    user_address: Optional[str] = None
    """Account that owns the funds."""
    
    signer_address: Optional[str] = None
    """Address of the delegated signer (Aster v3)."""
    
    def masked(self) -> Dict[str, Any]:
        return {
            "user_address": self.user_address,
            "signer_address": self.signer_address,
            "private_key": "***",
        }
    
    def __repr__(self) -> str:
        return f"WalletCredentials({self.masked()})"


# ============================================================
# ORDERS AND MARKET DATA
# ============================================================

@dataclass(frozen=True)
class OrderParameters:
    """
    Venue-agnostic order request.
    
    Trigger orders carry trigger_price; market orders on venues
    without a true market type carry a slippage-adjusted
    limit_price.
    """
    
    instrument: str
    is_buy: bool
    size: Decimal
    order_kind: OrderKind = OrderKind.MARKET
    limit_price: Optional[Decimal] = None
    trigger_price: Optional[Decimal] = None
    time_in_force: TimeInForce = TimeInForce.GTC
    reduce_only: bool = False
    client_order_id: Optional[str] = None
    
    @property
    def side(self) -> OrderSide:
        return OrderSide.from_is_buy(self.is_buy)


@dataclass(frozen=True)
class AssetMetadata:
    """Per-instrument trading rules loaded from the venue catalog."""
    
    instrument: str
    size_decimals: int
    """Maximum fractional digits accepted for size."""
    
    price_decimals: int = 8
    """Maximum fractional digits accepted for price."""
    
    max_leverage: int = 50
    isolated_only: bool = False
    
    asset_index: Optional[int] = None
    """Numeric asset id (Hyperliquid)."""
    
    quantity_step: Optional[Decimal] = None
    price_step: Optional[Decimal] = None
    
    contract_value: Decimal = Decimal("1")
    """Base units per contract (OKX swaps); 1 where size is in base units."""


@dataclass(frozen=True)
class Position:
    """Open position. Positive signed_size is long, negative is short."""
    
    instrument: str
    signed_size: Decimal
    entry_price: Optional[Decimal] = None
    unrealized_pnl: Decimal = Decimal("0")
    leverage: Optional[int] = None
    
    @property
    def is_long(self) -> bool:
        return self.signed_size > 0
    
    @property
    def abs_size(self) -> Decimal:
        return abs(self.signed_size)
    
    @property
    def is_open(self) -> bool:
        return self.signed_size != 0


@dataclass(frozen=True)
class AccountBalance:
    """Margin account summary in the settlement asset."""
    
    asset: str
    """Settlement asset (USDT, USDC)."""
    
    total_equity: Decimal
    """Account value: wallet balance plus unrealized PnL."""
    
    available_balance: Decimal
    """Margin free for new orders or withdrawal."""
    
    unrealized_pnl: Decimal = Decimal("0")
    margin_used: Decimal = Decimal("0")
    
    @property
    def wallet_balance(self) -> Decimal:
        return self.total_equity - self.unrealized_pnl


@dataclass(frozen=True)
class OpenOrder:
    """Resting order as reported by the venue."""
    
    order_id: str
    instrument: str
    side: OrderSide
    size: Decimal
    price: Optional[Decimal] = None
    order_kind: Optional[str] = None
    reduce_only: bool = False


# ============================================================
# ORDER RESULTS (tagged variants)
# ============================================================

@dataclass(frozen=True)
class RestingOrder:
    """Order accepted and resting on the book."""
    
    order_id: str
    status: str = field(default="resting", init=False)


@dataclass(frozen=True)
class FilledOrder:
    """Order filled, fully or partially, on submission."""
    
    order_id: str
    filled_size: Decimal
    average_price: Decimal
    status: str = field(default="filled", init=False)


@dataclass(frozen=True)
class RejectedOrder:
    """Order refused by the venue for a business reason."""
    
    reason: str
    status: str = field(default="rejected", init=False)


OrderResult = Union[RestingOrder, FilledOrder, RejectedOrder]


# ============================================================
# RESULT ENVELOPE
# ============================================================

@dataclass
class ResultEnvelope(Generic[T]):
    """
    Uniform answer of every public gateway operation.
    
    Exactly one of data / error is meaningful: success implies
    data may be present and error is None; failure implies error
    is set.
    """
    
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    timestamp: int = field(default_factory=current_millis)
    
    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ResultEnvelope[T]":
        return cls(success=True, data=data)
    
    @classmethod
    def fail(cls, error: Union[str, Exception]) -> "ResultEnvelope[T]":
        return cls(success=False, error=str(error))
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp,
        }
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


# ============================================================
# ORCHESTRATOR RESULTS
# ============================================================

@dataclass(frozen=True)
class QuickTradeResult:
    """Outcome of a quick-long / quick-short workflow."""
    
    entry_result: ResultEnvelope
    stop_loss_result: ResultEnvelope
    take_profit_result: ResultEnvelope
    computed_entry_price: Decimal
    computed_size: Decimal
    computed_stop_loss_price: Decimal
    computed_take_profit_price: Decimal
    protection_failures: List[PartialProtectionFailure] = field(default_factory=list)
    
    @property
    def fully_protected(self) -> bool:
        return not self.protection_failures


@dataclass(frozen=True)
class ClosePositionOutcome:
    """One entry of a close-all run."""
    
    instrument: str
    result: ResultEnvelope
