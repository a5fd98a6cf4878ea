"""
Perp Gateway Package.

============================================================
PURPOSE
============================================================
Unified trading gateway for perpetual futures venues
(Binance, OKX, Aster, Hyperliquid).

AUTHORITY BOUNDARIES:
    CAN:
        - Sign and submit orders, cancels and leverage changes
        - Read prices, metadata, positions and open orders
        - Run protected quick trades and close positions
        
    MUST NOT:
        - Generate trade ideas
        - Retry orders on its own
        - Persist state

============================================================
MODULES
============================================================
- types: data model and result envelopes
- errors: error taxonomy and venue error mapping
- config: environment configuration
- formatting: Decimal to wire string conversion
- signing: HMAC, wallet and L1 action signers
- adapters: venue adapters and factory
- readers: market and balance readers
- orchestrator: multi-step trading workflows
- registry: (exchange, trading type) -> services

============================================================
"""

from .types import (
    ExchangeName,
    TradingType,
    OrderSide,
    OrderKind,
    TimeInForce,
    HmacCredentials,
    WalletCredentials,
    OrderParameters,
    AssetMetadata,
    AccountBalance,
    Position,
    OpenOrder,
    RestingOrder,
    FilledOrder,
    RejectedOrder,
    OrderResult,
    ResultEnvelope,
    QuickTradeResult,
    ClosePositionOutcome,
)
from .errors import (
    GatewayError,
    CredentialError,
    SigningError,
    PriceUnavailable,
    SizeValidationError,
    LeverageValidationError,
    InvalidParameterError,
    NoPositionError,
    InstrumentNotFound,
    ExchangeRejected,
    NetworkError,
    RequestTimeout,
    ExchangeNotRegistered,
    RegistryFrozenError,
    PartialProtectionFailure,
    ErrorCategory,
)
from .config import GatewayConfig, TimeoutConfig, TradingDefaults
from .formatting import format_decimal
from .signing import (
    HmacSigner,
    OkxSigner,
    WalletSigner,
    L1ActionSigner,
    SignedEnvelope,
    SigningFailure,
)
from .readers import MarketReader, BalanceReader
from .orchestrator import OrderOrchestrator
from .registry import ExchangeRegistry, ServiceBundle, build_registry


__version__ = "0.1.0"
