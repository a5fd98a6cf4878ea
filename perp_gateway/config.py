"""
Perp Gateway - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the gateway, loaded from the environment
(a .env file is honoured through python-dotenv).

CRITICAL CONSTRAINTS:
- No retries on order submission
- One fixed request timeout per adapter
- Un-configured venues are skipped, never half-built

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .types import HmacCredentials, WalletCredentials


logger = logging.getLogger(__name__)


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """
    Timeouts for venue requests.
    
    A request that exceeds the budget fails with RequestTimeout;
    it is never resent.
    """
    
    connection_timeout_seconds: float = 5.0
    """Timeout for establishing a connection."""
    
    request_timeout_seconds: float = 30.0
    """Total budget for one request, including reading the body."""


# ============================================================
# TRADING DEFAULTS
# ============================================================

@dataclass
class TradingDefaults:
    """Defaults for orchestrator workflows."""
    
    stop_loss_percent: Decimal = Decimal("5")
    """Stop-loss distance in percent of margin (leverage-scaled)."""
    
    take_profit_percent: Decimal = Decimal("10")
    """Take-profit distance in percent of margin (leverage-scaled)."""
    
    leverage: int = 5
    """Leverage applied by quick trades when none is given."""
    
    slippage_percent: Decimal = Decimal("1")
    """Price band for market-like IOC orders."""
    
    min_leverage: int = 1
    max_leverage: int = 50
    
    cross_margin: bool = True
    """Margin mode used when quick trades set leverage."""
    
    @classmethod
    def from_env(cls) -> "TradingDefaults":
        defaults = cls()
        return cls(
            stop_loss_percent=Decimal(_env("STOP_LOSS_PERCENTAGE", str(defaults.stop_loss_percent))),
            take_profit_percent=Decimal(_env("TAKE_PROFIT_PERCENTAGE", str(defaults.take_profit_percent))),
            leverage=int(_env("DEFAULT_LEVERAGE", str(defaults.leverage))),
            slippage_percent=Decimal(_env("DEFAULT_SLIPPAGE_PERCENTAGE", str(defaults.slippage_percent))),
        )


# ============================================================
# VENUE CONFIGURATION
# ============================================================

@dataclass
class BinanceConfig:
    """Binance USD-M futures."""
    
    api_key: str = ""
    api_secret: str = field(default="", repr=False)
    rest_url: str = "https://fapi.binance.com"
    testnet_rest_url: str = "https://testnet.binancefuture.com"
    use_testnet: bool = False
    recv_window: int = 5000
    
    @property
    def base_url(self) -> str:
        return self.testnet_rest_url if self.use_testnet else self.rest_url
    
    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret)
    
    @property
    def credentials(self) -> HmacCredentials:
        return HmacCredentials(api_key=self.api_key, api_secret=self.api_secret)
    
    @classmethod
    def from_env(cls) -> "BinanceConfig":
        return cls(
            api_key=_env("BINANCE_API_KEY"),
            api_secret=_env("BINANCE_API_SECRET"),
            rest_url=_env("BINANCE_REST_URL", cls.rest_url),
            testnet_rest_url=_env("BINANCE_TESTNET_REST_URL", cls.testnet_rest_url),
            use_testnet=_env_bool("BINANCE_USE_TESTNET"),
        )


@dataclass
class OKXConfig:
    """OKX V5 perpetual swaps."""
    
    api_key: str = ""
    api_secret: str = field(default="", repr=False)
    passphrase: str = field(default="", repr=False)
    rest_url: str = "https://www.okx.com"
    use_simulated: bool = False
    """Sends x-simulated-trading: 1 (demo trading)."""
    
    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_secret and self.passphrase)
    
    @property
    def credentials(self) -> HmacCredentials:
        return HmacCredentials(api_key=self.api_key, api_secret=self.api_secret, passphrase=self.passphrase)
    
    @classmethod
    def from_env(cls) -> "OKXConfig":
        return cls(
            api_key=_env("OKX_API_KEY"),
            api_secret=_env("OKX_API_SECRET"),
            passphrase=_env("OKX_PASSPHRASE"),
            use_simulated=_env_bool("OKX_USE_SIMULATED"),
        )


@dataclass
class AsterConfig:
    """
    Aster perpetuals.
    
    Order endpoints (/fapi/v3) are signed by the delegated signer
    wallet; leverage (/fapi/v1) still uses the HMAC key pair.
    """
    
    user_address: str = ""
    signer_address: str = ""
    private_key: str = field(default="", repr=False)
    api_key: str = ""
    api_secret: str = field(default="", repr=False)
    rest_url: str = "https://fapi.asterdex.com"
    recv_window: int = 50000
    
    @property
    def is_configured(self) -> bool:
        return bool(self.user_address and self.signer_address and self.private_key)
    
    @property
    def wallet_credentials(self) -> WalletCredentials:
        return WalletCredentials(
            private_key=self.private_key,
            user_address=self.user_address,
            signer_address=self.signer_address,
        )
    
    @property
    def hmac_credentials(self) -> Optional[HmacCredentials]:
        """API key pair for /fapi/v1 endpoints; None when not configured."""
        if not (self.api_key and self.api_secret):
            return None
        return HmacCredentials(api_key=self.api_key, api_secret=self.api_secret)
    
    @property
    def missing_fields(self) -> List[str]:
        names = ["api_key", "api_secret", "user_address", "signer_address", "private_key"]
        return [name for name in names if not getattr(self, name)]
    
    @classmethod
    def from_env(cls) -> "AsterConfig":
        return cls(
            user_address=_env("ASTER_USER_ADDRESS"),
            signer_address=_env("ASTER_SIGNER_ADDRESS"),
            private_key=_env("ASTER_PRIVATE_KEY"),
            api_key=_env("ASTER_API_KEY"),
            api_secret=_env("ASTER_API_SECRET"),
            rest_url=_env("ASTER_REST_URL", cls.rest_url),
        )


@dataclass
class HyperliquidConfig:
    """Hyperliquid perpetuals."""
    
    user_address: str = ""
    """Master account; positions and orders are read for it."""
    
    api_wallet: str = ""
    """Agent wallet address authorised to trade for user_address."""
    
    api_private_key: str = field(default="", repr=False)
    vault_address: Optional[str] = None
    """Trade on behalf of a vault/sub-account; None trades the primary account."""
    
    is_testnet: bool = False
    rest_url: Optional[str] = None
    
    @property
    def base_url(self) -> str:
        if self.rest_url:
            return self.rest_url
        if self.is_testnet:
            return "https://api.hyperliquid-testnet.xyz"
        return "https://api.hyperliquid.xyz"
    
    @property
    def is_configured(self) -> bool:
        return bool(self.user_address and self.api_private_key)
    
    @property
    def credentials(self) -> WalletCredentials:
        return WalletCredentials(
            private_key=self.api_private_key,
            user_address=self.user_address,
            signer_address=self.api_wallet or None,
        )
    
    @classmethod
    def from_env(cls) -> "HyperliquidConfig":
        return cls(
            user_address=_env("HYPERLIQUID_USER_ADDRESS"),
            api_wallet=_env("HYPERLIQUID_API_WALLET"),
            api_private_key=_env("HYPERLIQUID_API_PRIVATE_KEY"),
            vault_address=_env("HYPERLIQUID_VAULT_ADDRESS") or None,
            is_testnet=_env_bool("HYPERLIQUID_IS_TESTNET") or _env_bool("HYPERLIQUID_TESTNET"),
            rest_url=_env("HYPERLIQUID_REST_URL") or None,
        )


# ============================================================
# GATEWAY CONFIGURATION
# ============================================================

@dataclass
class GatewayConfig:
    """Complete gateway configuration."""
    
    binance: BinanceConfig = field(default_factory=BinanceConfig)
    okx: OKXConfig = field(default_factory=OKXConfig)
    aster: AsterConfig = field(default_factory=AsterConfig)
    hyperliquid: HyperliquidConfig = field(default_factory=HyperliquidConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    trading: TradingDefaults = field(default_factory=TradingDefaults)
    
    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "GatewayConfig":
        """
        Build configuration from environment variables.
        
        Args:
            dotenv_path: Optional .env file; default search applies otherwise
        """
        load_dotenv(dotenv_path)
        
        config = cls(
            binance=BinanceConfig.from_env(),
            okx=OKXConfig.from_env(),
            aster=AsterConfig.from_env(),
            hyperliquid=HyperliquidConfig.from_env(),
            timeouts=TimeoutConfig(
                request_timeout_seconds=float(_env("GATEWAY_REQUEST_TIMEOUT_SECONDS", "30")),
            ),
            trading=TradingDefaults.from_env(),
        )
        
        if config.aster.missing_fields and config.aster.is_configured:
            logger.warning(f"Aster configuration incomplete: missing {', '.join(config.aster.missing_fields)}")
        if not config.hyperliquid.is_configured:
            logger.info("Hyperliquid trading disabled: HYPERLIQUID_USER_ADDRESS / HYPERLIQUID_API_PRIVATE_KEY not set")
        return config
    
    def configured_exchanges(self) -> Dict[str, bool]:
        """Venue name -> credentials present."""
        return {
            "binance": self.binance.is_configured,
            "okx": self.okx.is_configured,
            "aster": self.aster.is_configured,
            "hyperliquid": self.hyperliquid.is_configured,
        }
