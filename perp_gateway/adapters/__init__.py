"""
Exchange adapters.

- base: ExchangeAdapter interface and transport
- binance / aster: Binance-dialect futures (HMAC / wallet signatures)
- okx: OKX V5 swaps
- hyperliquid: Hyperliquid L1-signed actions
- mock: in-memory venue
- factory: creation from GatewayConfig
"""

from .base import ExchangeAdapter
from .binance import BinanceAdapter
from .aster import AsterAdapter
from .okx import OKXAdapter
from .hyperliquid import HyperliquidAdapter
from .mock import MockConfig, MockExchangeAdapter
from .factory import AdapterFactory


__all__ = [
    "ExchangeAdapter",
    "BinanceAdapter",
    "AsterAdapter",
    "OKXAdapter",
    "HyperliquidAdapter",
    "MockConfig",
    "MockExchangeAdapter",
    "AdapterFactory",
]
