"""
Perp Gateway - Exchange Adapter Factory.

============================================================
PURPOSE
============================================================
Centralized adapter creation from GatewayConfig.

USAGE
```python
config = GatewayConfig.from_env()
adapter = AdapterFactory.create("hyperliquid", config)

# Extension
AdapterFactory.register("myvenue", lambda cfg: MyVenueAdapter(cfg))
```

============================================================
"""

import logging
from typing import Callable, Dict, List, Optional

from ..config import GatewayConfig
from ..types import ExchangeName
from .base import ExchangeAdapter


logger = logging.getLogger(__name__)


AdapterCreator = Callable[[GatewayConfig], ExchangeAdapter]


class AdapterFactory:
    """
    Factory for exchange adapters.
    
    Built-in venues are imported lazily; extra venues can be
    registered with a creator function.
    """
    
    _creators: Dict[str, AdapterCreator] = {}
    
    @classmethod
    def register(cls, exchange_id: str, creator: AdapterCreator) -> None:
        """Register a custom creator."""
        cls._creators[exchange_id.lower()] = creator
    
    @classmethod
    def unregister(cls, exchange_id: str) -> None:
        cls._creators.pop(exchange_id.lower(), None)
    
    @classmethod
    def create(cls, exchange_id: str, config: Optional[GatewayConfig] = None) -> ExchangeAdapter:
        """
        Create an adapter.
        
        Args:
            exchange_id: Venue identifier
            config: Gateway configuration (defaults: empty config)
            
        Raises:
            ValueError: Unsupported venue
            CredentialError: Venue credentials missing
        """
        exchange_id = exchange_id.lower()
        config = config or GatewayConfig()
        
        if exchange_id in cls._creators:
            return cls._creators[exchange_id](config)
        return cls._create_default(exchange_id, config)
    
    @classmethod
    def _create_default(cls, exchange_id: str, config: GatewayConfig) -> ExchangeAdapter:
        if exchange_id == ExchangeName.BINANCE.value:
            from .binance import BinanceAdapter
            return BinanceAdapter(config.binance, config.timeouts)
        
        elif exchange_id == ExchangeName.OKX.value:
            from .okx import OKXAdapter
            return OKXAdapter(config.okx, config.timeouts)
        
        elif exchange_id == ExchangeName.ASTER.value:
            from .aster import AsterAdapter
            return AsterAdapter(config.aster, config.timeouts)
        
        elif exchange_id == ExchangeName.HYPERLIQUID.value:
            from .hyperliquid import HyperliquidAdapter
            return HyperliquidAdapter(config.hyperliquid, config.timeouts)
        
        elif exchange_id == ExchangeName.MOCK.value:
            from .mock import MockExchangeAdapter
            return MockExchangeAdapter(timeout_config=config.timeouts)
        
        else:
            raise ValueError(f"Unsupported exchange: {exchange_id}")
    
    @classmethod
    def list_supported(cls) -> List[str]:
        """Built-in plus registered venues."""
        builtin = [name.value for name in ExchangeName]
        return sorted(set(builtin) | set(cls._creators))
