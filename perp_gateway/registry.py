"""
Perp Gateway - Exchange Registry.

============================================================
RESPONSIBILITY
============================================================
Maps (exchange, trading type) to the service bundle serving it.

- Registration happens during startup only
- freeze() swaps the table for a read-only view
- Lookups of unknown pairs raise ExchangeNotRegistered

============================================================
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Union

from .adapters.base import ExchangeAdapter
from .adapters.factory import AdapterFactory
from .config import GatewayConfig
from .errors import ExchangeNotRegistered, RegistryFrozenError
from .orchestrator import OrderOrchestrator
from .readers import AdapterBalanceReader, AdapterMarketReader, BalanceReader, MarketReader
from .types import ExchangeName, TradingType


logger = logging.getLogger(__name__)


ExchangeKey = Union[ExchangeName, str]
TradingTypeKey = Union[TradingType, str]


def _value(key: Union[ExchangeName, TradingType, str]) -> str:
    return key.value if isinstance(key, (ExchangeName, TradingType)) else str(key).lower()


# ============================================================
# SERVICE BUNDLE
# ============================================================

@dataclass(frozen=True)
class ServiceBundle:
    """Services for one (exchange, trading type) pair."""
    
    trading: OrderOrchestrator
    balance: BalanceReader
    market: MarketReader
    adapter: Optional[ExchangeAdapter] = None
    
    @classmethod
    def for_adapter(cls, adapter: ExchangeAdapter, config: Optional[GatewayConfig] = None) -> "ServiceBundle":
        """Wire readers and orchestrator around one adapter."""
        market = AdapterMarketReader(adapter)
        balance = AdapterBalanceReader(adapter)
        trading = OrderOrchestrator(
            adapter,
            market_reader=market,
            balance_reader=balance,
            defaults=config.trading if config else None,
        )
        return cls(trading=trading, balance=balance, market=market, adapter=adapter)


# ============================================================
# REGISTRY
# ============================================================

class ExchangeRegistry:
    """
    Registry of service bundles.
    
    Mutable until freeze(); read-only and safe for concurrent
    lookups afterwards.
    """
    
    def __init__(self):
        self._bundles: Dict[str, ServiceBundle] = {}
        self._view: Mapping[str, ServiceBundle] = MappingProxyType(self._bundles)
        self._frozen = False
    
    @staticmethod
    def key(exchange: ExchangeKey, trading_type: TradingTypeKey) -> str:
        return f"{_value(exchange)}:{_value(trading_type)}"
    
    @property
    def is_frozen(self) -> bool:
        return self._frozen
    
    def register(
        self,
        exchange: ExchangeKey,
        trading_type: TradingTypeKey,
        bundle: ServiceBundle,
    ) -> None:
        """
        Register a bundle.
        
        Raises:
            RegistryFrozenError: Called after freeze()
        """
        key = self.key(exchange, trading_type)
        if self._frozen:
            raise RegistryFrozenError(f"Registry is frozen, cannot register {key}", code="REGISTRY_FROZEN")
        if key in self._bundles:
            logger.warning(f"Replacing registered services for {key}")
        self._bundles[key] = bundle
        logger.info(f"Registered {key}")
    
    def freeze(self) -> None:
        """End the registration phase."""
        self._view = MappingProxyType(dict(self._bundles))
        self._bundles = {}
        self._frozen = True
        logger.info(f"Registry frozen with {len(self._view)} entries: {', '.join(sorted(self._view))}")
    
    def resolve(self, exchange: ExchangeKey, trading_type: TradingTypeKey) -> ServiceBundle:
        """
        Look up a bundle.
        
        Raises:
            ExchangeNotRegistered: Unknown pair
        """
        bundle = self._view.get(self.key(exchange, trading_type))
        if bundle is None:
            raise ExchangeNotRegistered(_value(exchange), _value(trading_type))
        return bundle
    
    def has(self, exchange: ExchangeKey, trading_type: TradingTypeKey) -> bool:
        return self.key(exchange, trading_type) in self._view
    
    def available(self) -> List[Dict[str, str]]:
        """Registered pairs as {exchange, trading_type} dicts."""
        result = []
        for key in sorted(self._view):
            exchange, trading_type = key.split(":", 1)
            result.append({"exchange": exchange, "trading_type": trading_type})
        return result
    
    def by_exchange(self, exchange: ExchangeKey) -> Dict[str, ServiceBundle]:
        prefix = f"{_value(exchange)}:"
        return {k.split(":", 1)[1]: v for k, v in self._view.items() if k.startswith(prefix)}
    
    def by_trading_type(self, trading_type: TradingTypeKey) -> Dict[str, ServiceBundle]:
        suffix = f":{_value(trading_type)}"
        return {k.split(":", 1)[0]: v for k, v in self._view.items() if k.endswith(suffix)}
    
    def as_mapping(self) -> Mapping[str, ServiceBundle]:
        """Read-only view of the table."""
        return self._view
    
    async def close(self) -> None:
        """Disconnect every registered adapter."""
        for bundle in self._view.values():
            if bundle.adapter is not None:
                await bundle.adapter.disconnect()


# ============================================================
# STARTUP WIRING
# ============================================================

def build_registry(
    config: GatewayConfig,
    exchanges: Optional[Iterable[str]] = None,
    include_mock: bool = False,
) -> ExchangeRegistry:
    """
    Build and freeze the registry for every configured venue.
    
    Args:
        config: Gateway configuration
        exchanges: Restrict to these venues (default: all configured)
        include_mock: Also register the in-memory venue
        
    Raises:
        CredentialError: A selected venue has malformed credentials
    """
    registry = ExchangeRegistry()
    configured = config.configured_exchanges()
    wanted = [e.lower() for e in exchanges] if exchanges is not None else list(configured)
    
    for exchange_id in wanted:
        if not configured.get(exchange_id, False):
            logger.info(f"Skipping {exchange_id}: credentials not configured")
            continue
        adapter = AdapterFactory.create(exchange_id, config)
        registry.register(exchange_id, TradingType.PERPETUAL, ServiceBundle.for_adapter(adapter, config))
    
    if include_mock:
        adapter = AdapterFactory.create(ExchangeName.MOCK.value, config)
        registry.register(ExchangeName.MOCK, TradingType.PERPETUAL, ServiceBundle.for_adapter(adapter, config))
    
    registry.freeze()
    return registry
