"""
Perp Gateway - Market and Balance Readers.

============================================================
PURPOSE
============================================================
Read-only views used by the orchestrator: prices and asset
metadata (MarketReader), account balance, positions and open
orders (BalanceReader). No side effects.

============================================================
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from .adapters.base import ExchangeAdapter
from .types import AccountBalance, AssetMetadata, OpenOrder, Position, ResultEnvelope


class MarketReader(ABC):
    """Price and metadata reads."""
    
    @abstractmethod
    async def get_current_price(self, instrument: str) -> ResultEnvelope[Decimal]:
        pass
    
    @abstractmethod
    async def get_all_prices(self) -> ResultEnvelope[Dict[str, Decimal]]:
        pass
    
    @abstractmethod
    async def get_asset_metadata(self, instrument: str) -> ResultEnvelope[AssetMetadata]:
        pass


class BalanceReader(ABC):
    """Balance, position and order reads."""
    
    @abstractmethod
    async def get_balance(self) -> ResultEnvelope[AccountBalance]:
        pass
    
    @abstractmethod
    async def get_positions(self) -> ResultEnvelope[List[Position]]:
        pass
    
    @abstractmethod
    async def get_position(self, instrument: str) -> ResultEnvelope[Optional[Position]]:
        pass
    
    @abstractmethod
    async def get_open_orders(self, instrument: Optional[str] = None) -> ResultEnvelope[List[OpenOrder]]:
        pass
    
    async def get_available_balance(self) -> ResultEnvelope[Decimal]:
        """Margin free for new orders."""
        result = await self.get_balance()
        if not result.success:
            return ResultEnvelope.fail(result.error)
        return ResultEnvelope.ok(result.data.available_balance)
    
    async def get_total_unrealized_pnl(self) -> ResultEnvelope[Decimal]:
        result = await self.get_balance()
        if not result.success:
            return ResultEnvelope.fail(result.error)
        return ResultEnvelope.ok(result.data.unrealized_pnl)


class AdapterMarketReader(MarketReader):
    """MarketReader backed by an exchange adapter."""
    
    def __init__(self, adapter: ExchangeAdapter):
        self._adapter = adapter
    
    async def get_current_price(self, instrument: str) -> ResultEnvelope[Decimal]:
        return await self._adapter.get_current_price(instrument)
    
    async def get_all_prices(self) -> ResultEnvelope[Dict[str, Decimal]]:
        return await self._adapter.get_all_prices()
    
    async def get_asset_metadata(self, instrument: str) -> ResultEnvelope[AssetMetadata]:
        return await self._adapter.get_asset_metadata(instrument)


class AdapterBalanceReader(BalanceReader):
    """BalanceReader backed by an exchange adapter."""
    
    def __init__(self, adapter: ExchangeAdapter):
        self._adapter = adapter
    
    async def get_balance(self) -> ResultEnvelope[AccountBalance]:
        return await self._adapter.get_balance()
    
    async def get_positions(self) -> ResultEnvelope[List[Position]]:
        return await self._adapter.get_positions()
    
    async def get_position(self, instrument: str) -> ResultEnvelope[Optional[Position]]:
        return await self._adapter.get_position(instrument)
    
    async def get_open_orders(self, instrument: Optional[str] = None) -> ResultEnvelope[List[OpenOrder]]:
        return await self._adapter.get_open_orders(instrument)
