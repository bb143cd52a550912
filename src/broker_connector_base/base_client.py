from abc import ABC, abstractmethod
from typing import Dict, List
from .models import AccountSnapshot, Instrument, OrderDirection, OrderResult

class BrokerClient(ABC):
    """Abstract base class for broker API clients"""

    @abstractmethod
    async def get_account_snapshot(self, account_id: str) -> AccountSnapshot:
        """Get account positions including currency balances"""
        pass

    @abstractmethod
    async def get_instruments(self) -> List[Instrument]:
        """Get the tradable instrument catalog"""
        pass

    @abstractmethod
    async def get_last_prices(self, figis: List[str]) -> Dict[str, float]:
        """Get last unit prices keyed by figi (missing figis are omitted)"""
        pass

    @abstractmethod
    async def place_order(
        self,
        account_id: str,
        figi: str,
        lots: int,
        direction: OrderDirection
    ) -> OrderResult:
        """Place a market order for a whole number of lots"""
        pass

    @abstractmethod
    async def is_exchange_open(self, exchange: str) -> bool:
        """Check the exchange trading schedule"""
        pass
