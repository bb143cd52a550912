from abc import ABC, abstractmethod
from typing import Optional
from .models import AumValue

class ValuationMetricProvider(ABC):
    """Abstract source of per-ticker valuation metrics"""

    @abstractmethod
    async def market_cap(self, ticker: str) -> Optional[float]:
        """Market capitalization in the home currency, or None"""
        pass

    @abstractmethod
    async def aum(self, ticker: str) -> Optional[AumValue]:
        """Assets under management in the fund currency, or None"""
        pass

    @abstractmethod
    async def fx_rate(self, currency: str) -> float:
        """Rate converting one unit of currency into the home currency"""
        pass
