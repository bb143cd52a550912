from abc import ABC, abstractmethod
from typing import Optional
import logging
from .base_client import BrokerClient
from .exceptions import BrokerError
from .models import RebalanceResult, CalculateRebalanceResult

class BaseRebalancer(ABC):
    """Drives balancing iterations for accounts served by one broker client"""

    def __init__(self, broker_client: BrokerClient, logger: Optional[logging.Logger] = None):
        self.broker = broker_client
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    async def rebalance_account(self, account_config) -> RebalanceResult:
        """Run one iteration: plan, submit orders, persist state"""
        pass

    @abstractmethod
    async def calculate_rebalance(self, account_config) -> CalculateRebalanceResult:
        """Plan one iteration without submitting orders or persisting state"""
        pass

    async def exchange_open(self, exchange: str) -> bool:
        """Trading status of the exchange; an unknown status counts as closed"""
        try:
            return await self.broker.is_exchange_open(exchange)
        except BrokerError as e:
            self.logger.warning(f"Could not get {exchange} trading status, treating as closed: {e}")
            return False
