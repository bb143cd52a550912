"""Factory for creating broker clients"""

import logging
from typing import Optional

from app_config import AccountConfig
from broker_connector_base import BrokerClient
from .simulated_client import SimulatedBrokerClient


def create_broker_client(
    account_config: AccountConfig,
    logger: Optional[logging.Logger] = None
) -> BrokerClient:
    """
    Factory to create appropriate broker client.

    Args:
        account_config: Account configuration
        logger: Optional logger instance

    Returns:
        BrokerClient instance
    """
    broker = account_config.broker.lower()

    if logger:
        logger.debug(f"Creating {broker} broker client for account {account_config.id}")

    if broker == 'simulated':
        if not account_config.paper_wallet_path:
            raise ValueError(f"Account {account_config.id}: simulated broker requires paper_wallet_path")
        return SimulatedBrokerClient.from_yaml(
            account_config.paper_wallet_path,
            account_id=account_config.account_id,
            logger=logger,
        )
    else:
        raise ValueError(f"Unsupported broker: {broker}")
