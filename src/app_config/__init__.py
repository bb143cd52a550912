"""Application configuration management for the lot rebalancer."""

from .models import (
    AppConfig,
    AccountConfig,
    MarginTradingConfig,
    FundingConfig,
    SellOthersConfig,
    ExchangeClosureBehavior,
    ServiceConfig,
    StorageConfig,
    MetricsConfig,
    TradingConfig,
    DesiredMode,
    MarginBalancingStrategy,
    SellingMode,
    ExchangeClosureMode,
)
from .loader import load_config

__all__ = [
    "AppConfig",
    "AccountConfig",
    "MarginTradingConfig",
    "FundingConfig",
    "SellOthersConfig",
    "ExchangeClosureBehavior",
    "ServiceConfig",
    "StorageConfig",
    "MetricsConfig",
    "TradingConfig",
    "DesiredMode",
    "MarginBalancingStrategy",
    "SellingMode",
    "ExchangeClosureMode",
    "load_config",
]
