"""Configuration loader with validation."""

import logging
import yaml
from pathlib import Path

from .models import AppConfig

logger = logging.getLogger(__name__)


def load_config(config_path: str | Path) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    The returned AppConfig is immutable and is passed explicitly to every
    component that needs it; nothing re-reads the file mid-iteration.

    Args:
        config_path: Path to config.yaml file

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config validation fails
        yaml.YAMLError: If YAML parsing fails
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    try:
        config = AppConfig(**raw_config)
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ValueError(f"Invalid configuration: {e}") from e

    # Log loaded configuration for audit trail
    logger.info("Configuration loaded successfully:")
    logger.info(f"  Balance interval: {config.service.balance_interval_seconds}s")
    logger.info(f"  Exchange: {config.trading.exchange} ({config.trading.home_currency})")
    logger.info(f"  Snapshot dir: {config.storage.snapshot_dir}")
    logger.info(f"  Metrics cache dir: {config.storage.metrics_dir}")
    logger.info(f"  Live metrics source: {config.metrics.live_base_url or 'disabled'}")
    for account in config.accounts:
        total_weight = sum(account.desired_wallet.values())
        logger.info(
            f"  Account {account.id} ({account.name}): mode={account.desired_mode}, "
            f"margin={'on' if account.margin_trading.enabled else 'off'}, "
            f"funding={'on' if account.buy_requires_total_marginal_sell.enabled else 'off'}, "
            f"diff={account.diff}"
        )
        if abs(total_weight - 100) > 1:
            logger.warning(
                f"  Sum of weights for account {account.id} equals {total_weight}%, not 100% "
                f"- weights will be normalized"
            )

    return config
