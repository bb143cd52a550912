"""Pydantic models for application configuration with validation."""

import re
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

DesiredMode = Literal['manual', 'default', 'marketcap', 'aum', 'marketcap_aum', 'decorrelation']
MarginBalancingStrategy = Literal['remove', 'keep', 'keep_if_small']
SellingMode = Literal['only_positive_positions_sell', 'equal_in_percents', 'none']
ExchangeClosureMode = Literal['skip_iteration', 'force_orders', 'dry_run']

_TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


def _validate_hhmm(v: str) -> str:
    if not _TIME_PATTERN.match(v):
        raise ValueError(
            f"Invalid time format '{v}'. Must be HH:MM where HH is 00-23 and MM is 00-59"
        )
    return v


class MarginTradingConfig(BaseModel):
    """Margin trading settings for an account."""

    model_config = {"frozen": True}

    enabled: bool = Field(
        default=False,
        description="Size positions against the leveraged portfolio value"
    )
    multiplier: float = Field(
        default=1.0,
        ge=1.0,
        le=4.0,
        description="Portfolio leverage multiplier"
    )
    free_threshold: float = Field(
        default=5000.0,
        ge=0.0,
        description="Margin positions at or below this value are carried overnight for free"
    )
    max_margin_size: float = Field(
        default=5000.0,
        ge=0.0,
        description="Cap on the total margin value"
    )
    balancing_strategy: MarginBalancingStrategy = Field(
        default='keep',
        description="What to do with margin positions near market close"
    )
    market_close_time: str = Field(
        default="18:45",
        description="Market close time in HH:MM format (exchange local time)"
    )

    @field_validator("market_close_time")
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        """Validate time format is HH:MM where HH is 00-23 and MM is 00-59."""
        return _validate_hhmm(v)


class SellOthersConfig(BaseModel):
    """How other holdings are sold to fund restricted purchases."""

    model_config = {"frozen": True}

    mode: SellingMode = Field(
        default='only_positive_positions_sell',
        description="only_positive_positions_sell=profit-ranked greedy, "
                    "equal_in_percents=proportional by value, none=disabled"
    )


class FundingConfig(BaseModel):
    """Instruments that must be bought with freed cash only."""

    model_config = {"frozen": True}

    enabled: bool = False
    instruments: List[str] = Field(
        default_factory=list,
        description="Funding-restricted tickers"
    )
    min_buy_rebalance_percent: float = Field(
        default=0.5,
        ge=0.0,
        le=100.0,
        description="Purchases below this percent of portfolio value do not trigger sells"
    )
    allow_to_sell_others_positions_to_buy_non_marginal_positions: SellOthersConfig = Field(
        default_factory=SellOthersConfig
    )

    @property
    def selling_mode(self) -> SellingMode:
        return self.allow_to_sell_others_positions_to_buy_non_marginal_positions.mode


class ExchangeClosureBehavior(BaseModel):
    """What an iteration does while the exchange is closed."""

    model_config = {"frozen": True}

    mode: ExchangeClosureMode = 'skip_iteration'
    update_iteration_result: bool = Field(
        default=False,
        description="Persist the damping snapshot for runs made while the exchange is closed"
    )


class AccountConfig(BaseModel):
    """Per-account balancing configuration."""

    model_config = {"frozen": True}

    id: str
    name: str
    account_id: str
    broker: str = 'simulated'
    paper_wallet_path: Optional[str] = Field(
        default=None,
        description="YAML wallet used by the simulated broker"
    )
    desired_wallet: Dict[str, float]
    desired_mode: DesiredMode = 'manual'
    sleep_between_orders: float = Field(
        default=3.0,
        ge=0.0,
        le=60.0,
        description="Seconds to wait between submitted orders"
    )
    margin_trading: MarginTradingConfig = Field(default_factory=MarginTradingConfig)
    buy_requires_total_marginal_sell: FundingConfig = Field(default_factory=FundingConfig)
    min_profit_percent_for_close_position: Optional[float] = Field(
        default=None,
        description="Sells of positions below this profit percent are skipped"
    )
    exchange_closure_behavior: ExchangeClosureBehavior = Field(
        default_factory=ExchangeClosureBehavior
    )
    diff: Literal['off', 'iteration'] = 'off'
    diff_multiplier: float = Field(
        default=0.0,
        ge=0.0,
        le=100.0,
        description="0 keeps the prior allocation, 100 jumps to the new one"
    )

    @field_validator("desired_wallet")
    @classmethod
    def validate_desired_wallet(cls, v: Dict[str, float]) -> Dict[str, float]:
        if not v:
            raise ValueError("desired_wallet must not be empty")
        for ticker, weight in v.items():
            if weight < 0:
                raise ValueError(f"Weight for {ticker} must not be negative")
        return v

    @property
    def damping_enabled(self) -> bool:
        return self.diff == 'iteration' and self.diff_multiplier > 0


class ServiceConfig(BaseModel):
    """Service configuration."""

    model_config = {"frozen": True}

    balance_interval_seconds: int = Field(
        default=3600,
        ge=60,
        le=86400,
        description="Interval between balancing iterations"
    )
    log_level: str = Field(default="INFO")
    log_format: Literal['text', 'json'] = Field(default='text')
    log_dir: Optional[str] = Field(
        default=None,
        description="Directory for rotated log files; stdout only when unset"
    )
    run_once: bool = Field(
        default=False,
        description="Run a single balancing pass and exit (same as --once)"
    )


class StorageConfig(BaseModel):
    """On-disk locations."""

    model_config = {"frozen": True}

    snapshot_dir: str = Field(default="diff_data")
    metrics_dir: str = Field(default="etf_metrics")


class MetricsConfig(BaseModel):
    """Valuation metric sources."""

    model_config = {"frozen": True}

    live_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the JSON metrics API; cache only when unset"
    )
    request_timeout_seconds: float = Field(default=30.0, ge=1.0, le=120.0)
    collect_before_iteration: bool = Field(
        default=False,
        description="Refresh the metrics cache before building the desired wallet"
    )


class TradingConfig(BaseModel):
    """Exchange-level trading parameters."""

    model_config = {"frozen": True}

    exchange: str = Field(default="MOEX")
    home_currency: str = Field(default="RUB")
    margin_unwind_window_minutes: int = Field(
        default=15,
        ge=1,
        le=120,
        description="Always apply the margin strategy this close to market close"
    )


class AppConfig(BaseModel):
    """Root application configuration."""

    model_config = {"frozen": True}

    accounts: List[AccountConfig] = Field(default_factory=list)
    service: ServiceConfig = Field(
        default_factory=ServiceConfig,
        description="Service configuration"
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description="Snapshot and metrics cache locations"
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Valuation metric sources"
    )
    trading: TradingConfig = Field(
        default_factory=TradingConfig,
        description="Exchange-level trading parameters"
    )

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "AppConfig":
        ids = [account.id for account in self.accounts]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account ids: {', '.join(duplicates)}")
        return self

    def get_account(self, account_id: str) -> Optional[AccountConfig]:
        for account in self.accounts:
            if account.id == account_id:
                return account
        return None
