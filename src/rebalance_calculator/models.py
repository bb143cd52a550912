from datetime import date, datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from broker_connector_base import Instrument, OrderPlanEntry, Position
from app_config import FundingConfig, MarginTradingConfig
from .tickers import normalize_ticker

MetricKind = Literal['marketCap', 'aum']


class MarketSnapshot(BaseModel):
    """Read-only instrument catalog and last prices for one iteration"""
    instruments: Dict[str, Instrument] = Field(default_factory=dict)
    last_prices: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def build(cls, instruments: List[Instrument], last_prices: Dict[str, float]) -> "MarketSnapshot":
        catalog: Dict[str, Instrument] = {}
        for instrument in instruments:
            key = normalize_ticker(instrument.ticker) or instrument.ticker
            catalog.setdefault(key, instrument)
        return cls(instruments=catalog, last_prices=dict(last_prices))

    def find_instrument(self, ticker: str) -> Optional[Instrument]:
        return self.instruments.get(normalize_ticker(ticker) or ticker)

    def last_price(self, figi: Optional[str]) -> Optional[float]:
        if not figi:
            return None
        price = self.last_prices.get(figi)
        if price is None or price <= 0:
            return None
        return price


class TickerMetric(BaseModel):
    """Metrics gathered for one ticker while building the desired wallet"""
    ticker: str
    market_cap: Optional[float] = None
    aum: Optional[float] = None  # Converted to the home currency
    decorrelation_pct: Optional[float] = None
    weight_metric: float = 0.0


class DesiredWalletResult(BaseModel):
    wallet: Dict[str, float]
    mode_applied: str
    metrics: List[TickerMetric] = Field(default_factory=list)


class IterationSnapshot(BaseModel):
    """Allocation produced by a prior iteration, keyed by account and date"""
    account_id: str
    date: date
    allocation: Dict[str, float]
    created_at: datetime = Field(default_factory=datetime.now)


class PositionSize(BaseModel):
    base_size: float
    margin_size: float
    total_size: float


class PositionPlan(BaseModel):
    """Per-position lot arithmetic produced by the assembler"""
    position: Position
    target_percent: float
    target_value: float
    lots_affordable: int
    quantized_value: float
    remainder: float
    to_buy_lots: float
    to_buy_value: float
    minimum_lot_forced: bool = False

    @property
    def ticker(self) -> str:
        return self.position.base


class SellPlanEntry(BaseModel):
    ticker: str
    figi: Optional[str] = None
    lots: int
    amount: float
    lot_price: float


class SellPlan(BaseModel):
    """Funding sells; shortfall > 0 means sources could not cover the need"""
    entries: List[SellPlanEntry] = Field(default_factory=list)
    total_needed: float = 0.0
    raised: float = 0.0
    shortfall: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.entries


class PlanSettings(BaseModel):
    """Immutable per-iteration inputs of the order plan"""
    margin: Optional[MarginTradingConfig] = None
    funding: Optional[FundingConfig] = None
    min_profit_percent: Optional[float] = None
    home_currency: str = 'RUB'


class OrderPlanResult(BaseModel):
    """Result of order plan assembly with diagnostics"""
    orders: List[OrderPlanEntry]
    desired: Dict[str, float]
    positions: List[PositionPlan] = Field(default_factory=list)
    total_value: float = 0.0
    remains: float = 0.0
    skipped_tickers: List[str] = Field(default_factory=list)
    funding_plan: Optional[SellPlan] = None
    warnings: List[str] = Field(default_factory=list)
    final_percents: Dict[str, float] = Field(default_factory=dict)
