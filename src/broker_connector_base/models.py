from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, Field

# Instrument and market data models
class Instrument(BaseModel):
    """Tradable instrument metadata from the broker catalog"""
    ticker: str
    figi: str
    lot_size: int = Field(default=1, ge=1)
    currency: str = 'RUB'
    name: Optional[str] = None

class AumValue(BaseModel):
    """Assets under management reported in its own currency"""
    amount: float
    currency: str = 'RUB'

# Portfolio models
class Position(BaseModel):
    """Standardized position data"""
    base: str
    quote: str = 'RUB'
    figi: Optional[str] = None
    quantity: float = 0.0
    lot_size: int = 1
    price: float = 0.0
    average_price: Optional[float] = None
    average_price_fifo: Optional[float] = None  # Preferred cost basis when known

    @property
    def is_currency(self) -> bool:
        return self.base == self.quote

    @property
    def total_value(self) -> float:
        return self.price * self.quantity

    @property
    def lot_price(self) -> float:
        return self.price * self.lot_size

    @property
    def lots_held(self) -> float:
        return self.quantity / self.lot_size if self.lot_size else 0.0

class MarginPosition(Position):
    """Position part financed with borrowed funds"""
    is_margin: bool = True
    margin_value: float = 0.0
    leverage: float = 1.0
    margin_call: bool = False

class AccountSnapshot(BaseModel):
    """Standardized account snapshot"""
    account_id: str
    positions: List[Position]
    home_currency: str = 'RUB'

    @property
    def total_value(self) -> float:
        return sum(p.total_value for p in self.positions)

    @property
    def cash_balance(self) -> float:
        return sum(
            p.total_value for p in self.positions
            if p.is_currency and p.base == self.home_currency
        )

# Order models
OrderDirection = Literal['BUY', 'SELL']

class OrderPlanEntry(BaseModel):
    """Single planned order in lots (negative lots = sell)"""
    ticker: str
    figi: Optional[str] = None
    lots: int
    value_delta: float
    lot_price: float
    current_lots: float = 0.0
    target_percent: float = 0.0
    reason: Literal['rebalance', 'minimum_lot', 'funding'] = 'rebalance'
    priority: int = 0

    @property
    def direction(self) -> OrderDirection:
        return 'BUY' if self.lots > 0 else 'SELL'

class OrderResult(BaseModel):
    """Standardized order placement result"""
    order_id: str
    figi: str
    lots: int
    direction: OrderDirection
    status: str

class OrderStatus:
    """Normalized order statuses across brokers"""
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    PENDING = "PENDING"
    ERROR = "ERROR"

# Rebalancing result models
class RebalanceResult(BaseModel):
    """Result of rebalance operation"""
    orders: List[OrderPlanEntry]
    total_value: float
    cash_balance: Optional[float] = None
    success: bool
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    failed_orders: List[OrderPlanEntry] = Field(default_factory=list)
    skipped_tickers: List[str] = Field(default_factory=list)
    final_percents: Dict[str, float] = Field(default_factory=dict)
    skipped: bool = False  # Iteration not run (exchange closed)

class CalculateRebalanceResult(BaseModel):
    """Result of rebalance calculation (preview)"""
    proposed_orders: List[OrderPlanEntry]
    current_value: float
    success: bool
    warnings: List[str] = Field(default_factory=list)
    skipped_tickers: List[str] = Field(default_factory=list)
    final_percents: Dict[str, float] = Field(default_factory=dict)
