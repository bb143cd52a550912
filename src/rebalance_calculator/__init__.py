from .calculator import OrderPlanAssembler
from .desired_builder import DesiredWalletBuilder
from .diff_damper import DiffDamper, SnapshotStore, InMemorySnapshotStore, damp
from .exceptions import BalancingDataError, StrictDataError
from .funding import FundingPlanner, SellSource, whole_lots_held
from .margin import (
    MarginPlanner,
    MarginLimitCheck,
    MarginCapCheck,
    TransferCost,
    TransferCostItem,
    UnwindDecision,
    UnwindTiming,
)
from .models import (
    MarketSnapshot,
    TickerMetric,
    DesiredWalletResult,
    IterationSnapshot,
    PositionSize,
    PositionPlan,
    SellPlan,
    SellPlanEntry,
    PlanSettings,
    OrderPlanResult,
)
from .profit import (
    PositionProfit,
    IterationProfitSummary,
    calculate_position_profit,
    iteration_profit_summary,
)
from .tickers import (
    TICKER_ALIASES,
    normalize_ticker,
    tickers_equal,
    normalize_allocation,
    canonicalize_allocation,
    sums_to_100,
)

__version__ = "1.0.0"

__all__ = [
    "OrderPlanAssembler",
    "DesiredWalletBuilder",
    "DiffDamper",
    "SnapshotStore",
    "InMemorySnapshotStore",
    "damp",
    "BalancingDataError",
    "StrictDataError",
    "FundingPlanner",
    "SellSource",
    "whole_lots_held",
    "MarginPlanner",
    "MarginLimitCheck",
    "MarginCapCheck",
    "TransferCost",
    "TransferCostItem",
    "UnwindDecision",
    "UnwindTiming",
    "MarketSnapshot",
    "TickerMetric",
    "DesiredWalletResult",
    "IterationSnapshot",
    "PositionSize",
    "PositionPlan",
    "SellPlan",
    "SellPlanEntry",
    "PlanSettings",
    "OrderPlanResult",
    "PositionProfit",
    "IterationProfitSummary",
    "calculate_position_profit",
    "iteration_profit_summary",
    "TICKER_ALIASES",
    "normalize_ticker",
    "tickers_equal",
    "normalize_allocation",
    "canonicalize_allocation",
    "sums_to_100",
    "__version__",
]
