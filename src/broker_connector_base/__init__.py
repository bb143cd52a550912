from .base_client import BrokerClient
from .base_metrics import ValuationMetricProvider
from .base_rebalancer import BaseRebalancer
from .models import (
    # Instrument and market data models
    Instrument,
    AumValue,
    # Portfolio models
    Position,
    MarginPosition,
    AccountSnapshot,
    # Order models
    OrderDirection,
    OrderPlanEntry,
    OrderResult,
    OrderStatus,
    # Rebalancing result models
    RebalanceResult,
    CalculateRebalanceResult,
)
from .exceptions import (
    BrokerError,
    BrokerConnectionError,
    BrokerAPIError,
    OrderExecutionError,
)

__version__ = "1.0.0"

__all__ = [
    "BrokerClient",
    "ValuationMetricProvider",
    "BaseRebalancer",
    "Instrument",
    "AumValue",
    "Position",
    "MarginPosition",
    "AccountSnapshot",
    "OrderDirection",
    "OrderPlanEntry",
    "OrderResult",
    "OrderStatus",
    "RebalanceResult",
    "CalculateRebalanceResult",
    "BrokerError",
    "BrokerConnectionError",
    "BrokerAPIError",
    "OrderExecutionError",
    "__version__",
]
