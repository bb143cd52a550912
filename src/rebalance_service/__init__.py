"""Account balancing service: broker wiring, metrics cache, scheduling."""

from .broker_factory import create_broker_client
from .metrics import CachedMetricProvider, HttpMetricSource, MetricsCollector
from .rebalancer import AccountRebalancer
from .scheduler import RebalanceScheduler
from .simulated_client import SimulatedBrokerClient
from .snapshot_store import JsonSnapshotStore

__all__ = [
    "create_broker_client",
    "CachedMetricProvider",
    "HttpMetricSource",
    "MetricsCollector",
    "AccountRebalancer",
    "RebalanceScheduler",
    "SimulatedBrokerClient",
    "JsonSnapshotStore",
]
