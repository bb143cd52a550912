"""Iteration-to-iteration smoothing of the desired allocation"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, Optional, Tuple
from .models import IterationSnapshot
from .tickers import normalize_allocation


def damp(new: Dict[str, float], prior: Optional[Dict[str, float]], multiplier: float) -> Dict[str, float]:
    """Move each weight from prior towards new by multiplier percent.

    Multiplier 0 or a missing prior leaves the new allocation unchanged, 100
    jumps straight to it. Tickers the prior allocation does not know take
    their new weight. Results are clamped at zero and renormalized to 100.
    """
    if not multiplier or not prior:
        return dict(new)

    damped = {}
    for ticker, new_weight in new.items():
        prior_weight = prior.get(ticker)
        if prior_weight is None:
            value = new_weight
        else:
            value = prior_weight + (new_weight - prior_weight) * multiplier / 100
        damped[ticker] = max(0.0, value)

    if sum(damped.values()) <= 0:
        return dict(new)
    return normalize_allocation(damped)


class SnapshotStore(ABC):
    """Persistence of per-account, per-date iteration snapshots"""

    @abstractmethod
    def read_snapshot(self, account_id: str, day: date) -> Optional[IterationSnapshot]:
        pass

    @abstractmethod
    def write_snapshot(self, snapshot: IterationSnapshot) -> None:
        """Replace any snapshot stored for the same account and date"""
        pass


class InMemorySnapshotStore(SnapshotStore):

    def __init__(self):
        self._snapshots: Dict[Tuple[str, date], IterationSnapshot] = {}

    def read_snapshot(self, account_id: str, day: date) -> Optional[IterationSnapshot]:
        return self._snapshots.get((account_id, day))

    def write_snapshot(self, snapshot: IterationSnapshot) -> None:
        self._snapshots[(snapshot.account_id, snapshot.date)] = snapshot.model_copy(deep=True)


class DiffDamper:
    """Damp the allocation against today's snapshot and persist the result"""

    def __init__(self, store: SnapshotStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def apply(self, account_id: str, allocation: Dict[str, float], multiplier: float,
              today: Optional[date] = None) -> Dict[str, float]:
        if not multiplier:
            return dict(allocation)

        today = today or date.today()
        snapshot = self.store.read_snapshot(account_id, today)
        if snapshot is None or snapshot.date != today:
            self.logger.debug(f"No snapshot for {account_id} on {today}, damping skipped")
            return dict(allocation)

        damped = damp(allocation, snapshot.allocation, multiplier)
        for ticker, weight in damped.items():
            prior = snapshot.allocation.get(ticker)
            if prior is not None:
                self.logger.debug(
                    f"  {ticker}: {prior:.2f}% -> {weight:.2f}% (target {allocation[ticker]:.2f}%)"
                )
        self.logger.info(f"Applied {multiplier}% damping to {len(damped)} tickers")
        return damped

    def persist(self, account_id: str, allocation: Dict[str, float],
                today: Optional[date] = None) -> IterationSnapshot:
        snapshot = IterationSnapshot(
            account_id=account_id,
            date=today or date.today(),
            allocation=dict(allocation),
        )
        self.store.write_snapshot(snapshot)
        self.logger.debug(f"Stored iteration snapshot for {account_id} ({snapshot.date})")
        return snapshot
