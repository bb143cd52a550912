"""Selling profitable holdings to pay for funding-restricted purchases"""

import logging
import math
from typing import Collection, Dict, List, Optional
from pydantic import BaseModel
from broker_connector_base import Position
from app_config import FundingConfig, SellingMode
from .models import PositionPlan, SellPlan, SellPlanEntry
from .profit import PositionProfit, calculate_position_profit
from .tickers import normalize_ticker

LOT_EPSILON = 1e-9


def whole_lots_held(position: Position) -> int:
    return int(math.floor(position.lots_held + LOT_EPSILON)) if position.quantity > 0 else 0


class SellSource(BaseModel):
    """A profitable holding that may be sold to raise cash"""
    position: Position
    profit: PositionProfit

    @property
    def ticker(self) -> str:
        return self.position.base

    @property
    def lot_price(self) -> float:
        return self.position.lot_price

    @property
    def lots_held(self) -> int:
        return whole_lots_held(self.position)


class FundingPlanner:
    """Funding-restricted instruments are bought with cash freed by selling
    other profitable holdings, never with borrowed money.
    """

    def __init__(self, config: FundingConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.restricted = {normalize_ticker(t) for t in config.instruments}

    def is_restricted(self, ticker: str) -> bool:
        return normalize_ticker(ticker) in self.restricted

    def eligible_sell_sources(self, wallet: List[Position],
                              exclude: Collection[str] = ()) -> List[SellSource]:
        """Profitable, non-restricted holdings of at least one lot, most profitable first"""
        if not self.config.enabled:
            return []

        excluded = {normalize_ticker(t) for t in exclude}
        sources = []
        for position in wallet:
            if position.is_currency or self.is_restricted(position.base):
                continue
            if normalize_ticker(position.base) in excluded:
                continue
            if position.lot_price <= 0 or whole_lots_held(position) < 1:
                continue

            profit = calculate_position_profit(position)
            if profit is None or profit.amount <= 0:
                continue

            self.logger.debug(
                f"Sell source {position.base}: profit {profit.amount:.2f} ({profit.percent:.2f}%)"
            )
            sources.append(SellSource(position=position, profit=profit))

        sources.sort(key=lambda s: -s.profit.amount)
        return sources

    def required_funds(self, plans: List[PositionPlan], desired: Dict[str, float],
                       total_value: float) -> Dict[str, float]:
        """Purchase value per restricted ticker that is large enough to fund"""
        required: Dict[str, float] = {}
        if not self.config.enabled:
            return required

        desired_tickers = {normalize_ticker(t) for t in desired}
        threshold = total_value * self.config.min_buy_rebalance_percent / 100

        for plan in plans:
            ticker = normalize_ticker(plan.ticker)
            if ticker not in self.restricted or ticker not in desired_tickers:
                continue
            if plan.to_buy_lots < 1 or plan.to_buy_value <= 0:
                continue
            if plan.to_buy_value > threshold:
                required[ticker] = plan.to_buy_value
                self.logger.debug(
                    f"Need {plan.to_buy_value:.2f} for {ticker} (threshold {threshold:.2f})"
                )
            else:
                self.logger.debug(
                    f"Purchase of {ticker} below threshold: {plan.to_buy_value:.2f} <= {threshold:.2f}"
                )
        return required

    def sell_plan(self, sources: List[SellSource], required: Dict[str, float],
                  mode: Optional[SellingMode] = None, cash_balance: float = 0.0) -> SellPlan:
        mode = mode or self.config.selling_mode
        purchases = sum(required.values())

        if cash_balance < 0:
            total_needed = abs(cash_balance) + purchases
        else:
            total_needed = purchases - cash_balance

        if total_needed <= 0 or mode == 'none':
            return SellPlan(total_needed=max(0.0, total_needed))

        if mode == 'only_positive_positions_sell':
            entries = self._greedy(sources, total_needed)
        else:
            entries = self._proportional(sources, total_needed)

        raised = sum(e.amount for e in entries)
        shortfall = max(0.0, total_needed - raised)
        if shortfall > 0:
            self.logger.warning(
                f"Funding shortfall: need {total_needed:.2f}, sources raise {raised:.2f}, "
                f"missing {shortfall:.2f}"
            )
        return SellPlan(entries=entries, total_needed=total_needed, raised=raised, shortfall=shortfall)

    def _greedy(self, sources: List[SellSource], total_needed: float) -> List[SellPlanEntry]:
        """Fewest whole lots from the most profitable holdings first"""
        entries = []
        remaining = total_needed
        for source in sources:
            if remaining <= 0:
                break
            lots = min(math.ceil(remaining / source.lot_price), source.lots_held)
            if lots <= 0:
                continue
            amount = lots * source.lot_price
            entries.append(self._entry(source, lots, amount))
            remaining -= amount
        return entries

    def _proportional(self, sources: List[SellSource], total_needed: float) -> List[SellPlanEntry]:
        """Split the need by each holding's share of eligible value, whole lots only"""
        total_value = sum(s.position.total_value for s in sources)
        if total_value <= 0:
            return []

        entries = []
        remaining = total_needed
        for source in sources:
            if remaining <= 0:
                break
            share = source.position.total_value / total_value
            target = min(share * total_needed, source.position.total_value, remaining)
            lots = min(int(math.floor(target / source.lot_price + LOT_EPSILON)), source.lots_held)
            if lots <= 0:
                continue
            amount = lots * source.lot_price
            entries.append(self._entry(source, lots, amount))
            remaining -= amount
        return entries

    def _entry(self, source: SellSource, lots: int, amount: float) -> SellPlanEntry:
        self.logger.debug(f"Funding sell {lots} lots of {source.ticker} for {amount:.2f}")
        return SellPlanEntry(
            ticker=source.ticker,
            figi=source.position.figi,
            lots=lots,
            amount=amount,
            lot_price=source.lot_price,
        )
