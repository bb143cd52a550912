"""Unrealized profit of held positions"""

import logging
from typing import List, Optional
from pydantic import BaseModel, Field
from broker_connector_base import Position
from .tickers import normalize_ticker

logger = logging.getLogger(__name__)


class PositionProfit(BaseModel):
    ticker: str
    current_value: float
    cost_basis: float
    amount: float
    percent: float


class IterationProfitSummary(BaseModel):
    total_profit: float = 0.0
    total_profit_percent: float = 0.0
    profit_positions: int = 0
    loss_positions: int = 0
    records: List[PositionProfit] = Field(default_factory=list)


def cost_basis_price(position: Position) -> Optional[float]:
    """FIFO average price when known, else the plain average price"""
    if position.average_price_fifo:
        return position.average_price_fifo
    if position.average_price:
        return position.average_price
    return None


def calculate_position_profit(position: Position) -> Optional[PositionProfit]:
    """Profit of a single position, or None when it cannot be computed"""
    if position.is_currency:
        return None
    if position.quantity <= 0 or position.total_value <= 0:
        return None

    average_price = cost_basis_price(position)
    if average_price is None:
        logger.debug(f"No cost basis for {position.base}")
        return None

    original_cost = average_price * position.quantity
    amount = position.total_value - original_cost
    percent = amount / original_cost * 100 if original_cost > 0 else 0.0

    return PositionProfit(
        ticker=normalize_ticker(position.base) or position.base,
        current_value=position.total_value,
        cost_basis=original_cost,
        amount=amount,
        percent=percent,
    )


def iteration_profit_summary(wallet: List[Position]) -> IterationProfitSummary:
    summary = IterationProfitSummary()
    total_cost = 0.0

    for position in wallet:
        record = calculate_position_profit(position)
        if record is None:
            continue
        summary.records.append(record)
        summary.total_profit += record.amount
        total_cost += record.cost_basis
        if record.amount > 0:
            summary.profit_positions += 1
        elif record.amount < 0:
            summary.loss_positions += 1

    if total_cost > 0:
        summary.total_profit_percent = summary.total_profit / total_cost * 100
    return summary
