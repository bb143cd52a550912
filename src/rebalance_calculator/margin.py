"""Margin-aware position sizing and the end-of-day margin policy"""

import logging
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from broker_connector_base import AccountSnapshot, MarginPosition, Position
from app_config import MarginBalancingStrategy, MarginTradingConfig
from .models import PositionSize

TRANSFER_FEE_RATE = 0.01
DEFAULT_UNWIND_WINDOW_MINUTES = 15

RiskLevel = Literal['low', 'medium', 'high']


class MarginLimitCheck(BaseModel):
    is_valid: bool
    available: float
    used: float
    remaining: float
    risk_level: RiskLevel


class MarginCapCheck(BaseModel):
    is_valid: bool
    total_margin_used: float
    max_margin_allowed: float
    exceeded_amount: Optional[float] = None


class TransferCostItem(BaseModel):
    ticker: str
    cost: float
    is_free: bool


class TransferCost(BaseModel):
    total_cost: float = 0.0
    free_transfers: int = 0
    paid_transfers: int = 0
    breakdown: List[TransferCostItem] = Field(default_factory=list)


class UnwindTiming(BaseModel):
    time_to_close: int
    time_to_next_balance: int
    is_last_balance: bool


class UnwindDecision(BaseModel):
    should_remove: bool
    action: Literal['none', 'remove', 'keep']
    reason: str
    transfer_cost: float = 0.0
    timing: UnwindTiming


def _minutes_of_day(hhmm: str) -> int:
    hour, minute = hhmm.split(':')
    return int(hour) * 60 + int(minute)


def _portfolio_value(portfolio: List[Position]) -> float:
    return sum(p.total_value for p in portfolio)


class MarginPlanner:
    """Margin calculations for one account's margin settings"""

    def __init__(self, config: MarginTradingConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    @property
    def multiplier(self) -> float:
        return self.config.multiplier if self.config.enabled else 1.0

    def available_margin(self, portfolio: List[Position]) -> float:
        return _portfolio_value(portfolio) * (self.multiplier - 1)

    def optimal_position_sizes(self, portfolio: List[Position],
                               desired: Dict[str, float]) -> Dict[str, PositionSize]:
        """Unleveraged and leveraged target value per ticker"""
        total_value = _portfolio_value(portfolio)
        target_value = total_value * self.multiplier

        sizes = {}
        for ticker, percent in desired.items():
            base_size = total_value * percent / 100
            total_size = target_value * percent / 100
            sizes[ticker] = PositionSize(
                base_size=base_size,
                margin_size=max(0.0, total_size - base_size),
                total_size=total_size,
            )
        return sizes

    def check_limits(self, portfolio: List[Position],
                     margin_positions: List[MarginPosition]) -> MarginLimitCheck:
        available = self.available_margin(portfolio)
        used = sum(p.margin_value for p in margin_positions)
        remaining = available - used

        if available > 0:
            usage_ratio = used / available
        else:
            usage_ratio = float('inf') if used > 0 else 0.0

        risk_level: RiskLevel = 'low'
        if usage_ratio > 0.8:
            risk_level = 'high'
        elif usage_ratio > 0.6:
            risk_level = 'medium'

        return MarginLimitCheck(
            is_valid=remaining >= 0,
            available=available,
            used=used,
            remaining=remaining,
            risk_level=risk_level,
        )

    def validate_against_cap(self, margin_positions: List[MarginPosition],
                             max_margin_size: Optional[float] = None) -> MarginCapCheck:
        cap = self.config.max_margin_size if max_margin_size is None else max_margin_size
        used = sum(p.margin_value for p in margin_positions)
        is_valid = used <= cap
        return MarginCapCheck(
            is_valid=is_valid,
            total_margin_used=used,
            max_margin_allowed=cap,
            exceeded_amount=None if is_valid else used - cap,
        )

    def transfer_cost(self, margin_positions: List[MarginPosition],
                      free_threshold: Optional[float] = None) -> TransferCost:
        """Overnight carry cost: free up to the threshold, 1% of position value above it"""
        threshold = self.config.free_threshold if free_threshold is None else free_threshold
        result = TransferCost()

        for position in margin_positions:
            value = position.total_value
            is_free = value <= threshold
            cost = 0.0 if is_free else value * TRANSFER_FEE_RATE
            if is_free:
                result.free_transfers += 1
            else:
                result.paid_transfers += 1
                result.total_cost += cost
            result.breakdown.append(TransferCostItem(ticker=position.base, cost=cost, is_free=is_free))

        return result

    def unwind_decision(self, margin_positions: List[MarginPosition],
                        strategy: Optional[MarginBalancingStrategy] = None,
                        now: Optional[datetime] = None,
                        balance_interval_minutes: int = 60,
                        market_close_time: Optional[str] = None,
                        unwind_window_minutes: int = DEFAULT_UNWIND_WINDOW_MINUTES) -> UnwindDecision:
        """Decide whether margin positions must be closed before the session ends.

        The strategy only applies once the market close is less than one
        balancing interval (or the unwind window) away, or already past.
        """
        strategy = strategy or self.config.balancing_strategy
        now = now or datetime.now()
        close_time = market_close_time or self.config.market_close_time

        time_to_close = _minutes_of_day(close_time) - (now.hour * 60 + now.minute)
        is_last_balance = (
            time_to_close <= 0
            or time_to_close < balance_interval_minutes
            or time_to_close < unwind_window_minutes
        )
        timing = UnwindTiming(
            time_to_close=time_to_close,
            time_to_next_balance=balance_interval_minutes,
            is_last_balance=is_last_balance,
        )

        if not is_last_balance:
            return UnwindDecision(
                should_remove=False,
                action='none',
                reason=f"Not time to apply margin strategy (time to close: {time_to_close} min)",
                timing=timing,
            )

        cost = self.transfer_cost(margin_positions).total_cost

        if strategy == 'remove':
            return UnwindDecision(
                should_remove=True,
                action='remove',
                reason=f"Strategy: remove margin at market close (time to close: {time_to_close} min)",
                transfer_cost=cost,
                timing=timing,
            )

        if strategy == 'keep':
            return UnwindDecision(
                should_remove=False,
                action='keep',
                reason=f"Strategy: keep margin (time to close: {time_to_close} min)",
                timing=timing,
            )

        total_margin = sum(p.margin_value for p in margin_positions)
        cap = self.config.max_margin_size
        if total_margin > cap:
            return UnwindDecision(
                should_remove=True,
                action='remove',
                reason=(
                    f"Strategy: remove margin (sum {total_margin:.2f} > max {cap:.2f}, "
                    f"time to close: {time_to_close} min)"
                ),
                transfer_cost=cost,
                timing=timing,
            )
        return UnwindDecision(
            should_remove=False,
            action='keep',
            reason=(
                f"Strategy: keep margin (sum {total_margin:.2f} <= max {cap:.2f}, "
                f"time to close: {time_to_close} min)"
            ),
            timing=timing,
        )

    def margin_positions(self, snapshot: AccountSnapshot) -> List[MarginPosition]:
        """Attribute a negative cash balance to held positions by value"""
        debt = -snapshot.cash_balance
        if debt <= 0:
            return []

        held = [p for p in snapshot.positions if not p.is_currency and p.total_value > 0]
        total = _portfolio_value(held)
        if total <= 0:
            return []

        result = []
        for position in held:
            margin_value = debt * position.total_value / total
            own_value = position.total_value - margin_value
            leverage = position.total_value / own_value if own_value > 0 else self.multiplier
            result.append(MarginPosition(
                **position.model_dump(),
                margin_value=margin_value,
                leverage=leverage,
                margin_call=own_value <= 0,
            ))
        return result
