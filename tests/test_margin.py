"""Tests for margin sizing, limits and the end-of-day unwind policy."""

from datetime import datetime

import pytest

from app_config import MarginTradingConfig
from broker_connector_base import MarginPosition
from rebalance_calculator import MarginPlanner


def margin_position(ticker: str, value: float, margin_value: float) -> MarginPosition:
    return MarginPosition(base=ticker, quantity=1, price=value, margin_value=margin_value)


@pytest.fixture
def planner():
    return MarginPlanner(MarginTradingConfig(
        enabled=True,
        multiplier=2.0,
        free_threshold=5000,
        max_margin_size=5000,
        balancing_strategy='keep_if_small',
        market_close_time='18:45',
    ))


@pytest.fixture
def portfolio(make_position):
    return [make_position('A', 600, 100.0), make_position('B', 400, 100.0)]


class TestSizing:

    def test_available_margin(self, planner, portfolio):
        assert planner.available_margin(portfolio) == pytest.approx(100_000.0)

    def test_disabled_margin_has_no_leverage(self, portfolio):
        planner = MarginPlanner(MarginTradingConfig(enabled=False, multiplier=3.0))

        sizes = planner.optimal_position_sizes(portfolio, {'A': 60, 'B': 40})

        assert planner.multiplier == 1.0
        assert planner.available_margin(portfolio) == 0
        assert sizes['A'].total_size == pytest.approx(sizes['A'].base_size)
        assert sizes['A'].margin_size == 0

    def test_optimal_sizes(self, portfolio):
        planner = MarginPlanner(MarginTradingConfig(enabled=True, multiplier=1.5))

        sizes = planner.optimal_position_sizes(portfolio, {'A': 60, 'B': 40})

        assert sizes['A'].base_size == pytest.approx(60_000.0)
        assert sizes['A'].total_size == pytest.approx(90_000.0)
        assert sizes['A'].margin_size == pytest.approx(30_000.0)
        assert sizes['B'].total_size == pytest.approx(60_000.0)


class TestLimits:

    @pytest.mark.parametrize('used, risk, valid', [
        (50_000, 'low', True),
        (70_000, 'medium', True),
        (85_000, 'high', True),
        (120_000, 'high', False),
    ])
    def test_risk_levels(self, planner, portfolio, used, risk, valid):
        check = planner.check_limits(portfolio, [margin_position('A', used * 2, used)])

        assert check.risk_level == risk
        assert check.is_valid is valid
        assert check.remaining == pytest.approx(100_000 - used)

    def test_margin_without_availability_is_high_risk(self, portfolio):
        planner = MarginPlanner(MarginTradingConfig(enabled=False))

        check = planner.check_limits(portfolio, [margin_position('A', 2000, 1000)])

        assert check.risk_level == 'high'
        assert not check.is_valid

    def test_cap_exceeded(self, planner):
        positions = [margin_position('A', 80_000, 40_000), margin_position('B', 55_000, 27_500)]

        check = planner.validate_against_cap(positions, 5000)

        assert not check.is_valid
        assert check.total_margin_used == pytest.approx(67_500)
        assert check.exceeded_amount == pytest.approx(62_500)

    def test_cap_within_limit(self, planner):
        check = planner.validate_against_cap([margin_position('A', 8000, 4000)])

        assert check.is_valid
        assert check.exceeded_amount is None


class TestTransferCost:

    def test_free_below_threshold_and_one_percent_above(self, planner):
        positions = [margin_position('A', 4000, 2000), margin_position('B', 10_000, 5000)]

        cost = planner.transfer_cost(positions)

        assert cost.total_cost == pytest.approx(100.0)
        assert cost.free_transfers == 1
        assert cost.paid_transfers == 1
        assert [item.is_free for item in cost.breakdown] == [True, False]

    def test_threshold_is_inclusive(self, planner):
        cost = planner.transfer_cost([margin_position('A', 5000, 2500)])
        assert cost.total_cost == 0
        assert cost.free_transfers == 1


class TestUnwindDecision:

    def test_no_action_far_from_close(self, planner):
        decision = planner.unwind_decision([], now=datetime(2026, 3, 2, 12, 0))

        assert decision.action == 'none'
        assert not decision.should_remove
        assert decision.timing.time_to_close == 405
        assert not decision.timing.is_last_balance

    def test_remove_strategy_in_last_interval(self, planner):
        positions = [margin_position('A', 10_000, 5000)]

        decision = planner.unwind_decision(positions, strategy='remove', now=datetime(2026, 3, 2, 18, 0))

        assert decision.should_remove
        assert decision.action == 'remove'
        assert decision.transfer_cost == pytest.approx(100.0)

    def test_keep_strategy(self, planner):
        decision = planner.unwind_decision([], strategy='keep', now=datetime(2026, 3, 2, 18, 0))

        assert not decision.should_remove
        assert decision.action == 'keep'

    def test_keep_if_small_removes_large_margin(self, planner):
        positions = [margin_position('A', 12_000, 6000)]

        decision = planner.unwind_decision(positions, now=datetime(2026, 3, 2, 18, 0))

        assert decision.should_remove

    def test_keep_if_small_keeps_small_margin(self, planner):
        positions = [margin_position('A', 8000, 4000)]

        decision = planner.unwind_decision(positions, now=datetime(2026, 3, 2, 18, 0))

        assert not decision.should_remove
        assert decision.action == 'keep'

    def test_past_close_counts_as_last_balance(self, planner):
        decision = planner.unwind_decision([], strategy='remove', now=datetime(2026, 3, 2, 19, 0))

        assert decision.timing.time_to_close == -15
        assert decision.should_remove

    def test_unwind_window_with_short_interval(self, planner):
        late = planner.unwind_decision(
            [], strategy='remove', now=datetime(2026, 3, 2, 18, 35), balance_interval_minutes=10
        )
        early = planner.unwind_decision(
            [], strategy='remove', now=datetime(2026, 3, 2, 18, 20), balance_interval_minutes=10
        )

        assert late.should_remove
        assert early.action == 'none'


class TestMarginPositions:

    def test_debt_attributed_by_value(self, planner, make_position, make_cash, make_snapshot):
        snapshot = make_snapshot(
            make_position('A', 1000, 100.0),
            make_position('B', 500, 100.0),
            make_cash(-50_000),
        )

        positions = {p.base: p for p in planner.margin_positions(snapshot)}

        assert positions['A'].margin_value == pytest.approx(100_000 / 3)
        assert positions['B'].margin_value == pytest.approx(50_000 / 3)
        assert positions['A'].leverage == pytest.approx(1.5)
        assert not positions['A'].margin_call

    def test_positive_cash_means_no_margin(self, planner, make_position, make_cash, make_snapshot):
        snapshot = make_snapshot(make_position('A', 10, 100.0), make_cash(500))

        assert planner.margin_positions(snapshot) == []
