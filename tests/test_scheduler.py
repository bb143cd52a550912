"""Tests for the balancing pass over all accounts."""

import pytest

from app_config import AppConfig
from broker_connector_base import BaseRebalancer, CalculateRebalanceResult, RebalanceResult
from rebalance_service import RebalanceScheduler


class RecordingRebalancer(BaseRebalancer):
    def __init__(self, calls, fail=False):
        super().__init__(broker_client=None)
        self.calls = calls
        self.fail = fail

    async def rebalance_account(self, account_config) -> RebalanceResult:
        self.calls.append(account_config.id)
        if self.fail:
            raise RuntimeError(f"broker down for {account_config.id}")
        return RebalanceResult(orders=[], total_value=100.0, success=True)

    async def calculate_rebalance(self, account_config) -> CalculateRebalanceResult:
        return CalculateRebalanceResult(proposed_orders=[], current_value=0, success=True)


@pytest.fixture
def two_accounts(make_account):
    return AppConfig(accounts=[
        make_account(id='first', account_id='acc-1'),
        make_account(id='second', account_id='acc-2'),
    ])


@pytest.mark.asyncio
class TestRunOnce:

    async def test_each_account_once(self, two_accounts):
        calls = []
        scheduler = RebalanceScheduler(two_accounts, lambda account: RecordingRebalancer(calls))

        results = await scheduler.run_once()

        assert calls == ['first', 'second']
        assert set(results) == {'first', 'second'}
        assert all(r.success for r in results.values())

    async def test_failure_isolated_to_account(self, two_accounts):
        calls = []
        scheduler = RebalanceScheduler(
            two_accounts,
            lambda account: RecordingRebalancer(calls, fail=account.id == 'first'),
        )

        results = await scheduler.run_once()

        assert calls == ['first', 'second']
        assert not results['first'].success
        assert 'broker down' in results['first'].error
        assert results['second'].success

    async def test_factory_error_isolated(self, two_accounts):
        calls = []

        def factory(account):
            if account.id == 'first':
                raise ValueError("simulated broker requires paper_wallet_path")
            return RecordingRebalancer(calls)

        results = await RebalanceScheduler(two_accounts, factory).run_once()

        assert not results['first'].success
        assert results['second'].success
        assert calls == ['second']

    async def test_rebalancers_reused_between_passes(self, two_accounts):
        created = []

        def factory(account):
            created.append(account.id)
            return RecordingRebalancer([])

        scheduler = RebalanceScheduler(two_accounts, factory)
        await scheduler.run_once()
        await scheduler.run_once()

        assert created == ['first', 'second']


class TestScheduleState:

    def test_no_next_run_before_start(self, two_accounts):
        scheduler = RebalanceScheduler(two_accounts, lambda account: RecordingRebalancer([]))
        assert scheduler.get_next_run_time() is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, two_accounts):
        scheduler = RebalanceScheduler(two_accounts, lambda account: RecordingRebalancer([]))

        await scheduler.start()
        try:
            assert scheduler.running
            assert scheduler.get_next_run_time() is not None
        finally:
            await scheduler.stop()

        assert not scheduler.running
