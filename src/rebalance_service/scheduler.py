"""Scheduler - periodic balancing of all configured accounts"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app_config import AccountConfig, AppConfig
from broker_connector_base import BaseRebalancer, RebalanceResult

RebalancerFactory = Callable[[AccountConfig], BaseRebalancer]


class RebalanceScheduler:
    """
    Runs a balancing pass over every account on a fixed interval.

    Accounts are processed one after another; a failure in one account is
    logged and never stops the others. A pass never overlaps the previous one
    (max_instances=1), late passes are coalesced.
    """

    def __init__(self, app_config: AppConfig, rebalancer_factory: RebalancerFactory,
                 logger: Optional[logging.Logger] = None):
        self.config = app_config
        self.rebalancer_factory = rebalancer_factory
        self.logger = logger or logging.getLogger(__name__)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False
        self._rebalancers: Dict[str, BaseRebalancer] = {}

    async def start(self):
        """Start the scheduler; the first pass runs immediately."""
        interval = self.config.service.balance_interval_seconds
        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.run_once,
            IntervalTrigger(seconds=interval),
            id='balance_accounts',
            name='Balance Accounts',
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
        )
        self.scheduler.start()
        self.running = True
        self.logger.info(f"Scheduler started - balancing {len(self.config.accounts)} accounts every {interval}s")

    async def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler and self.running:
            self.scheduler.shutdown(wait=False)
            self.running = False
            self.logger.info("Scheduler stopped")

    async def run_once(self) -> Dict[str, RebalanceResult]:
        """Execute exactly one balancing pass over all accounts."""
        results: Dict[str, RebalanceResult] = {}
        self.logger.info(f"Balancing pass started for {len(self.config.accounts)} accounts")

        for account in self.config.accounts:
            try:
                rebalancer = self._get_rebalancer(account)
                results[account.id] = await rebalancer.rebalance_account(account)
            except Exception as e:
                self.logger.error(f"Account {account.id} failed: {e}")
                results[account.id] = RebalanceResult(orders=[], total_value=0, success=False, error=str(e))

        successful = sum(1 for r in results.values() if r.success and not r.skipped)
        skipped = sum(1 for r in results.values() if r.skipped)
        failed = len(results) - successful - skipped
        self.logger.info(
            f"Balancing pass complete: {successful} successful, {failed} failed, {skipped} skipped"
        )
        return results

    def _get_rebalancer(self, account: AccountConfig) -> BaseRebalancer:
        rebalancer = self._rebalancers.get(account.id)
        if rebalancer is None:
            rebalancer = self.rebalancer_factory(account)
            self._rebalancers[account.id] = rebalancer
        return rebalancer

    def get_next_run_time(self) -> Optional[str]:
        """
        Get the next scheduled run time.

        Returns:
            ISO format string of next run time, or None if scheduler not running
        """
        if self.scheduler and self.running:
            job = self.scheduler.get_job('balance_accounts')
            if job and job.next_run_time:
                return job.next_run_time.isoformat()
        return None
