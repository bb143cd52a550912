"""Per-account rebalancing iteration"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional
import logging

from app_config import AccountConfig, AppConfig
from broker_connector_base import (
    AccountSnapshot,
    BaseRebalancer,
    BrokerClient,
    BrokerError,
    CalculateRebalanceResult,
    OrderPlanEntry,
    OrderStatus,
    RebalanceResult,
    ValuationMetricProvider,
)
from rebalance_calculator import (
    DesiredWalletBuilder,
    DiffDamper,
    InMemorySnapshotStore,
    MarginPlanner,
    MarketSnapshot,
    OrderPlanAssembler,
    OrderPlanResult,
    PlanSettings,
    SnapshotStore,
    StrictDataError,
    iteration_profit_summary,
    normalize_ticker,
)
from .context import clear_current_account, set_current_account
from .metrics import MetricsCollector

METRIC_MODES = ('marketcap', 'aum', 'marketcap_aum', 'decorrelation')


@dataclass
class IterationPlan:
    snapshot: AccountSnapshot
    desired: Dict[str, float]
    plan: OrderPlanResult
    warnings: List[str]


class AccountRebalancer(BaseRebalancer):
    """Runs one balancing iteration for an account"""

    def __init__(self, broker_client: BrokerClient, app_config: AppConfig,
                 metric_provider: Optional[ValuationMetricProvider] = None,
                 snapshot_store: Optional[SnapshotStore] = None,
                 metrics_collector: Optional[MetricsCollector] = None,
                 clock: Callable[[], datetime] = datetime.now,
                 logger: Optional[logging.Logger] = None):
        super().__init__(broker_client, logger)
        self.config = app_config
        self.builder = DesiredWalletBuilder(metric_provider, logger=self.logger)
        self.damper = DiffDamper(snapshot_store or InMemorySnapshotStore(), logger=self.logger)
        self.assembler = OrderPlanAssembler(logger=self.logger)
        self.metrics_collector = metrics_collector
        self.clock = clock

    async def rebalance_account(self, account: AccountConfig) -> RebalanceResult:
        """Execute rebalancing for account"""
        set_current_account(account.id)
        account_id = account.account_id
        self.logger.info(f"Starting rebalance for account {account.id} ({account_id})")

        try:
            exchange_open = await self.exchange_open(self.config.trading.exchange)
            closure = account.exchange_closure_behavior
            dry_run = False
            if not exchange_open:
                if closure.mode == 'skip_iteration':
                    self.logger.info(f"Exchange {self.config.trading.exchange} is closed, skipping iteration")
                    return RebalanceResult(orders=[], total_value=0, success=True, skipped=True)
                dry_run = closure.mode == 'dry_run'
                self.logger.info(
                    f"Exchange {self.config.trading.exchange} is closed, continuing in {closure.mode} mode"
                )

            iteration = await self._plan_iteration(account)
            plan = iteration.plan
            self._log_planned_orders(plan.orders, is_preview=dry_run)

            failed_orders: List[OrderPlanEntry] = []
            executed: List[OrderPlanEntry] = []
            if not dry_run:
                executed, failed_orders = await self._execute_orders(account, plan.orders)

            warnings = list(iteration.warnings)
            if failed_orders:
                failed_details = [f"{o.ticker} x{o.lots}" for o in failed_orders]
                warnings.append(f"Orders failed: {', '.join(failed_details)}")

            if account.damping_enabled and (exchange_open or closure.update_iteration_result):
                self.damper.persist(account.id, iteration.desired, today=self._today())

            final_snapshot = iteration.snapshot
            if executed:
                final_snapshot = await self.broker.get_account_snapshot(account_id)
                self._log_account_snapshot("FINAL", final_snapshot)
            self._log_share_changes(plan.desired, plan.final_percents)
            self._log_profit_summary(final_snapshot)

            self.logger.info(f"Rebalance completed for account {account.id}")
            return RebalanceResult(
                orders=executed,
                total_value=final_snapshot.total_value,
                cash_balance=final_snapshot.cash_balance,
                success=True,
                warnings=warnings,
                failed_orders=failed_orders,
                skipped_tickers=plan.skipped_tickers,
                final_percents=plan.final_percents,
            )

        except StrictDataError as e:
            self.logger.error(f"Rebalance halted for account {account.id}: {e}")
            return RebalanceResult(orders=[], total_value=0, success=False, error=str(e))
        except Exception as e:
            self.logger.error(f"Rebalance failed for account {account.id}: {str(e)}")
            return RebalanceResult(orders=[], total_value=0, success=False, error=str(e))
        finally:
            clear_current_account()

    async def calculate_rebalance(self, account: AccountConfig) -> CalculateRebalanceResult:
        """Calculate rebalance without executing (preview)"""
        set_current_account(account.id)
        self.logger.info(f"Calculating rebalance for account {account.id}")
        try:
            iteration = await self._plan_iteration(account)
        finally:
            clear_current_account()

        self._log_planned_orders(iteration.plan.orders, is_preview=True)
        return CalculateRebalanceResult(
            proposed_orders=iteration.plan.orders,
            current_value=iteration.snapshot.total_value,
            success=True,
            warnings=iteration.warnings,
            skipped_tickers=iteration.plan.skipped_tickers,
            final_percents=iteration.plan.final_percents,
        )

    async def _plan_iteration(self, account: AccountConfig) -> IterationPlan:
        snapshot = await self.broker.get_account_snapshot(account.account_id)
        self._log_account_snapshot("INITIAL", snapshot)

        desired = await self._build_desired(account)
        if account.damping_enabled:
            desired = self.damper.apply(account.id, desired, account.diff_multiplier, today=self._today())
        self._log_target_allocations(desired)

        market = await self._market_snapshot(snapshot, desired)

        warnings: List[str] = []
        settings = PlanSettings(
            margin=self._margin_settings(account, snapshot, warnings),
            funding=account.buy_requires_total_marginal_sell,
            min_profit_percent=account.min_profit_percent_for_close_position,
            home_currency=snapshot.home_currency,
        )
        plan = self.assembler.calculate_plan(snapshot, desired, market, settings)
        warnings.extend(plan.warnings)
        return IterationPlan(snapshot=snapshot, desired=desired, plan=plan, warnings=warnings)

    async def _build_desired(self, account: AccountConfig) -> Dict[str, float]:
        if account.desired_mode in METRIC_MODES and self.metrics_collector is not None \
                and self.config.metrics.collect_before_iteration:
            await self.metrics_collector.collect(list(account.desired_wallet.keys()))

        result = await self.builder.build(account.desired_mode, account.desired_wallet)
        if result.mode_applied != 'manual':
            self.logger.info(f"Desired wallet built in {result.mode_applied} mode")
        return result.wallet

    async def _market_snapshot(self, snapshot: AccountSnapshot, desired: Dict[str, float]) -> MarketSnapshot:
        """Catalog and prices for desired tickers that are not held yet"""
        held = {normalize_ticker(p.base) for p in snapshot.positions if not p.is_currency}
        missing = {normalize_ticker(t) for t in desired} - held
        if not missing:
            return MarketSnapshot()

        try:
            instruments = await self.broker.get_instruments()
            wanted = [i for i in instruments if normalize_ticker(i.ticker) in missing]
            prices = await self.broker.get_last_prices([i.figi for i in wanted])
        except BrokerError as e:
            self.logger.warning(f"Instrument lookup failed, new tickers skipped this iteration: {e}")
            return MarketSnapshot()
        return MarketSnapshot.build(wanted, prices)

    def _margin_settings(self, account: AccountConfig, snapshot: AccountSnapshot, warnings: List[str]):
        margin = account.margin_trading
        if not margin.enabled:
            return None

        planner = MarginPlanner(margin, logger=self.logger)
        margin_positions = planner.margin_positions(snapshot)

        limits = planner.check_limits(snapshot.positions, margin_positions)
        self.logger.info(
            f"Margin: available {limits.available:,.2f}, used {limits.used:,.2f}, risk {limits.risk_level}"
        )
        if not limits.is_valid:
            warnings.append(f"Margin used {limits.used:,.2f} exceeds available {limits.available:,.2f}")

        cap = planner.validate_against_cap(margin_positions)
        if not cap.is_valid:
            warnings.append(
                f"Margin used {cap.total_margin_used:,.2f} exceeds cap {cap.max_margin_allowed:,.2f} "
                f"by {cap.exceeded_amount:,.2f}"
            )

        decision = planner.unwind_decision(
            margin_positions,
            now=self.clock(),
            balance_interval_minutes=self.config.service.balance_interval_seconds // 60,
            unwind_window_minutes=self.config.trading.margin_unwind_window_minutes,
        )
        self.logger.info(decision.reason)
        if decision.should_remove:
            self.logger.info(f"Planning without leverage, transfer cost avoided: {decision.transfer_cost:,.2f}")
            return None
        return margin

    async def _execute_orders(self, account: AccountConfig, orders: List[OrderPlanEntry]):
        """Submit orders one by one; a failed order does not stop the batch"""
        executed = []
        failed = []
        for i, order in enumerate(orders):
            if i > 0:
                await asyncio.sleep(account.sleep_between_orders)
            try:
                result = await self.broker.place_order(
                    account_id=account.account_id,
                    figi=order.figi,
                    lots=abs(order.lots),
                    direction=order.direction,
                )
                if result.status in (OrderStatus.REJECTED, OrderStatus.ERROR):
                    self.logger.error(f"Order {result.order_id} for {order.ticker} {result.status.lower()}")
                    failed.append(order)
                else:
                    self.logger.info(
                        f"Order {result.order_id}: {order.direction} {abs(order.lots)} lots of {order.ticker}"
                    )
                    executed.append(order)
            except BrokerError as e:
                self.logger.error(f"Order for {order.ticker} x{order.lots} failed: {e}")
                failed.append(order)
        return executed, failed

    def _today(self) -> date:
        return self.clock().date()

    def _log_account_snapshot(self, stage: str, snapshot: AccountSnapshot):
        """Log detailed account snapshot"""
        total_value = snapshot.total_value

        self.logger.info(f"====== {stage} ACCOUNT SNAPSHOT ======")
        self.logger.info(f"Account ID: {snapshot.account_id}")
        self.logger.info(f"Total Account Value: {total_value:,.2f} {snapshot.home_currency}")

        securities = [p for p in snapshot.positions if not p.is_currency]
        if securities:
            self.logger.info(f"Positions ({len(securities)}):")
            for pos in sorted(securities, key=lambda x: x.base):
                percent_of_account = (pos.total_value / total_value * 100) if total_value > 0 else 0
                self.logger.info(f"  {pos.base}: {pos.lots_held:,.2f} lots @ {pos.lot_price:.2f} "
                                 f"= {pos.total_value:,.2f} ({percent_of_account:.2f}%)")
        else:
            self.logger.info("No positions held")

        self.logger.info(f"Cash Balance: {snapshot.cash_balance:,.2f}")
        self.logger.info("=" * 40)

    def _log_target_allocations(self, desired: Dict[str, float]):
        """Log target allocation percentages"""
        self.logger.info(f"====== TARGET ALLOCATIONS ({len(desired)}) ======")
        for ticker in sorted(desired):
            self.logger.info(f"  {ticker}: {desired[ticker]:.2f}%")
        self.logger.info(f"Total Allocation: {sum(desired.values()):.2f}%")
        self.logger.info("=" * 35)

    def _log_planned_orders(self, orders: List[OrderPlanEntry], is_preview: bool = False):
        """Log planned orders"""
        stage = "PROPOSED ORDERS (PREVIEW)" if is_preview else "PLANNED ORDERS"
        self.logger.info(f"====== {stage} ======")

        if not orders:
            self.logger.info("No orders required - portfolio is already balanced")
            self.logger.info("=" * (len(stage) + 14))
            return

        sell_orders = [o for o in orders if o.lots < 0]
        buy_orders = [o for o in orders if o.lots > 0]

        self.logger.info(f"Total Orders: {len(orders)} ({len(sell_orders)} sells, {len(buy_orders)} buys)")
        self.logger.info(f"Total Sell Value: {sum(-o.value_delta for o in sell_orders):,.2f}")
        self.logger.info(f"Total Buy Value: {sum(o.value_delta for o in buy_orders):,.2f}")

        for order in orders:
            lots = abs(order.lots)
            self.logger.info(f"  #{order.priority} {order.direction} {lots:,} lots of {order.ticker} "
                             f"@ {order.lot_price:.2f} = {abs(order.value_delta):,.2f} "
                             f"(held {order.current_lots:,.2f}, {order.reason})")

        self.logger.info("=" * (len(stage) + 14))

    def _log_share_changes(self, desired: Dict[str, float], final_percents: Dict[str, float]):
        self.logger.info("====== SHARES AFTER PLAN ======")
        for ticker in sorted(set(desired) | set(final_percents)):
            self.logger.info(
                f"  {ticker}: target {desired.get(ticker, 0.0):.2f}% -> planned {final_percents.get(ticker, 0.0):.2f}%"
            )

    def _log_profit_summary(self, snapshot: AccountSnapshot):
        summary = iteration_profit_summary(snapshot.positions)
        if not summary.records:
            return
        sign = '+' if summary.total_profit >= 0 else ''
        self.logger.info(
            f"Profit: {sign}{summary.total_profit:,.2f} {snapshot.home_currency} "
            f"({sign}{summary.total_profit_percent:.2f}%), "
            f"{summary.profit_positions} in profit, {summary.loss_positions} in loss"
        )
