"""Order plan assembly with lot quantization"""

from typing import Dict, List, Optional, Tuple
import logging
import math
from broker_connector_base import AccountSnapshot, OrderPlanEntry, Position
from .funding import FundingPlanner, whole_lots_held
from .margin import MarginPlanner
from .models import MarketSnapshot, OrderPlanResult, PlanSettings, PositionPlan, SellPlan
from .profit import calculate_position_profit
from .tickers import canonicalize_allocation, normalize_ticker, sums_to_100


def _blended_cost(a: Position, b: Position, field: str) -> Optional[float]:
    """Quantity-weighted cost basis of two holdings; unknown if either side is unknown"""
    price_a = getattr(a, field)
    price_b = getattr(b, field)
    quantity = a.quantity + b.quantity
    if price_a is None or price_b is None or quantity <= 0:
        return None
    return (price_a * a.quantity + price_b * b.quantity) / quantity


class OrderPlanAssembler:
    """Turn a desired allocation into a sequenced list of lot orders"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def calculate_plan(self, snapshot: AccountSnapshot, desired: Dict[str, float],
                       market: MarketSnapshot, settings: Optional[PlanSettings] = None) -> OrderPlanResult:
        """
        Calculate the order plan for one account.
        Sells come first (largest first), then buys by descending lot price.
        """
        settings = settings or PlanSettings(home_currency=snapshot.home_currency)
        warnings: List[str] = []

        if not sums_to_100(desired):
            self.logger.debug(f"Desired weights sum to {sum(desired.values()):.4f}%, normalizing")
        target = canonicalize_allocation(desired)

        cash, securities = self._canonical_wallet(snapshot)
        for ticker in securities:
            if ticker not in target:
                target[ticker] = 0.0

        skipped = self._add_placeholders(securities, target, market, settings.home_currency)
        for ticker in skipped:
            warnings.append(f"No instrument or price for {ticker}, skipped this iteration")

        wallet = cash + list(securities.values())
        total_value = sum(p.total_value for p in wallet)
        target_values = self._target_values(wallet, target, total_value, settings)

        plans = self._plan_positions(securities, target, target_values)
        remains = sum(p.remainder for p in plans)

        sells = self._rebalance_sells(plans, settings.min_profit_percent, warnings)
        buys = self._rebalance_buys(plans)

        funding_plan = None
        funding = settings.funding
        if funding is not None and funding.enabled:
            funding_plan, funding_sells = self._funding_sells(
                funding_planner=FundingPlanner(funding, logger=self.logger),
                plans=plans,
                target=target,
                total_value=total_value,
                cash_balance=snapshot.cash_balance,
                scheduled={o.ticker for o in sells + buys},
                securities=securities,
            )
            sells.extend(funding_sells)
            if funding_plan.shortfall > 0:
                warnings.append(
                    f"Funding shortfall of {funding_plan.shortfall:.2f} {settings.home_currency}: "
                    f"sell sources raise {funding_plan.raised:.2f} of {funding_plan.total_needed:.2f}"
                )

        orders = self._sort_orders(sells, buys)

        self.logger.info(
            f"Plan: {len([o for o in orders if o.lots < 0])} sells, "
            f"{len([o for o in orders if o.lots > 0])} buys, "
            f"total value {total_value:,.2f}, unallocated {remains:,.2f}"
        )
        result = OrderPlanResult(
            orders=orders,
            desired=target,
            positions=plans,
            total_value=total_value,
            remains=remains,
            skipped_tickers=skipped,
            funding_plan=funding_plan,
            warnings=warnings,
        )
        result.final_percents = self.final_percents(result)
        return result

    def final_percents(self, result: OrderPlanResult) -> Dict[str, float]:
        """Share of each security after the plan executes, cash excluded"""
        planned: Dict[str, int] = {}
        for order in result.orders:
            planned[order.ticker] = planned.get(order.ticker, 0) + order.lots

        final_values: Dict[str, float] = {}
        for plan in result.positions:
            position = plan.position
            if position.is_currency:
                continue
            final_lots = position.lots_held + planned.get(plan.ticker, 0)
            final_values[plan.ticker] = max(0.0, position.lot_price * final_lots)

        total = sum(final_values.values())
        if total <= 0:
            return {}
        return {ticker: value / total * 100 for ticker, value in final_values.items()}

    def _canonical_wallet(self, snapshot: AccountSnapshot) -> Tuple[List[Position], Dict[str, Position]]:
        """Split cash from securities; securities keyed by canonical ticker"""
        cash = []
        securities: Dict[str, Position] = {}
        for position in snapshot.positions:
            if position.is_currency:
                cash.append(position)
                continue
            ticker = normalize_ticker(position.base) or position.base
            existing = securities.get(ticker)
            if existing is None:
                securities[ticker] = position.model_copy(update={'base': ticker})
            else:
                self.logger.debug(f"Merging duplicate holding {position.base} into {ticker}")
                securities[ticker] = existing.model_copy(update={
                    'quantity': existing.quantity + position.quantity,
                    'average_price': _blended_cost(existing, position, 'average_price'),
                    'average_price_fifo': _blended_cost(existing, position, 'average_price_fifo'),
                })
        return cash, securities

    def _add_placeholders(self, securities: Dict[str, Position], target: Dict[str, float],
                          market: MarketSnapshot, home_currency: str) -> List[str]:
        """Zero-quantity positions for desired tickers not yet held"""
        skipped = []
        for ticker in list(target.keys()):
            if ticker in securities:
                continue
            instrument = market.find_instrument(ticker)
            if instrument is None:
                self.logger.warning(f"Instrument {ticker} not found, skipping")
                skipped.append(ticker)
                continue
            price = market.last_price(instrument.figi)
            if price is None:
                self.logger.warning(f"No last price for {ticker} ({instrument.figi}), skipping")
                skipped.append(ticker)
                continue
            securities[ticker] = Position(
                base=ticker,
                quote=home_currency,
                figi=instrument.figi,
                quantity=0.0,
                lot_size=instrument.lot_size,
                price=price,
            )
        for ticker in skipped:
            del target[ticker]
        return skipped

    def _target_values(self, wallet: List[Position], target: Dict[str, float],
                       total_value: float, settings: PlanSettings) -> Dict[str, float]:
        margin = settings.margin
        if margin is not None and margin.enabled:
            sizes = MarginPlanner(margin, logger=self.logger).optimal_position_sizes(wallet, target)
            self.logger.debug(f"Sizing with margin multiplier {margin.multiplier}")
            return {ticker: size.total_size for ticker, size in sizes.items()}
        return {ticker: total_value * percent / 100 for ticker, percent in target.items()}

    def _plan_positions(self, securities: Dict[str, Position], target: Dict[str, float],
                        target_values: Dict[str, float]) -> List[PositionPlan]:
        plans = []
        for ticker, position in securities.items():
            lot_price = position.lot_price
            if lot_price <= 0:
                self.logger.warning(f"Zero lot price for {ticker}, no action")
                continue

            percent = target.get(ticker, 0.0)
            target_value = target_values.get(ticker, 0.0)
            lots_affordable = max(0, math.trunc(target_value / lot_price))
            quantized_value = lots_affordable * lot_price
            to_buy_value = quantized_value - position.total_value
            to_buy_lots = lots_affordable - position.lots_held

            forced = False
            if percent > 0 and position.lots_held < 1 and to_buy_lots < 1:
                self.logger.debug(f"Minimum one lot for {ticker}")
                to_buy_lots = 1
                to_buy_value = lot_price - position.total_value
                forced = True

            plans.append(PositionPlan(
                position=position,
                target_percent=percent,
                target_value=target_value,
                lots_affordable=lots_affordable,
                quantized_value=quantized_value,
                remainder=abs(target_value - quantized_value),
                to_buy_lots=to_buy_lots,
                to_buy_value=to_buy_value,
                minimum_lot_forced=forced,
            ))
        return plans

    def _rebalance_sells(self, plans: List[PositionPlan], min_profit_percent: Optional[float],
                         warnings: List[str]) -> List[OrderPlanEntry]:
        sells = []
        for plan in plans:
            if plan.to_buy_lots > -1:
                continue
            position = plan.position
            lots = min(int(math.floor(-plan.to_buy_lots)), whole_lots_held(position))
            if lots <= 0:
                continue

            if min_profit_percent is not None:
                profit = calculate_position_profit(position)
                if profit is None:
                    self.logger.debug(f"Profit of {plan.ticker} unknown, allowing sell")
                elif profit.percent < min_profit_percent:
                    message = (
                        f"Sell of {plan.ticker} skipped: profit {profit.percent:.2f}% "
                        f"below {min_profit_percent}%"
                    )
                    self.logger.info(message)
                    warnings.append(message)
                    continue

            sells.append(self._entry(plan, -lots, 'rebalance'))
        return sells

    def _rebalance_buys(self, plans: List[PositionPlan]) -> List[OrderPlanEntry]:
        buys = []
        for plan in plans:
            if plan.to_buy_lots < 1:
                continue
            lots = int(math.floor(plan.to_buy_lots))
            reason = 'minimum_lot' if plan.minimum_lot_forced else 'rebalance'
            buys.append(self._entry(plan, lots, reason))
        return buys

    def _funding_sells(self, funding_planner: FundingPlanner, plans: List[PositionPlan],
                       target: Dict[str, float], total_value: float, cash_balance: float,
                       scheduled: set, securities: Dict[str, Position]) -> Tuple[SellPlan, List[OrderPlanEntry]]:
        """Extra sells for restricted purchases, only from tickers not already traded"""
        required = funding_planner.required_funds(plans, target, total_value)
        if not required:
            return SellPlan(), []

        sources = funding_planner.eligible_sell_sources(list(securities.values()), exclude=scheduled)
        sell_plan = funding_planner.sell_plan(sources, required, cash_balance=cash_balance)

        plan_by_ticker = {p.ticker: p for p in plans}
        entries = []
        for item in sell_plan.entries:
            position = securities[item.ticker]
            lots = min(item.lots, whole_lots_held(position))
            if lots <= 0:
                continue
            plan = plan_by_ticker.get(item.ticker)
            entries.append(OrderPlanEntry(
                ticker=item.ticker,
                figi=item.figi,
                lots=-lots,
                value_delta=-lots * item.lot_price,
                lot_price=item.lot_price,
                current_lots=position.lots_held,
                target_percent=plan.target_percent if plan else 0.0,
                reason='funding',
            ))
            self.logger.info(f"Funding sell: {lots} lots of {item.ticker} ({lots * item.lot_price:,.2f})")
        return sell_plan, entries

    def _entry(self, plan: PositionPlan, lots: int, reason: str) -> OrderPlanEntry:
        position = plan.position
        return OrderPlanEntry(
            ticker=plan.ticker,
            figi=position.figi,
            lots=lots,
            value_delta=lots * position.lot_price,
            lot_price=position.lot_price,
            current_lots=position.lots_held,
            target_percent=plan.target_percent,
            reason=reason,
        )

    def _sort_orders(self, sells: List[OrderPlanEntry], buys: List[OrderPlanEntry]) -> List[OrderPlanEntry]:
        """Sort orders by priority: sells first, then buys by lot price"""

        def sort_key(order):
            if order.lots < 0:
                return (0, order.value_delta)  # Sells: most negative value first
            else:
                return (1, -order.lot_price)  # Buys: most expensive lot first

        orders = sorted(sells + buys, key=sort_key)
        return [order.model_copy(update={'priority': i}) for i, order in enumerate(orders)]
