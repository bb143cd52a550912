"""In-memory paper broker"""

import itertools
import logging
from typing import Collection, Dict, List, Optional
import yaml
from broker_connector_base import (
    AccountSnapshot,
    BrokerClient,
    BrokerAPIError,
    Instrument,
    OrderDirection,
    OrderExecutionError,
    OrderResult,
    OrderStatus,
    Position,
)


class SimulatedBrokerClient(BrokerClient):
    """Paper broker filling market orders at the last price.

    Holdings are tracked in units per ticker, cash in the home currency.
    Orders for figis listed in failing_figis raise OrderExecutionError,
    which lets callers exercise partial batch failures.
    """

    def __init__(self, instruments: List[Instrument], prices: Dict[str, float],
                 holdings: Optional[Dict[str, Dict[str, float]]] = None,
                 cash: Optional[Dict[str, float]] = None,
                 cost_basis: Optional[Dict[str, float]] = None,
                 home_currency: str = 'RUB', exchange_open: bool = True,
                 failing_figis: Collection[str] = (),
                 logger: Optional[logging.Logger] = None):
        self.instruments = {i.ticker: i for i in instruments}
        self.prices = dict(prices)
        self.holdings = {acc: dict(h) for acc, h in (holdings or {}).items()}
        self.cash = dict(cash or {})
        self.cost_basis = dict(cost_basis or {})
        self.home_currency = home_currency
        self.exchange_open = exchange_open
        self.failing_figis = set(failing_figis)
        self.placed_orders: List[OrderResult] = []
        self._order_ids = itertools.count(1)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_yaml(cls, path: str, account_id: str, logger: Optional[logging.Logger] = None) -> "SimulatedBrokerClient":
        """
        Load a paper wallet:

            home_currency: RUB
            exchange_open: true
            cash: 10000
            instruments:
              - {ticker: TBRU, figi: TCS60A1011U5, lot_size: 1, price: 7.42}
            positions:
              - {ticker: TBRU, quantity: 12, average_price: 7.1}
        """
        with open(path, 'r') as f:
            raw = yaml.safe_load(f) or {}

        instruments = []
        prices = {}
        for item in raw.get('instruments', []):
            instrument = Instrument(
                ticker=item['ticker'],
                figi=item['figi'],
                lot_size=item.get('lot_size', 1),
                currency=item.get('currency', raw.get('home_currency', 'RUB')),
                name=item.get('name'),
            )
            instruments.append(instrument)
            if item.get('price') is not None:
                prices[instrument.figi] = float(item['price'])

        holdings = {}
        cost_basis = {}
        for item in raw.get('positions', []):
            holdings[item['ticker']] = float(item['quantity'])
            if item.get('average_price') is not None:
                cost_basis[item['ticker']] = float(item['average_price'])

        return cls(
            instruments=instruments,
            prices=prices,
            holdings={account_id: holdings},
            cash={account_id: float(raw.get('cash', 0.0))},
            cost_basis=cost_basis,
            home_currency=raw.get('home_currency', 'RUB'),
            exchange_open=raw.get('exchange_open', True),
            failing_figis=raw.get('failing_figis', []),
            logger=logger,
        )

    async def get_account_snapshot(self, account_id: str) -> AccountSnapshot:
        positions = []
        for ticker, quantity in self.holdings.get(account_id, {}).items():
            if quantity == 0:
                continue
            instrument = self.instruments.get(ticker)
            if instrument is None:
                raise BrokerAPIError(f"Unknown instrument {ticker} in account {account_id}")
            positions.append(Position(
                base=ticker,
                quote=self.home_currency,
                figi=instrument.figi,
                quantity=quantity,
                lot_size=instrument.lot_size,
                price=self.prices.get(instrument.figi, 0.0),
                average_price=self.cost_basis.get(ticker),
            ))
        positions.append(Position(
            base=self.home_currency,
            quote=self.home_currency,
            quantity=self.cash.get(account_id, 0.0),
            price=1.0,
        ))
        return AccountSnapshot(account_id=account_id, positions=positions, home_currency=self.home_currency)

    async def get_instruments(self) -> List[Instrument]:
        return list(self.instruments.values())

    async def get_last_prices(self, figis: List[str]) -> Dict[str, float]:
        return {figi: self.prices[figi] for figi in figis if figi in self.prices}

    async def place_order(self, account_id: str, figi: str, lots: int,
                          direction: OrderDirection) -> OrderResult:
        if figi in self.failing_figis:
            raise OrderExecutionError(f"Simulated rejection for {figi}", figi=figi)

        instrument = next((i for i in self.instruments.values() if i.figi == figi), None)
        price = self.prices.get(figi)
        if instrument is None or price is None:
            raise BrokerAPIError(f"Instrument {figi} is not tradable")

        order_id = f"SIM-{next(self._order_ids)}"
        units = lots * instrument.lot_size
        holdings = self.holdings.setdefault(account_id, {})
        held = holdings.get(instrument.ticker, 0.0)

        if direction == 'SELL' and units > held:
            self.logger.warning(f"Rejecting {order_id}: sell of {units} {instrument.ticker} exceeds {held} held")
            result = OrderResult(order_id=order_id, figi=figi, lots=lots, direction=direction,
                                 status=OrderStatus.REJECTED)
            self.placed_orders.append(result)
            return result

        signed_units = units if direction == 'BUY' else -units
        holdings[instrument.ticker] = held + signed_units
        self.cash[account_id] = self.cash.get(account_id, 0.0) - signed_units * price
        if direction == 'BUY' and instrument.ticker not in self.cost_basis:
            self.cost_basis[instrument.ticker] = price

        result = OrderResult(order_id=order_id, figi=figi, lots=lots, direction=direction,
                             status=OrderStatus.FILLED)
        self.placed_orders.append(result)
        self.logger.debug(f"Filled {order_id}: {direction} {lots} lots of {instrument.ticker} @ {price}")
        return result

    async def is_exchange_open(self, exchange: str) -> bool:
        return self.exchange_open
