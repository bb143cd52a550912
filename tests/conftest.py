"""Shared fixtures for rebalancer tests."""

from typing import Dict, Optional

import pytest

from app_config import AccountConfig, AppConfig
from broker_connector_base import AccountSnapshot, AumValue, Instrument, Position, ValuationMetricProvider
from rebalance_calculator import MarketSnapshot
from rebalance_service import SimulatedBrokerClient


class FakeMetricProvider(ValuationMetricProvider):
    """In-memory metric provider; tickers in `failing` raise on lookup."""

    def __init__(self, market_caps: Optional[Dict[str, float]] = None,
                 aums: Optional[Dict[str, AumValue]] = None,
                 rates: Optional[Dict[str, float]] = None,
                 failing=()):
        self.market_caps = market_caps or {}
        self.aums = aums or {}
        self.rates = {'RUB': 1.0, **(rates or {})}
        self.failing = set(failing)
        self.calls = []

    async def market_cap(self, ticker):
        self.calls.append(('market_cap', ticker))
        if ticker in self.failing:
            raise ConnectionError(f"lookup failed for {ticker}")
        return self.market_caps.get(ticker)

    async def aum(self, ticker):
        self.calls.append(('aum', ticker))
        if ticker in self.failing:
            raise ConnectionError(f"lookup failed for {ticker}")
        return self.aums.get(ticker)

    async def fx_rate(self, currency):
        return self.rates[currency]


@pytest.fixture
def make_position():
    """Factory for security positions given in lots."""

    def _make(ticker: str, lots: float, price: float, lot_size: int = 1,
              average_price: Optional[float] = None, figi: Optional[str] = None) -> Position:
        return Position(
            base=ticker,
            quote='RUB',
            figi=figi or f"FIGI-{ticker}",
            quantity=lots * lot_size,
            lot_size=lot_size,
            price=price,
            average_price=average_price,
        )

    return _make


@pytest.fixture
def make_cash():
    def _make(amount: float, currency: str = 'RUB') -> Position:
        return Position(base=currency, quote=currency, quantity=amount, price=1.0)

    return _make


@pytest.fixture
def make_snapshot():
    def _make(*positions: Position) -> AccountSnapshot:
        return AccountSnapshot(account_id='acc-1', positions=list(positions))

    return _make


@pytest.fixture
def make_market():
    """Factory: make_market(TICKER=(price, lot_size), ...)"""

    def _make(**instruments) -> MarketSnapshot:
        catalog = []
        prices = {}
        for ticker, (price, lot_size) in instruments.items():
            figi = f"FIGI-{ticker}"
            catalog.append(Instrument(ticker=ticker, figi=figi, lot_size=lot_size))
            if price is not None:
                prices[figi] = price
        return MarketSnapshot.build(catalog, prices)

    return _make


@pytest.fixture
def metric_provider():
    return FakeMetricProvider


@pytest.fixture
def paper_broker():
    """Simulated broker: TBRU/TRUR held, TGLD/TMON tradable, 1000 RUB cash."""

    def _make(**overrides) -> SimulatedBrokerClient:
        params = dict(
            instruments=[
                Instrument(ticker='TBRU', figi='FIGI-TBRU', lot_size=1),
                Instrument(ticker='TRUR', figi='FIGI-TRUR', lot_size=10),
                Instrument(ticker='TGLD', figi='FIGI-TGLD', lot_size=1),
                Instrument(ticker='TMON', figi='FIGI-TMON', lot_size=1),
            ],
            prices={'FIGI-TBRU': 10.0, 'FIGI-TRUR': 5.0, 'FIGI-TGLD': 20.0, 'FIGI-TMON': 100.0},
            holdings={'acc-1': {'TBRU': 200, 'TRUR': 400}},
            cash={'acc-1': 1000.0},
            cost_basis={'TBRU': 8.0, 'TRUR': 4.0},
        )
        params.update(overrides)
        return SimulatedBrokerClient(**params)

    return _make


@pytest.fixture
def make_account():
    def _make(**overrides) -> AccountConfig:
        params = dict(
            id='paper',
            name='Paper',
            account_id='acc-1',
            desired_wallet={'TBRU': 25, 'TRUR': 25, 'TGLD': 25, 'TMON': 25},
            sleep_between_orders=0,
        )
        params.update(overrides)
        return AccountConfig(**params)

    return _make


@pytest.fixture
def app_config():
    return AppConfig()
