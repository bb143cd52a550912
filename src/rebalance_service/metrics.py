"""Valuation metrics: on-disk cache, live HTTP source and cache collection"""

import asyncio
import json
import logging
import math
import os
from datetime import datetime
from typing import Any, Dict, List, Optional
import aiohttp
from broker_connector_base import AumValue, ValuationMetricProvider
from rebalance_calculator import normalize_ticker
from .snapshot_store import write_json_atomic


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) and value > 0 else None


class HttpMetricSource:
    """JSON metrics API client.

    Endpoints, relative to base_url:
      GET /{kind}/{TICKER}  -> {"marketCap": float|null, "aum": {"amount": float, "currency": str}|null}
      GET /fx/{CURRENCY}    -> {"rate": float}
    where kind is "etf" or "share".
    """

    def __init__(self, base_url: str, kind: str = 'etf', timeout_seconds: float = 30.0,
                 logger: Optional[logging.Logger] = None):
        self.base_url = base_url.rstrip('/')
        self.kind = kind
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.logger = logger or logging.getLogger(__name__)

    async def _get_json(self, path: str) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/{path}"
        self.logger.debug(f"Requesting {url}")
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    response_text = await response.text()
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=f"API returned status {response.status}: {response_text}",
                    )
                data = await response.json()
                if not isinstance(data, dict):
                    raise ValueError("API response must be a JSON object")
                return data

    async def market_cap(self, ticker: str) -> Optional[float]:
        data = await self._get_json(f"{self.kind}/{ticker}")
        return _positive(data.get('marketCap')) if data else None

    async def aum(self, ticker: str) -> Optional[AumValue]:
        data = await self._get_json(f"{self.kind}/{ticker}")
        if not data or not isinstance(data.get('aum'), dict):
            return None
        amount = _positive(data['aum'].get('amount'))
        if amount is None:
            return None
        return AumValue(amount=amount, currency=data['aum'].get('currency', 'RUB'))

    async def fx_rate(self, currency: str) -> Optional[float]:
        data = await self._get_json(f"fx/{currency}")
        return _positive(data.get('rate')) if data else None


class CachedMetricProvider(ValuationMetricProvider):
    """Cache-first metric provider.

    Reads <cache_dir>/<TICKER>.json (marketCap and aum already in the home
    currency), then asks the live ETF source, then the live share source.
    Failed live calls count as unavailable data.
    """

    def __init__(self, cache_dir: str, etf_source: Optional[HttpMetricSource] = None,
                 share_source: Optional[HttpMetricSource] = None, home_currency: str = 'RUB',
                 logger: Optional[logging.Logger] = None):
        self.cache_dir = cache_dir
        self.etf_source = etf_source
        self.share_source = share_source
        self.home_currency = home_currency
        self.logger = logger or logging.getLogger(__name__)

    def read_cached(self, ticker: str) -> Optional[Dict[str, Any]]:
        file_path = os.path.join(self.cache_dir, f"{normalize_ticker(ticker)}.json")
        if not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Unreadable metrics cache {file_path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    async def market_cap(self, ticker: str) -> Optional[float]:
        cached = self.read_cached(ticker)
        value = _positive(cached.get('marketCap')) if cached else None
        if value is not None:
            return value

        for source in (self.etf_source, self.share_source):
            if source is None:
                continue
            try:
                value = await source.market_cap(normalize_ticker(ticker))
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                self.logger.warning(f"Live {source.kind} market cap lookup failed for {ticker}: {e}")
                continue
            if value is not None:
                return value
        return None

    async def aum(self, ticker: str) -> Optional[AumValue]:
        cached = self.read_cached(ticker)
        value = _positive(cached.get('aum')) if cached else None
        if value is not None:
            return AumValue(amount=value, currency=self.home_currency)

        if self.etf_source is None:
            return None
        try:
            return await self.etf_source.aum(normalize_ticker(ticker))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.warning(f"Live AUM lookup failed for {ticker}: {e}")
            return None

    async def fx_rate(self, currency: str) -> float:
        if currency == self.home_currency:
            return 1.0
        rate = None
        if self.etf_source is not None:
            rate = await self.etf_source.fx_rate(currency)
        if rate is None:
            raise ValueError(f"No FX rate for {currency}/{self.home_currency}")
        return rate


class MetricsCollector:
    """Refresh the on-disk metrics cache from the live sources"""

    def __init__(self, cache_dir: str, etf_source: HttpMetricSource, home_currency: str = 'RUB',
                 logger: Optional[logging.Logger] = None):
        self.cache_dir = cache_dir
        self.etf_source = etf_source
        self.home_currency = home_currency
        self.logger = logger or logging.getLogger(__name__)

    async def collect(self, tickers: List[str]) -> Dict[str, Dict[str, Any]]:
        collected = {}
        for ticker in tickers:
            symbol = normalize_ticker(ticker) or ticker
            try:
                payload = await self._collect_one(symbol)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                self.logger.warning(f"Metrics collection failed for {symbol}: {e}")
                continue
            write_json_atomic(os.path.join(self.cache_dir, f"{symbol}.json"), payload)
            self.logger.info(
                f"Saved metrics for {symbol}: marketCap={payload['marketCap']}, aum={payload['aum']}"
            )
            collected[symbol] = payload
        return collected

    async def _collect_one(self, symbol: str) -> Dict[str, Any]:
        market_cap = await self.etf_source.market_cap(symbol)
        aum = await self.etf_source.aum(symbol)

        aum_home = None
        if aum is not None:
            if aum.currency == self.home_currency:
                aum_home = aum.amount
            else:
                rate = await self.etf_source.fx_rate(aum.currency)
                aum_home = aum.amount * rate if rate else None

        decorrelation_pct = None
        if market_cap and aum_home:
            decorrelation_pct = (market_cap - aum_home) / aum_home * 100

        return {
            'symbol': symbol,
            'timestamp': datetime.now().isoformat(),
            'marketCap': market_cap,
            'aum': aum_home,
            'decorrelationPct': decorrelation_pct,
        }
