"""Tests for the metrics cache, live-source fallbacks and cache collection."""

import json

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from broker_connector_base import AumValue
from rebalance_service import CachedMetricProvider, HttpMetricSource, MetricsCollector


class FakeSource:
    """Stands in for HttpMetricSource"""

    def __init__(self, kind='etf', market_caps=None, aums=None, rates=None, error=None):
        self.kind = kind
        self.market_caps = market_caps or {}
        self.aums = aums or {}
        self.rates = rates or {}
        self.error = error

    async def market_cap(self, ticker):
        if self.error:
            raise self.error
        return self.market_caps.get(ticker)

    async def aum(self, ticker):
        if self.error:
            raise self.error
        return self.aums.get(ticker)

    async def fx_rate(self, currency):
        return self.rates.get(currency)


def write_cache(directory, ticker, **payload):
    (directory / f"{ticker}.json").write_text(json.dumps({'symbol': ticker, **payload}))


ETF_PAYLOADS = {
    'TMOS': {'marketCap': 1000.0, 'aum': {'amount': 50.0, 'currency': 'USD'}},
    'TGLD': {'marketCap': 700.0, 'aum': None},
    'LIST': [1, 2],
}


async def etf_handler(request):
    ticker = request.match_info['ticker']
    if ticker == 'BOOM':
        return web.Response(status=500, text='upstream down')
    if ticker not in ETF_PAYLOADS:
        return web.json_response({'error': 'not found'}, status=404)
    return web.json_response(ETF_PAYLOADS[ticker])


async def share_handler(request):
    return web.json_response({'marketCap': 300.0, 'aum': None})


async def fx_handler(request):
    if request.match_info['currency'] != 'USD':
        raise web.HTTPNotFound()
    return web.json_response({'rate': 90.0})


@pytest_asyncio.fixture
async def metrics_api():
    """Local metrics API; yields its base URL"""
    app = web.Application()
    app.router.add_get('/etf/{ticker}', etf_handler)
    app.router.add_get('/share/{ticker}', share_handler)
    app.router.add_get('/fx/{currency}', fx_handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url('/'))
    finally:
        await server.close()


@pytest.mark.asyncio
class TestHttpMetricSource:

    async def test_market_cap_and_aum(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        assert await source.market_cap('TMOS') == 1000.0
        assert await source.aum('TMOS') == AumValue(amount=50.0, currency='USD')

    async def test_missing_aum_is_none(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        assert await source.aum('TGLD') is None

    async def test_not_found_is_none(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        assert await source.market_cap('NOPE') is None
        assert await source.aum('NOPE') is None

    async def test_server_error_raises(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        with pytest.raises(aiohttp.ClientResponseError) as exc_info:
            await source.market_cap('BOOM')
        assert exc_info.value.status == 500

    async def test_non_object_payload_rejected(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        with pytest.raises(ValueError):
            await source.market_cap('LIST')

    async def test_fx_rate(self, metrics_api):
        source = HttpMetricSource(metrics_api)

        assert await source.fx_rate('USD') == 90.0
        assert await source.fx_rate('EUR') is None

    async def test_share_kind_endpoint(self, metrics_api):
        source = HttpMetricSource(metrics_api, kind='share')

        assert await source.market_cap('SBER') == 300.0

    async def test_provider_falls_back_to_share_endpoint(self, metrics_api, tmp_path):
        provider = CachedMetricProvider(
            str(tmp_path),
            etf_source=HttpMetricSource(metrics_api, kind='etf'),
            share_source=HttpMetricSource(metrics_api, kind='share'),
        )

        assert await provider.market_cap('BOOM') == 300.0
        assert await provider.fx_rate('USD') == 90.0


@pytest.mark.asyncio
class TestCachedMetricProvider:

    async def test_reads_cache(self, tmp_path):
        write_cache(tmp_path, 'TGLD', marketCap=1000.0, aum=900.0)
        provider = CachedMetricProvider(str(tmp_path))

        assert await provider.market_cap('TGLD') == 1000.0
        assert await provider.aum('TGLD') == AumValue(amount=900.0, currency='RUB')

    async def test_cache_uses_canonical_ticker(self, tmp_path):
        write_cache(tmp_path, 'TPAY', marketCap=500.0)
        provider = CachedMetricProvider(str(tmp_path))

        assert await provider.market_cap('TRAY') == 500.0

    async def test_missing_everything_is_none(self, tmp_path):
        provider = CachedMetricProvider(str(tmp_path))

        assert await provider.market_cap('TGLD') is None
        assert await provider.aum('TGLD') is None

    async def test_invalid_cache_values_ignored(self, tmp_path):
        write_cache(tmp_path, 'TGLD', marketCap=-1, aum='n/a')
        provider = CachedMetricProvider(str(tmp_path))

        assert await provider.market_cap('TGLD') is None
        assert await provider.aum('TGLD') is None

    async def test_corrupt_cache_file_ignored(self, tmp_path):
        (tmp_path / 'TGLD.json').write_text('{not json')
        provider = CachedMetricProvider(str(tmp_path), etf_source=FakeSource(market_caps={'TGLD': 42.0}))

        assert await provider.market_cap('TGLD') == 42.0

    async def test_etf_failure_falls_back_to_share_source(self, tmp_path):
        provider = CachedMetricProvider(
            str(tmp_path),
            etf_source=FakeSource(error=aiohttp.ClientError('timeout')),
            share_source=FakeSource(kind='share', market_caps={'SBER': 7e12}),
        )

        assert await provider.market_cap('SBER') == 7e12

    async def test_live_aum_failure_is_none(self, tmp_path):
        provider = CachedMetricProvider(str(tmp_path), etf_source=FakeSource(error=aiohttp.ClientError('boom')))

        assert await provider.aum('TGLD') is None

    async def test_fx_rate(self, tmp_path):
        provider = CachedMetricProvider(str(tmp_path), etf_source=FakeSource(rates={'USD': 90.0}))

        assert await provider.fx_rate('RUB') == 1.0
        assert await provider.fx_rate('USD') == 90.0
        with pytest.raises(ValueError):
            await provider.fx_rate('EUR')


@pytest.mark.asyncio
class TestMetricsCollector:

    async def test_writes_cache_files(self, tmp_path):
        source = FakeSource(
            market_caps={'TGLD': 1100.0},
            aums={'TGLD': AumValue(amount=10.0, currency='USD')},
            rates={'USD': 100.0},
        )
        collector = MetricsCollector(str(tmp_path), source)

        collected = await collector.collect(['TGLD'])

        payload = json.loads((tmp_path / 'TGLD.json').read_text())
        assert payload['marketCap'] == 1100.0
        assert payload['aum'] == pytest.approx(1000.0)
        assert payload['decorrelationPct'] == pytest.approx(10.0)
        assert collected['TGLD']['symbol'] == 'TGLD'

    async def test_collected_cache_feeds_provider(self, tmp_path):
        source = FakeSource(market_caps={'TMOS': 300.0}, aums={'TMOS': AumValue(amount=250.0)})
        await MetricsCollector(str(tmp_path), source).collect(['TMOS@'])

        provider = CachedMetricProvider(str(tmp_path))

        assert await provider.market_cap('TMOS') == 300.0
        assert (await provider.aum('TMOS')).amount == 250.0

    async def test_failed_ticker_skipped(self, tmp_path):
        source = FakeSource(error=aiohttp.ClientError('down'))

        collected = await MetricsCollector(str(tmp_path), source).collect(['TGLD'])

        assert collected == {}
        assert not (tmp_path / 'TGLD.json').exists()
