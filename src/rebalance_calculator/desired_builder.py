"""Target weight derivation from valuation metrics"""

import logging
import math
from typing import Dict, List, Optional
from broker_connector_base import ValuationMetricProvider
from .exceptions import BalancingDataError, StrictDataError
from .models import DesiredWalletResult, TickerMetric
from .tickers import normalize_ticker

MARKET_CAP = 'marketCap'
AUM = 'aum'

PASS_THROUGH_MODES = ('manual', 'default')
METRIC_MODES = ('marketcap', 'aum', 'marketcap_aum', 'decorrelation')


def _usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


class DesiredWalletBuilder:
    """Build the desired allocation for one of the valuation modes.

    manual/default return the base allocation untouched. The metric modes
    weigh every ticker by its market cap, AUM (converted to the home currency),
    market cap with an AUM fallback, or by how undervalued it looks relative to
    its AUM (decorrelation). Metric modes fail with StrictDataError when a
    ticker has no usable metric instead of silently assigning it zero weight.
    """

    def __init__(self, provider: Optional[ValuationMetricProvider] = None,
                 logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.logger = logger or logging.getLogger(__name__)

    async def build(self, mode: str, base: Dict[str, float]) -> DesiredWalletResult:
        if mode in PASS_THROUGH_MODES or not base:
            return DesiredWalletResult(wallet=dict(base), mode_applied=mode)

        if mode not in METRIC_MODES:
            raise BalancingDataError(f"Unknown desired mode: {mode}")
        if self.provider is None:
            raise BalancingDataError(f"Mode '{mode}' requires a valuation metric provider")

        original_tickers = list(base.keys())
        canonical = {t: normalize_ticker(t) or t for t in original_tickers}

        metrics: Dict[str, TickerMetric] = {}
        for ticker in original_tickers:
            nt = canonical[ticker]
            if nt not in metrics:
                metrics[nt] = await self._collect(mode, nt)

        self._check_strict(mode, original_tickers, canonical, metrics)

        if mode == 'decorrelation':
            self._apply_decorrelation(metrics)

        total = sum(m.weight_metric for m in metrics.values())
        metric_list = list(metrics.values())
        if not math.isfinite(total) or total <= 0:
            self.logger.info(f"Total {mode} metric is zero, keeping base allocation")
            return DesiredWalletResult(wallet=dict(base), mode_applied=mode, metrics=metric_list)

        # One entry per instrument, under the first name it is listed as
        wallet: Dict[str, float] = {}
        emitted = set()
        for ticker in original_tickers:
            nt = canonical[ticker]
            if nt in emitted:
                self.logger.debug(f"{ticker} is listed again as {nt}, weight already assigned")
                continue
            emitted.add(nt)
            wallet[ticker] = metrics[nt].weight_metric / total * 100
        for ticker, percent in wallet.items():
            self.logger.debug(f"  {ticker}: {percent:.2f}% ({mode})")
        return DesiredWalletResult(wallet=wallet, mode_applied=mode, metrics=metric_list)

    async def _collect(self, mode: str, ticker: str) -> TickerMetric:
        metric = TickerMetric(ticker=ticker)

        if mode in ('marketcap', 'marketcap_aum', 'decorrelation'):
            metric.market_cap = await self._market_cap(ticker)
        if mode == 'aum' or mode == 'decorrelation':
            metric.aum = await self._aum_home(ticker)
        elif mode == 'marketcap_aum' and metric.market_cap is None:
            metric.aum = await self._aum_home(ticker)
            if metric.aum is not None:
                self.logger.info(f"Market cap unavailable for {ticker}, using AUM")

        if mode == 'marketcap':
            metric.weight_metric = metric.market_cap or 0.0
        elif mode == 'aum':
            metric.weight_metric = metric.aum or 0.0
        elif mode == 'marketcap_aum':
            metric.weight_metric = metric.market_cap or metric.aum or 0.0
        return metric

    async def _market_cap(self, ticker: str) -> Optional[float]:
        try:
            value = await self.provider.market_cap(ticker)
        except Exception as e:
            self.logger.warning(f"Market cap lookup failed for {ticker}: {e}")
            return None
        return float(value) if _usable(value) else None

    async def _aum_home(self, ticker: str) -> Optional[float]:
        try:
            aum = await self.provider.aum(ticker)
            if aum is None:
                return None
            rate = await self.provider.fx_rate(aum.currency)
        except Exception as e:
            self.logger.warning(f"AUM lookup failed for {ticker}: {e}")
            return None
        value = aum.amount * rate
        return value if _usable(value) else None

    def _check_strict(self, mode: str, original_tickers: List[str], canonical: Dict[str, str],
                      metrics: Dict[str, TickerMetric]) -> None:
        missing_tickers = []
        missing_kinds = set()

        for ticker in original_tickers:
            metric = metrics[canonical[ticker]]
            kinds = []
            if mode == 'marketcap' and metric.market_cap is None:
                kinds = [MARKET_CAP]
            elif mode == 'aum' and metric.aum is None:
                kinds = [AUM]
            elif mode == 'marketcap_aum' and metric.market_cap is None and metric.aum is None:
                kinds = [MARKET_CAP, AUM]
            elif mode == 'decorrelation':
                if metric.market_cap is None:
                    kinds.append(MARKET_CAP)
                if metric.aum is None:
                    kinds.append(AUM)
            if kinds:
                missing_tickers.append(ticker)
                missing_kinds.update(kinds)

        if missing_tickers:
            ordered_kinds = [k for k in (MARKET_CAP, AUM) if k in missing_kinds]
            self.logger.error(
                f"Mode '{mode}' is missing {', '.join(ordered_kinds)} for {', '.join(missing_tickers)}"
            )
            raise StrictDataError(mode, ordered_kinds, missing_tickers)

    def _apply_decorrelation(self, metrics: Dict[str, TickerMetric]) -> None:
        """Score = max(d) - d where d is the market cap premium over AUM in percent"""
        for metric in metrics.values():
            metric.decorrelation_pct = (metric.market_cap - metric.aum) / metric.aum * 100

        max_pct = max(m.decorrelation_pct for m in metrics.values())
        for metric in metrics.values():
            score = max_pct - metric.decorrelation_pct
            metric.weight_metric = score if score > 0 else 0.0
            self.logger.debug(
                f"  {metric.ticker}: decorrelation {metric.decorrelation_pct:+.2f}%, score {metric.weight_metric:.2f}"
            )
