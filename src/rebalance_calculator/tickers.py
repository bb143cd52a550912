"""Ticker canonicalization and allocation normalization"""

from typing import Dict, Optional

# Renamed tickers map to their current symbol
TICKER_ALIASES: Dict[str, str] = {
    'TRAY': 'TPAY',
}

SUM_TOLERANCE = 1e-6


def normalize_ticker(ticker: Optional[str]) -> Optional[str]:
    """Canonical ticker form: trimmed, without '@' suffix, aliases applied"""
    if not ticker:
        return ticker
    t = ticker.strip()
    if t.endswith('@'):
        t = t[:-1]
    return TICKER_ALIASES.get(t, t)


def tickers_equal(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return normalize_ticker(a) == normalize_ticker(b)


def normalize_allocation(allocation: Dict[str, float]) -> Dict[str, float]:
    """Scale percentages so they sum to 100, preserving ratios.

    An allocation whose weights sum to zero is returned as all zeros.
    """
    total = sum(float(v) for v in allocation.values())
    if total <= 0:
        return {ticker: 0.0 for ticker in allocation}
    return {ticker: float(v) / total * 100 for ticker, v in allocation.items()}


def canonicalize_allocation(allocation: Dict[str, float]) -> Dict[str, float]:
    """Merge aliased tickers into their canonical symbol and renormalize"""
    merged: Dict[str, float] = {}
    for ticker, percent in allocation.items():
        key = normalize_ticker(ticker) or ticker
        merged[key] = merged.get(key, 0.0) + float(percent)
    return normalize_allocation(merged)


def sums_to_100(allocation: Dict[str, float], tolerance: float = SUM_TOLERANCE) -> bool:
    return abs(sum(allocation.values()) - 100.0) <= tolerance
