from typing import List


class BalancingDataError(Exception):
    """Raised when balancing cannot proceed because input data is unusable"""
    pass


class StrictDataError(BalancingDataError):
    """A strict valuation mode is missing required metrics after all fallbacks"""

    def __init__(self, mode: str, missing_kinds: List[str], tickers: List[str]):
        self.mode = mode
        self.missing_kinds = list(missing_kinds)
        self.tickers = list(tickers)
        super().__init__(
            f"Mode '{mode}' cannot proceed: missing {', '.join(self.missing_kinds)} "
            f"for {', '.join(self.tickers)}"
        )
