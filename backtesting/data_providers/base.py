"""
Historical Data Provider Protocol

Defines the interface for fetching OHLCV bars during backtests, plus an
in-memory implementation backed by pandas DataFrames. Providers report a
coverage ratio (share of the requested range actually backed by data);
the orchestrator warns when it is low.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Protocol, Tuple

import pandas as pd

from backtesting.bars import OHLCV_COLUMNS, slice_bars, validate_bars
from backtesting.config import TIMEFRAME_MINUTES
from backtesting.errors import DataProviderError

logger = logging.getLogger(__name__)

# pandas resample rules per timeframe
RESAMPLE_RULES: Dict[str, str] = {
    '1m': '1min',
    '5m': '5min',
    '15m': '15min',
    '30m': '30min',
    '1h': '1h',
    '4h': '4h',
    '1d': '1D',
}


@dataclass
class BarFetchResult:
    """
    Standardized bar payload for backtesting.

    Returned by all HistoricalDataProvider implementations.
    """
    bars: pd.DataFrame = field(default_factory=pd.DataFrame)
    coverage_ratio: float = 1.0
    data_source: str = 'unknown'

    @property
    def is_empty(self) -> bool:
        return self.bars is None or self.bars.empty


class HistoricalDataProvider(Protocol):
    """Protocol for OHLCV data during backtests."""

    def fetch_bars(
        self,
        symbol: str,
        timeframe: str,
        start: date,
        end: date,
    ) -> BarFetchResult:
        """
        Get time-ordered bars for a symbol between two calendar days (inclusive).

        Args:
            symbol: Instrument symbol (e.g., 'USDJPY')
            timeframe: One of TIMEFRAME_MINUTES
            start: First day
            end: Last day

        Returns:
            BarFetchResult with bars and coverage ratio

        Raises:
            DataProviderError: Data source unavailable
        """
        ...


def resample_bars(bars: pd.DataFrame, timeframe: str) -> pd.DataFrame:
    """Aggregate finer bars into a coarser timeframe."""
    rule = RESAMPLE_RULES[timeframe]
    resampled = bars.resample(rule, label='left', closed='left').agg({
        'Open': 'first',
        'High': 'max',
        'Low': 'min',
        'Close': 'last',
        'Volume': 'sum',
    })
    return resampled.dropna(subset=['Open', 'High', 'Low', 'Close'])[OHLCV_COLUMNS]


class DataFrameProvider:
    """
    In-memory provider over pre-loaded DataFrames.

    Series are registered per (symbol, timeframe). A request for a
    timeframe that was not registered is served by resampling the finest
    registered series that divides it.

    Usage:
        provider = DataFrameProvider()
        provider.add('USDJPY', '1m', minute_bars)
        result = provider.fetch_bars('USDJPY', '1h', date(2024, 1, 1), date(2024, 3, 31))
    """

    def __init__(self, frames: Optional[Dict[Tuple[str, str], pd.DataFrame]] = None):
        self._frames: Dict[Tuple[str, str], pd.DataFrame] = {}
        for (symbol, timeframe), df in (frames or {}).items():
            self.add(symbol, timeframe, df)

    def add(self, symbol: str, timeframe: str, df: pd.DataFrame) -> None:
        if timeframe not in TIMEFRAME_MINUTES:
            raise ValueError(f"Unsupported timeframe: {timeframe!r}")
        self._frames[(symbol, timeframe)] = validate_bars(df)

    def fetch_bars(
        self,
        symbol: str,
        timeframe: str,
        start: date,
        end: date,
    ) -> BarFetchResult:
        source = self._source_frame(symbol, timeframe)
        if source is None:
            raise DataProviderError(f"No data registered for {symbol} {timeframe}")

        source_tf, df = source
        window = slice_bars(df, start, end)
        if source_tf != timeframe and not window.empty:
            window = resample_bars(window, timeframe)

        return BarFetchResult(
            bars=window,
            coverage_ratio=self._coverage(window, start, end),
            data_source=f'memory:{source_tf}',
        )

    def _source_frame(self, symbol: str, timeframe: str) -> Optional[Tuple[str, pd.DataFrame]]:
        if (symbol, timeframe) in self._frames:
            return timeframe, self._frames[(symbol, timeframe)]

        target = TIMEFRAME_MINUTES[timeframe]
        candidates = [
            tf for (sym, tf) in self._frames
            if sym == symbol and TIMEFRAME_MINUTES[tf] < target and target % TIMEFRAME_MINUTES[tf] == 0
        ]
        if not candidates:
            return None
        finest = min(candidates, key=TIMEFRAME_MINUTES.get)
        return finest, self._frames[(symbol, finest)]

    @staticmethod
    def _coverage(window: pd.DataFrame, start: date, end: date) -> float:
        """Share of requested business days that have at least one bar."""
        requested = len(pd.bdate_range(start, end))
        if requested <= 0 or window.empty:
            return 0.0
        covered = window.index.normalize().nunique()
        return min(1.0, covered / requested)
