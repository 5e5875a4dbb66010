"""
Indicator Library

Causal indicator series computed with pandas over an OHLCV DataFrame.
Every value at bar i depends only on bars 0..i, so the condition evaluator
can compute a whole series once per run and index into it without any
look-ahead. Warm-up bars are NaN.

Key Features:
- Built-in sma, ema, rsi (Wilder), macd, bb (Bollinger Bands) and atr
- Multi-field indicators (macd: value/signal/histogram, bb: upper/middle/lower)
- Registry so callers can plug in their own indicators
- Aliases for indicator ids, params and fields as written by the strategy
  editor (bollinger, fastPeriod/slowPeriod/signalPeriod, stdDev, value)
- Preset snapshot indicators recorded at trade entry for filter analysis

Usage:
    from backtesting.indicators import DEFAULT_LIBRARY

    rsi = DEFAULT_LIBRARY.compute(bars, 'rsi', {'period': 14})
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

IndicatorFunc = Callable[..., Dict[str, pd.Series]]


# =============================================================================
# INDICATOR FUNCTIONS
# =============================================================================

def sma(close: pd.Series, period: int = 20) -> pd.Series:
    """Simple moving average."""
    return close.rolling(window=int(period), min_periods=int(period)).mean()


def ema(close: pd.Series, period: int = 20) -> pd.Series:
    """Exponential moving average, NaN until `period` bars are available."""
    return close.ewm(span=int(period), adjust=False, min_periods=int(period)).mean()


def rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """Relative Strength Index with Wilder smoothing (0-100)."""
    period = int(period)
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()

    rs = avg_gain / avg_loss
    result = 100.0 - 100.0 / (1.0 + rs)
    # Flat stretches: no losses => 100, no movement at all => 50
    result = result.where(avg_loss != 0, 100.0)
    result = result.where(~((avg_gain == 0) & (avg_loss == 0)), 50.0)
    # The first bar has no delta, so keep the warm-up NaN intact
    return result.where(avg_gain.notna() & avg_loss.notna())


def macd(
    close: pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Dict[str, pd.Series]:
    """MACD line, signal line and histogram."""
    line = ema(close, fast) - ema(close, slow)
    signal_line = line.ewm(span=int(signal), adjust=False, min_periods=int(signal)).mean()
    return {
        'value': line,
        'signal': signal_line,
        'histogram': line - signal_line,
    }


def bollinger_bands(
    close: pd.Series,
    period: int = 20,
    std_dev: float = 2.0,
) -> Dict[str, pd.Series]:
    """Bollinger Bands using the population standard deviation."""
    middle = sma(close, period)
    std = close.rolling(window=int(period), min_periods=int(period)).std(ddof=0)
    return {
        'upper': middle + std_dev * std,
        'middle': middle,
        'lower': middle - std_dev * std,
    }


def atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> pd.Series:
    """Average True Range (simple average of true range)."""
    prev_close = close.shift(1)
    true_range = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
        axis=1,
    ).max(axis=1, skipna=False)
    return true_range.rolling(window=int(period), min_periods=int(period)).mean()


def bb_position(close: pd.Series, upper: pd.Series, lower: pd.Series) -> pd.Series:
    """Where the close sits inside the band: 0 = lower, 1 = upper, 0.5 on a flat band."""
    width = upper - lower
    position = (close - lower) / width.where(width != 0)
    position = position.where(width != 0, 0.5)
    return position.where(upper.notna() & lower.notna())


# =============================================================================
# REGISTRY
# =============================================================================

@dataclass(frozen=True)
class IndicatorSpec:
    """
    A registered indicator.

    Attributes:
        indicator_id: Key used in condition trees (e.g. 'rsi')
        func: Callable(bars, **params) -> {field: Series}
        defaults: Default parameter values
        fields: Output fields; the first one is the default
        param_aliases: Alternate param name -> param name
        field_aliases: Alternate field name -> field name
    """
    indicator_id: str
    func: IndicatorFunc
    defaults: Mapping[str, float] = field(default_factory=dict)
    fields: Tuple[str, ...] = ('value',)
    param_aliases: Mapping[str, str] = field(default_factory=dict)
    field_aliases: Mapping[str, str] = field(default_factory=dict)

    @property
    def default_field(self) -> str:
        return self.fields[0]

    def canonical_field(self, name: Optional[str]) -> str:
        if name is None:
            return self.default_field
        return self.field_aliases.get(name, name)

    def canonical_params(self, params: Optional[Mapping[str, float]]) -> Dict[str, float]:
        return {self.param_aliases.get(k, k): v for k, v in (params or {}).items()}


def _single(series: pd.Series) -> Dict[str, pd.Series]:
    return {'value': series}


class IndicatorLibrary:
    """
    Registry of indicator computations.

    Lookups are by lower-case indicator id or one of its aliases. Params
    omitted by the caller fall back to the indicator's defaults.
    """

    def __init__(self):
        self._specs: Dict[str, IndicatorSpec] = {}
        self._aliases: Dict[str, str] = {}

    def register(self, spec: IndicatorSpec, aliases: Tuple[str, ...] = ()) -> None:
        key = spec.indicator_id.lower()
        self._specs[key] = spec
        for alias in aliases:
            self._aliases[alias.lower()] = key

    def get(self, indicator_id: str) -> Optional[IndicatorSpec]:
        key = indicator_id.lower()
        return self._specs.get(self._aliases.get(key, key))

    def __contains__(self, indicator_id: str) -> bool:
        return self.get(indicator_id) is not None

    def resolve_params(
        self,
        indicator_id: str,
        params: Optional[Mapping[str, float]] = None,
    ) -> Dict[str, float]:
        """Defaults overlaid with explicit params."""
        spec = self._require(indicator_id)
        merged = dict(spec.defaults)
        merged.update(spec.canonical_params(params))
        return merged

    def compute(
        self,
        bars: pd.DataFrame,
        indicator_id: str,
        params: Optional[Mapping[str, float]] = None,
        field_name: Optional[str] = None,
    ) -> np.ndarray:
        """
        Compute one indicator field over the whole bar series.

        Returns:
            Float array aligned with bars (NaN during warm-up)

        Raises:
            KeyError: Unknown indicator or field
        """
        spec = self._require(indicator_id)
        field_name = spec.canonical_field(field_name)
        if field_name not in spec.fields:
            raise KeyError(f"Indicator {indicator_id!r} has no field {field_name!r}")

        outputs = spec.func(bars, **self.resolve_params(indicator_id, params))
        return outputs[field_name].to_numpy(dtype=float)

    def _require(self, indicator_id: str) -> IndicatorSpec:
        spec = self.get(indicator_id)
        if spec is None:
            raise KeyError(f"Unknown indicator: {indicator_id!r}")
        return spec


def _build_default_library() -> IndicatorLibrary:
    library = IndicatorLibrary()
    library.register(IndicatorSpec(
        'sma', lambda df, period: _single(sma(df['Close'], period)), {'period': 20},
    ))
    library.register(IndicatorSpec(
        'ema', lambda df, period: _single(ema(df['Close'], period)), {'period': 20},
    ))
    library.register(IndicatorSpec(
        'rsi', lambda df, period: _single(rsi(df['Close'], period)), {'period': 14},
    ))
    library.register(IndicatorSpec(
        'macd',
        lambda df, fast, slow, signal: macd(df['Close'], fast, slow, signal),
        {'fast': 12, 'slow': 26, 'signal': 9},
        ('value', 'signal', 'histogram'),
        param_aliases={'fastPeriod': 'fast', 'slowPeriod': 'slow', 'signalPeriod': 'signal'},
        field_aliases={'macd': 'value'},
    ))
    library.register(IndicatorSpec(
        'bb',
        lambda df, period, std_dev: bollinger_bands(df['Close'], period, std_dev),
        {'period': 20, 'std_dev': 2.0},
        ('middle', 'upper', 'lower'),
        param_aliases={'stdDev': 'std_dev'},
        field_aliases={'value': 'middle'},
    ), aliases=('bollinger',))
    library.register(IndicatorSpec(
        'atr',
        lambda df, period: _single(atr(df['High'], df['Low'], df['Close'], period)),
        {'period': 14},
    ))
    return library


DEFAULT_LIBRARY = _build_default_library()


# =============================================================================
# PRESET SNAPSHOT INDICATORS
# =============================================================================

# (indicator id, params, field) for every preset except BB_POSITION
PRESET_INDICATORS: Dict[str, Tuple[str, Dict[str, float], str]] = {
    'SMA_20': ('sma', {'period': 20}, 'value'),
    'SMA_50': ('sma', {'period': 50}, 'value'),
    'SMA_200': ('sma', {'period': 200}, 'value'),
    'EMA_20': ('ema', {'period': 20}, 'value'),
    'EMA_50': ('ema', {'period': 50}, 'value'),
    'RSI_14': ('rsi', {'period': 14}, 'value'),
    'MACD_HIST': ('macd', {'fast': 12, 'slow': 26, 'signal': 9}, 'histogram'),
    'BB_UPPER': ('bb', {'period': 20}, 'upper'),
    'BB_LOWER': ('bb', {'period': 20}, 'lower'),
}

PRESET_DISPLAY_NAMES: Dict[str, str] = {
    'SMA_20': 'SMA(20)',
    'SMA_50': 'SMA(50)',
    'SMA_200': 'SMA(200)',
    'EMA_20': 'EMA(20)',
    'EMA_50': 'EMA(50)',
    'RSI_14': 'RSI(14)',
    'MACD_HIST': 'MACD Histogram',
    'BB_UPPER': 'BB Upper',
    'BB_LOWER': 'BB Lower',
    'BB_POSITION': 'BB Position (0-1)',
}


def compute_preset_series(
    bars: pd.DataFrame,
    library: IndicatorLibrary = DEFAULT_LIBRARY,
) -> Dict[str, np.ndarray]:
    """All preset snapshot indicators as arrays aligned with bars."""
    series = {
        key: library.compute(bars, indicator_id, params, field_name)
        for key, (indicator_id, params, field_name) in PRESET_INDICATORS.items()
    }
    bands = bollinger_bands(bars['Close'], 20)
    series['BB_POSITION'] = bb_position(
        bars['Close'], bands['upper'], bands['lower']
    ).to_numpy(dtype=float)
    return series
