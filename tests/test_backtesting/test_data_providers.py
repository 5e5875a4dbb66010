"""
Tests for bar validation and the in-memory data provider.

Tests cover:
- Column normalization and validation errors
- Inclusive day slicing
- Resampling from a finer registered timeframe
- Coverage ratio on business days
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from backtesting.bars import slice_bars, validate_bars
from backtesting.data_providers.base import DataFrameProvider, resample_bars
from backtesting.errors import DataProviderError, InvalidRequestError


class TestValidateBars:
    """Bar series validation."""

    def test_lowercase_columns_and_missing_volume(self):
        index = pd.date_range('2024-01-01', periods=3, freq='1h')
        df = pd.DataFrame({'open': [1, 2, 3], 'high': [2, 3, 4],
                           'low': [0, 1, 2], 'close': [1, 2, 3]}, index=index)
        bars = validate_bars(df)
        assert list(bars.columns) == ['Open', 'High', 'Low', 'Close', 'Volume']
        assert (bars['Volume'] == 0.0).all()
        assert bars['Open'].dtype == float

    def test_empty(self):
        with pytest.raises(InvalidRequestError, match='empty'):
            validate_bars(pd.DataFrame())

    def test_missing_columns(self, bar_factory):
        with pytest.raises(InvalidRequestError, match='Close'):
            validate_bars(bar_factory([1.0, 2.0]).drop(columns=['Close']))

    def test_duplicate_timestamps(self, bar_factory):
        bars = bar_factory([1.0, 2.0, 3.0])
        bars.index = pd.DatetimeIndex([bars.index[0], bars.index[0], bars.index[2]])
        with pytest.raises(InvalidRequestError, match='duplicate'):
            validate_bars(bars)

    def test_unsorted_timestamps(self, bar_factory):
        bars = bar_factory([1.0, 2.0, 3.0]).iloc[::-1]
        with pytest.raises(InvalidRequestError, match='increasing'):
            validate_bars(bars)

    def test_requires_datetime_index(self, bar_factory):
        with pytest.raises(InvalidRequestError, match='DatetimeIndex'):
            validate_bars(bar_factory([1.0, 2.0]).reset_index(drop=True))


class TestSlicing:
    """Inclusive calendar-day windows."""

    def test_end_day_is_inclusive(self, walk_factory):
        bars = walk_factory(96, start='2024-01-01', freq='1h')
        window = slice_bars(bars, date(2024, 1, 2), date(2024, 1, 3))
        assert len(window) == 48
        assert window.index[0] == pd.Timestamp('2024-01-02 00:00')
        assert window.index[-1] == pd.Timestamp('2024-01-03 23:00')

    def test_timezone_aware_index(self, walk_factory):
        bars = walk_factory(48, start='2024-01-01', freq='1h').tz_localize('UTC')
        assert len(slice_bars(bars, date(2024, 1, 2), date(2024, 1, 2))) == 24


class TestDataFrameProvider:
    """In-memory provider."""

    def test_resample_from_minutes(self, walk_factory):
        minutes = walk_factory(240, start='2024-01-01', freq='1min')
        hourly = resample_bars(minutes, '1h')

        assert len(hourly) == 4
        first = minutes.iloc[:60]
        assert hourly['Open'].iloc[0] == first['Open'].iloc[0]
        assert hourly['High'].iloc[0] == first['High'].max()
        assert hourly['Low'].iloc[0] == first['Low'].min()
        assert hourly['Close'].iloc[0] == first['Close'].iloc[-1]

    def test_serves_coarser_timeframe(self, walk_factory):
        provider = DataFrameProvider()
        provider.add('EURUSD', '1m', walk_factory(1440, start='2024-01-02', freq='1min'))

        result = provider.fetch_bars('EURUSD', '4h', date(2024, 1, 2), date(2024, 1, 2))

        assert len(result.bars) == 6
        assert result.data_source == 'memory:1m'
        assert result.coverage_ratio == 1.0

    def test_unknown_symbol(self):
        with pytest.raises(DataProviderError):
            DataFrameProvider().fetch_bars('EURUSD', '1h', date(2024, 1, 1), date(2024, 1, 2))

    def test_cannot_serve_finer_timeframe(self, walk_factory):
        provider = DataFrameProvider()
        provider.add('EURUSD', '1h', walk_factory(24))
        with pytest.raises(DataProviderError):
            provider.fetch_bars('EURUSD', '1m', date(2024, 1, 1), date(2024, 1, 1))

    def test_weekend_does_not_reduce_coverage(self, walk_factory):
        """Mon 2024-01-01 .. Sun 2024-01-07 has five business days."""
        provider = DataFrameProvider()
        weekdays = walk_factory(24 * 7, start='2024-01-01', freq='1h')
        weekdays = weekdays[weekdays.index.dayofweek < 5]
        provider.add('EURUSD', '1h', weekdays)

        result = provider.fetch_bars('EURUSD', '1h', date(2024, 1, 1), date(2024, 1, 7))

        assert result.coverage_ratio == 1.0

    def test_partial_coverage(self, walk_factory):
        provider = DataFrameProvider()
        provider.add('EURUSD', '1h', walk_factory(48, start='2024-01-01'))
        result = provider.fetch_bars('EURUSD', '1h', date(2024, 1, 1), date(2024, 1, 4))
        assert result.coverage_ratio == pytest.approx(0.5)
        assert not result.is_empty

    def test_rejects_unknown_timeframe(self, walk_factory):
        with pytest.raises(ValueError):
            DataFrameProvider().add('EURUSD', '2h', walk_factory(10))

    def test_constructor_frames(self, walk_factory):
        provider = DataFrameProvider({('EURUSD', '1h'): walk_factory(24)})
        result = provider.fetch_bars('EURUSD', '1h', date(2024, 1, 1), date(2024, 1, 1))
        assert len(result.bars) == 24
        assert np.isfinite(result.bars['Close']).all()
