"""
OHLCV bar series helpers.

A bar series is a pandas DataFrame with a DatetimeIndex and the columns
Open, High, Low, Close, Volume. Timestamps must be strictly increasing
with no duplicates; this is checked once at load via validate_bars().
"""

from datetime import date, datetime
from typing import Union

import pandas as pd

from backtesting.errors import InvalidRequestError

OHLCV_COLUMNS = ['Open', 'High', 'Low', 'Close', 'Volume']

DateLike = Union[date, datetime, str, pd.Timestamp]


def validate_bars(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize and validate a bar series.

    Lower-case column names ('open', 'close', ...) are accepted and renamed.
    A missing Volume column is filled with zeros.

    Returns:
        DataFrame restricted to OHLCV_COLUMNS with float dtype

    Raises:
        InvalidRequestError: Empty series, missing columns, non-datetime
            index, or timestamps that are not strictly increasing
    """
    if df is None or df.empty:
        raise InvalidRequestError('Bar series is empty')

    renamed = df.rename(columns={c: c.capitalize() for c in df.columns if isinstance(c, str)})
    if 'Volume' not in renamed.columns:
        renamed = renamed.assign(Volume=0.0)

    missing = [c for c in OHLCV_COLUMNS if c not in renamed.columns]
    if missing:
        raise InvalidRequestError(f'Bar series missing columns: {missing}')

    if not isinstance(renamed.index, pd.DatetimeIndex):
        raise InvalidRequestError('Bar series must be indexed by timestamp (DatetimeIndex)')

    if renamed.index.has_duplicates:
        raise InvalidRequestError('Bar series contains duplicate timestamps')

    if not renamed.index.is_monotonic_increasing:
        raise InvalidRequestError('Bar timestamps must be strictly increasing')

    return renamed[OHLCV_COLUMNS].astype(float)


def day_start(value: DateLike) -> pd.Timestamp:
    """Midnight at the start of a calendar day."""
    return pd.Timestamp(value).normalize()


def day_end(value: DateLike) -> pd.Timestamp:
    """Last representable instant of a calendar day."""
    return day_start(value) + pd.Timedelta(days=1) - pd.Timedelta(1, unit='ns')


def slice_bars(df: pd.DataFrame, start: DateLike, end: DateLike) -> pd.DataFrame:
    """Bars whose timestamp falls within [start day, end day] inclusive."""
    index = df.index
    lo, hi = day_start(start), day_end(end)
    if index.tz is not None:
        lo, hi = lo.tz_localize(index.tz), hi.tz_localize(index.tz)
    return df.loc[(index >= lo) & (index <= hi)]
