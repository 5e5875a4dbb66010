"""
Fixtures for backtesting engine tests.

Provides bar builders, simple condition trees, exit settings and a trade
factory for exercising the simulator, aggregator and orchestrator.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from backtesting.conditions import Comparison, ComparisonOperator, IndicatorRef
from backtesting.config import BacktestConfig, ExitSettings, OffsetUnit, PriceOffset
from backtesting.models import ExitReason, TradeEvent, TradeSide


def make_bars(
    closes: Sequence[float],
    opens: Optional[Sequence[float]] = None,
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
    start: str = '2024-01-01',
    freq: str = '1h',
) -> pd.DataFrame:
    """OHLCV frame from explicit prices; highs/lows default to a 0.05 band."""
    closes = np.asarray(closes, dtype=float)
    opens = closes.copy() if opens is None else np.asarray(opens, dtype=float)
    highs = (np.maximum(opens, closes) + 0.05) if highs is None else np.asarray(highs, dtype=float)
    lows = (np.minimum(opens, closes) - 0.05) if lows is None else np.asarray(lows, dtype=float)
    index = pd.date_range(start, periods=len(closes), freq=freq)
    return pd.DataFrame({
        'Open': opens,
        'High': highs,
        'Low': lows,
        'Close': closes,
        'Volume': 1000.0,
    }, index=index)


def random_walk_bars(
    n: int,
    start: str = '2024-01-01',
    freq: str = '1h',
    seed: int = 42,
    base: float = 100.0,
) -> pd.DataFrame:
    """Synthetic random-walk OHLCV data."""
    np.random.seed(seed)
    returns = np.random.randn(n) * 0.002
    closes = base * np.exp(np.cumsum(returns))
    opens = np.concatenate(([base], closes[:-1]))
    spread = np.abs(np.random.randn(n)) * 0.001 * closes
    highs = np.maximum(opens, closes) + spread
    lows = np.minimum(opens, closes) - spread
    return make_bars(closes, opens, highs, lows, start=start, freq=freq)


@pytest.fixture
def bar_factory():
    """Builder for OHLCV frames from explicit prices."""
    return make_bars


@pytest.fixture
def walk_factory():
    """Builder for random-walk OHLCV frames."""
    return random_walk_bars


@pytest.fixture
def close_ref():
    """SMA(1) is the close itself: handy for exact triggers."""
    return IndicatorRef.of('sma', period=1)


@pytest.fixture
def always_true(close_ref):
    """Entry condition that holds on every bar."""
    return Comparison(close_ref, ComparisonOperator.GT, 0.0)


@pytest.fixture
def small_config():
    """Short warm-up so hand-built series stay small."""
    return BacktestConfig(warmup_bars=5)


@pytest.fixture
def wide_exits():
    """TP/SL far away: positions only close by timeout or end of data."""
    return ExitSettings(
        take_profit=PriceOffset(10.0, OffsetUnit.PERCENT),
        stop_loss=PriceOffset(10.0, OffsetUnit.PERCENT),
    )


@pytest.fixture
def tight_exits():
    """1% TP and SL."""
    return ExitSettings(
        take_profit=PriceOffset(1.0, OffsetUnit.PERCENT),
        stop_loss=PriceOffset(1.0, OffsetUnit.PERCENT),
    )


def make_trade(
    pnl: float,
    exit_reason: ExitReason = ExitReason.TAKE_PROFIT,
    snapshot: Optional[Dict[str, float]] = None,
    offset: int = 0,
    side: TradeSide = TradeSide.LONG,
) -> TradeEvent:
    """Closed trade with the given PnL; prices are derived for a 10k lot."""
    entry_time = datetime(2024, 1, 1) + timedelta(hours=offset * 2)
    entry_price = 100.0
    exit_price = entry_price + side.sign * pnl / 10_000
    return TradeEvent(
        entry_time=entry_time,
        entry_price=entry_price,
        exit_time=entry_time + timedelta(hours=1),
        exit_price=exit_price,
        side=side,
        lot_size=10_000,
        pnl=pnl,
        pnl_percent=pnl / 40_000 * 100,
        exit_reason=exit_reason,
        indicator_snapshot=snapshot or {},
        entry_bar_index=offset * 2,
        exit_bar_index=offset * 2 + 1,
    )


@pytest.fixture
def trade_factory():
    """Builder for closed trades."""
    return make_trade
