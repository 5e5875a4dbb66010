"""
Fixtures for validation module tests.

Provides a synthetic hourly data provider, an engine wired to it, and
trades with indicator snapshots for the filter analyzer.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

import numpy as np
import pandas as pd
import pytest

from backtesting.conditions import Comparison, ComparisonOperator, IndicatorRef
from backtesting.config import BacktestConfig, ExitSettings, PriceOffset
from backtesting.data_providers.base import DataFrameProvider
from backtesting.engine import BacktestEngine
from backtesting.models import ExitReason, Strategy, TradeEvent, TradeSide
from backtesting.storage import InMemoryResultStore, InMemoryStrategyRepository

SYMBOL = 'USDJPY'


def generate_bars(n: int, start: str = '2024-01-01', freq: str = '1h', seed: int = 42) -> pd.DataFrame:
    """Random-walk OHLCV bars."""
    np.random.seed(seed)
    returns = np.random.randn(n) * 0.002
    closes = 100.0 * np.exp(np.cumsum(returns))
    opens = np.concatenate(([100.0], closes[:-1]))
    spread = np.abs(np.random.randn(n)) * 0.001 * closes
    return pd.DataFrame({
        'Open': opens,
        'High': np.maximum(opens, closes) + spread,
        'Low': np.minimum(opens, closes) - spread,
        'Close': closes,
        'Volume': np.random.randint(100, 10_000, n).astype(float),
    }, index=pd.date_range(start, periods=n, freq=freq))


@pytest.fixture
def bar_generator():
    """Builder for random-walk bars."""
    return generate_bars


@pytest.fixture
def hourly_bars():
    """100 days of hourly bars starting 2024-01-01."""
    return generate_bars(100 * 24)


@pytest.fixture
def provider(hourly_bars):
    provider = DataFrameProvider()
    provider.add(SYMBOL, '1h', hourly_bars)
    return provider


@pytest.fixture
def exit_settings():
    return ExitSettings(PriceOffset(0.3), PriceOffset(0.3))


@pytest.fixture
def strategy(exit_settings):
    """Always-in-the-market long strategy."""
    entry = Comparison(IndicatorRef.of('sma', period=1), ComparisonOperator.GT, 0.0)
    return Strategy('wf-1', SYMBOL, TradeSide.LONG, entry, exit_settings)


@pytest.fixture
def result_store():
    return InMemoryResultStore()


@pytest.fixture
def engine(provider, strategy, result_store):
    return BacktestEngine(
        provider,
        InMemoryStrategyRepository([strategy]),
        result_store=result_store,
        config=BacktestConfig(warmup_bars=5),
    )


def make_trade(pnl: float, snapshot: Optional[Dict[str, float]] = None, offset: int = 0) -> TradeEvent:
    """Closed long trade entered `offset` hours after 2024-01-01."""
    entry_time = datetime(2024, 1, 1) + timedelta(hours=offset)
    return TradeEvent(
        entry_time=entry_time,
        entry_price=100.0,
        exit_time=entry_time + timedelta(minutes=30),
        exit_price=100.0 + pnl / 10_000,
        side=TradeSide.LONG,
        lot_size=10_000,
        pnl=pnl,
        pnl_percent=pnl / 40_000 * 100,
        exit_reason=ExitReason.TAKE_PROFIT if pnl > 0 else ExitReason.STOP_LOSS,
        indicator_snapshot=snapshot or {},
        entry_bar_index=offset,
        exit_bar_index=offset + 1,
    )


@pytest.fixture
def trade_factory():
    return make_trade


@pytest.fixture
def snapshot_trades():
    """Winners entered with high RSI, losers with low RSI; SMA is noise."""
    return [
        make_trade(300.0, {'RSI_14': 68.0, 'SMA_20': 100.0}, offset=0),
        make_trade(200.0, {'RSI_14': 72.0, 'SMA_20': 101.0}, offset=1),
        make_trade(-100.0, {'RSI_14': 28.0, 'SMA_20': 100.5}, offset=2),
        make_trade(-150.0, {'RSI_14': 32.0, 'SMA_20': 100.5}, offset=3),
    ]
