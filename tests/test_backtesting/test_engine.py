"""
Tests for the two-stage backtest orchestrator.

Tests cover:
- Stage 1 only and Stage 1 -> Stage 2 replacement
- Input errors raised before any work
- Atomic failure (nothing persisted)
- Coverage warnings
- Strategy (de)serialization
"""

import json
import logging
from datetime import date

import pytest

from backtesting.conditions import Comparison, ComparisonOperator, IndicatorRef
from backtesting.config import BacktestConfig, ExitSettings, PriceOffset
from backtesting.data_providers.base import DataFrameProvider
from backtesting.engine import BacktestEngine, validate_date_range
from backtesting.errors import DataProviderError, InvalidRequestError, StorageError
from backtesting.models import BacktestRequest, RunStatus, Strategy, TradeSide
from backtesting.storage import InMemoryResultStore, InMemoryStrategyRepository

SYMBOL = 'USDJPY'
START = date(2024, 1, 1)
END = date(2024, 1, 3)


def make_strategy(entry, strategy_id='s-1', side=TradeSide.LONG, exit_condition=None):
    return Strategy(
        strategy_id=strategy_id,
        symbol=SYMBOL,
        side=side,
        entry_condition=entry,
        exit_settings=ExitSettings(PriceOffset(0.3), PriceOffset(0.3)),
        exit_condition=exit_condition,
    )


class FailingProvider:
    """Provider whose data source is down."""

    def fetch_bars(self, symbol, timeframe, start, end):
        raise DataProviderError('feed unavailable')


class FailingStore:
    """Result store that cannot write."""

    def save(self, result):
        raise StorageError('disk full')


@pytest.fixture
def minute_provider(walk_factory):
    provider = DataFrameProvider()
    provider.add(SYMBOL, '1m', walk_factory(3 * 1440, start='2024-01-01', freq='1min'))
    return provider


@pytest.fixture
def hourly_provider(walk_factory):
    provider = DataFrameProvider()
    provider.add(SYMBOL, '1h', walk_factory(72, start='2024-01-01', freq='1h'))
    return provider


@pytest.fixture
def never_true(close_ref):
    return Comparison(close_ref, ComparisonOperator.LT, 0.0)


def build_engine(provider, *strategies, store=None):
    return BacktestEngine(
        provider,
        InMemoryStrategyRepository(list(strategies)),
        result_store=store,
        config=BacktestConfig(warmup_bars=5),
    )


class TestStages:
    """Stage selection and replacement."""

    def test_stage1_only(self, hourly_provider, always_true):
        store = InMemoryResultStore()
        engine = build_engine(hourly_provider, make_strategy(always_true), store=store)

        result = engine.run(BacktestRequest('s-1', START, END, stage1_timeframe='1h'))

        assert result.status == RunStatus.COMPLETED
        assert result.stage == 1
        assert result.timeframe == '1h'
        assert result.summary.total_trades == len(result.trades) > 0
        assert store.get(result.result_id) is result

    def test_stage2_replaces_stage1(self, minute_provider, always_true):
        store = InMemoryResultStore()
        engine = build_engine(minute_provider, make_strategy(always_true), store=store)

        result = engine.run(BacktestRequest('s-1', START, END, stage1_timeframe='1h',
                                            run_stage2=True))

        assert result.is_completed
        assert result.stage == 2
        assert result.timeframe == '1m'
        assert len(store) == 1
        assert store.list_for_strategy('s-1') == [result]

    def test_stage2_skipped_without_stage1_trades(self, minute_provider, never_true):
        engine = build_engine(minute_provider, make_strategy(never_true))

        result = engine.run(BacktestRequest('s-1', START, END, run_stage2=True))

        assert result.stage == 1
        assert result.trades == []
        assert result.summary.total_trades == 0

    def test_persist_false(self, hourly_provider, always_true):
        store = InMemoryResultStore()
        engine = build_engine(hourly_provider, make_strategy(always_true), store=store)
        engine.run(BacktestRequest('s-1', START, END), persist=False)
        assert len(store) == 0

    def test_result_is_json_serializable(self, hourly_provider, always_true):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        result = engine.run(BacktestRequest('s-1', START, END))
        json.dumps(result.to_dict(), allow_nan=False)
        assert 'Strategy s-1' in result.summary_text()


class TestInputErrors:
    """Problems with the request raise instead of producing a failed result."""

    def test_unknown_strategy(self, hourly_provider):
        with pytest.raises(InvalidRequestError, match='Unknown strategy'):
            build_engine(hourly_provider).run(BacktestRequest('missing', START, END))

    def test_start_after_end(self, hourly_provider, always_true):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with pytest.raises(InvalidRequestError, match='after end_date'):
            engine.run(BacktestRequest('s-1', END, START))

    @pytest.mark.parametrize('timeframe', ['2h', '1m', '5m'])
    def test_unsupported_stage1_timeframe(self, hourly_provider, always_true, timeframe):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with pytest.raises(InvalidRequestError, match='timeframe'):
            engine.run(BacktestRequest('s-1', START, END, stage1_timeframe=timeframe))

    def test_non_positive_lot_size(self, hourly_provider, always_true):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with pytest.raises(InvalidRequestError, match='lot_size'):
            engine.run(BacktestRequest('s-1', START, END, lot_size=0))

    def test_unknown_indicator_in_strategy(self, hourly_provider):
        bad = Comparison(IndicatorRef.of('nope'), ComparisonOperator.GT, 0.0)
        engine = build_engine(hourly_provider, make_strategy(bad))
        with pytest.raises(InvalidRequestError, match='nope'):
            engine.run(BacktestRequest('s-1', START, END))

    def test_empty_data_range(self, hourly_provider, always_true):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with pytest.raises(InvalidRequestError, match='No bars'):
            engine.run(BacktestRequest('s-1', date(2025, 1, 1), date(2025, 1, 3)))

    def test_date_range_limit(self):
        assert validate_date_range(START, END, max_range_days=3) == []
        assert len(validate_date_range(START, END, max_range_days=2)) == 1
        assert validate_date_range(None, END) == ['start_date and end_date are required']


class TestAtomicFailure:
    """Runtime failures produce a FAILED result and persist nothing."""

    def test_provider_failure(self, always_true):
        store = InMemoryResultStore()
        engine = build_engine(FailingProvider(), make_strategy(always_true), store=store)

        result = engine.run(BacktestRequest('s-1', START, END))

        assert result.status == RunStatus.FAILED
        assert 'feed unavailable' in result.error_message
        assert result.trades == []
        assert len(store) == 0

    def test_storage_failure(self, hourly_provider, always_true):
        engine = build_engine(hourly_provider, make_strategy(always_true), store=FailingStore())

        result = engine.run(BacktestRequest('s-1', START, END))

        assert result.status == RunStatus.FAILED
        assert result.error_message.startswith('StorageError')
        assert result.trades == []


class TestCoverage:
    """Data coverage warnings."""

    def test_low_coverage_logs_warning(self, hourly_provider, always_true, caplog):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with caplog.at_level(logging.WARNING, logger='backtesting.engine'):
            result = engine.run(BacktestRequest('s-1', START, date(2024, 1, 12)))
        assert result.is_completed
        assert 'Low data coverage' in caplog.text

    def test_full_coverage_is_quiet(self, hourly_provider, always_true, caplog):
        engine = build_engine(hourly_provider, make_strategy(always_true))
        with caplog.at_level(logging.WARNING, logger='backtesting.engine'):
            engine.run(BacktestRequest('s-1', START, END))
        assert 'Low data coverage' not in caplog.text


class TestStrategyModel:
    """Strategy records."""

    def test_round_trip(self, always_true, close_ref):
        strategy = make_strategy(
            always_true, side=TradeSide.SHORT,
            exit_condition=Comparison(close_ref, ComparisonOperator.CROSS_BELOW, 99.0),
        )
        assert Strategy.from_dict(strategy.to_dict()) == strategy

    def test_side_aliases(self):
        assert TradeSide.parse('BUY') is TradeSide.LONG
        assert TradeSide.parse('sell') is TradeSide.SHORT
        with pytest.raises(ValueError):
            TradeSide.parse('sideways')
