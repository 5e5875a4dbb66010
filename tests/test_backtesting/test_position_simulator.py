"""
Tests for the position simulator and exit evaluator.

Tests cover:
- Warm-up handling on short series
- Next-bar-open entry fills
- Exit priority (TP before SL on the same bar, long and short)
- Timeout, signal exit and end-of-data close
- Capital floor (bankruptcy) halting the run
- Indicator snapshots at entry
- Pip-based offsets
"""

import numpy as np
import pytest

from backtesting.conditions import Comparison, ComparisonOperator
from backtesting.config import BacktestConfig, ExitSettings, OffsetUnit, PriceOffset
from backtesting.exits.exit_evaluator import ExitEvaluator
from backtesting.models import ExitReason, StoppedReason, TradeSide, calculate_pnl
from backtesting.signals import ConditionSignal
from backtesting.simulation.position import OpenPosition
from backtesting.simulation.position_simulator import PositionSimulator


class SpySignal:
    """Entry signal that records every bar it is asked about."""

    def __init__(self, side=TradeSide.LONG):
        self.side = side
        self.calls = []

    def __call__(self, ctx):
        self.calls.append(ctx.index)
        return self.side


@pytest.fixture
def spike_closes():
    """Flat closes with a spike on bar 10 that triggers `close > 105`."""
    closes = np.full(20, 100.0)
    closes[10] = 106.0
    return closes


@pytest.fixture
def spike_signal(close_ref):
    return ConditionSignal(Comparison(close_ref, ComparisonOperator.GT, 105.0), TradeSide.LONG)


def simulate(bars, config, exits, signal, interval=60, **kwargs):
    return PositionSimulator(config, exits, interval).run(bars, signal, **kwargs)


class TestPnl:
    """PnL arithmetic."""

    def test_long_and_short(self):
        assert calculate_pnl(TradeSide.LONG, 100.0, 110.0, 10_000) == pytest.approx(100_000)
        assert calculate_pnl(TradeSide.SHORT, 100.0, 110.0, 10_000) == pytest.approx(-100_000)


class TestWarmup:
    """Short series and warm-up offsets."""

    def test_series_shorter_than_warmup(self, walk_factory, always_true, wide_exits):
        run = simulate(walk_factory(30), BacktestConfig(), wide_exits,
                       ConditionSignal(always_true, TradeSide.LONG))
        assert run.trades == []
        assert run.stopped_reason == StoppedReason.COMPLETED
        assert run.final_capital == 1_000_000.0

    def test_first_signal_after_warmup(self, bar_factory, small_config, wide_exits):
        spy = SpySignal()
        simulate(bar_factory(np.full(20, 100.0)), small_config, wide_exits, spy)
        assert spy.calls[0] == 5


class TestEntries:
    """Entry timing."""

    def test_fills_at_next_bar_open(self, bar_factory, spike_closes, spike_signal,
                                    small_config, wide_exits):
        opens = 100.0 + np.arange(20) * 0.01
        bars = bar_factory(spike_closes, opens=opens)
        run = simulate(bars, small_config, wide_exits, spike_signal)

        assert len(run.trades) == 1
        trade = run.trades[0]
        assert trade.entry_bar_index == 11
        assert trade.entry_price == pytest.approx(100.11)
        assert trade.entry_time == bars.index[11]

    def test_no_entry_on_last_bar(self, bar_factory, small_config, wide_exits, close_ref):
        """A signal on the final bar has no next open to fill at."""
        closes = np.full(12, 100.0)
        closes[-1] = 106.0
        signal = ConditionSignal(Comparison(close_ref, ComparisonOperator.GT, 105.0),
                                 TradeSide.LONG)
        run = simulate(bar_factory(closes), small_config, wide_exits, signal)
        assert run.trades == []


class TestExits:
    """Exit rules and their priority."""

    @pytest.mark.parametrize('side', [TradeSide.LONG, TradeSide.SHORT])
    def test_take_profit_wins_when_both_levels_hit(self, bar_factory, spike_closes,
                                                   small_config, tight_exits, close_ref, side):
        bars = bar_factory(spike_closes)
        bars.loc[bars.index[12], 'High'] = 102.0
        bars.loc[bars.index[12], 'Low'] = 98.0
        signal = ConditionSignal(Comparison(close_ref, ComparisonOperator.GT, 105.0), side)

        run = simulate(bars, small_config, tight_exits, signal)

        trade = run.trades[0]
        assert trade.exit_reason == ExitReason.TAKE_PROFIT
        assert trade.exit_bar_index == 12
        assert trade.exit_price == pytest.approx(101.0 if side is TradeSide.LONG else 99.0)
        assert trade.pnl == pytest.approx(10_000)

    def test_stop_loss(self, bar_factory, spike_closes, spike_signal, small_config, tight_exits):
        bars = bar_factory(spike_closes)
        bars.loc[bars.index[13], 'Low'] = 98.5
        run = simulate(bars, small_config, tight_exits, spike_signal)

        trade = run.trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS
        assert trade.exit_price == pytest.approx(99.0)
        assert trade.pnl == pytest.approx(-10_000)
        assert trade.pnl_percent == pytest.approx(-10_000 / 40_000 * 100)

    def test_timeout_by_bars_held(self, bar_factory, small_config, always_true):
        exits = ExitSettings(PriceOffset(10.0), PriceOffset(10.0), max_holding_minutes=120)
        closes = 100.0 + np.arange(20) * 0.1
        run = simulate(bar_factory(closes), small_config, exits,
                       ConditionSignal(always_true, TradeSide.LONG))

        first, second = run.trades[0], run.trades[1]
        assert first.entry_bar_index == 6
        assert first.exit_bar_index == 8
        assert first.exit_reason == ExitReason.TIMEOUT
        assert first.exit_price == pytest.approx(closes[8])
        # The closing bar is not a signal bar: next signal on 9, fill on 10
        assert second.entry_bar_index == 10

    def test_signal_exit_at_close(self, bar_factory, spike_closes, spike_signal,
                                  small_config, wide_exits, close_ref):
        spike_closes[14] = 98.5
        exit_condition = Comparison(close_ref, ComparisonOperator.LT, 99.0)
        run = simulate(bar_factory(spike_closes), small_config, wide_exits, spike_signal,
                       exit_condition=exit_condition)

        trade = run.trades[0]
        assert trade.exit_reason == ExitReason.SIGNAL
        assert trade.exit_bar_index == 14
        assert trade.exit_price == pytest.approx(98.5)

    def test_open_position_closed_at_end_of_data(self, bar_factory, small_config,
                                                 wide_exits, always_true):
        closes = np.full(20, 100.0)
        closes[-1] = 101.0
        run = simulate(bar_factory(closes), small_config, wide_exits,
                       ConditionSignal(always_true, TradeSide.LONG))

        assert len(run.trades) == 1
        trade = run.trades[0]
        assert trade.exit_reason == ExitReason.TIMEOUT
        assert trade.exit_bar_index == 19
        assert trade.exit_price == pytest.approx(101.0)
        assert trade.pnl == pytest.approx(10_000)

    def test_one_position_at_a_time(self, walk_factory, always_true, tight_exits, small_config):
        run = simulate(walk_factory(400), small_config, tight_exits,
                       ConditionSignal(always_true, TradeSide.SHORT))
        assert len(run.trades) > 1
        for prev, nxt in zip(run.trades, run.trades[1:]):
            assert nxt.entry_bar_index > prev.exit_bar_index


class TestBankruptcy:
    """Capital floor."""

    def test_halts_after_ruinous_trade(self, bar_factory, small_config):
        bars = bar_factory(np.full(15, 100.0))
        bars.loc[bars.index[7], 'Low'] = 30.0
        exits = ExitSettings(PriceOffset(10.0), PriceOffset(60.0))
        spy = SpySignal()

        run = simulate(bars, small_config, exits, spy)

        assert len(run.trades) == 1
        assert run.trades[0].pnl == pytest.approx(-600_000)
        assert run.stopped_reason == StoppedReason.BANKRUPTCY
        assert run.final_capital == pytest.approx(400_000)
        assert spy.calls == [5]

    def test_loss_above_floor_keeps_trading(self, bar_factory, small_config):
        bars = bar_factory(np.full(15, 100.0))
        bars.loc[bars.index[7], 'Low'] = 30.0
        exits = ExitSettings(PriceOffset(10.0), PriceOffset(40.0))

        run = simulate(bars, small_config, exits, SpySignal())

        assert run.stopped_reason == StoppedReason.COMPLETED
        assert len(run.trades) == 2


class TestSnapshots:
    """Indicator values recorded at entry."""

    def test_snapshot_taken_at_entry_bar(self, bar_factory, spike_closes, small_config,
                                         wide_exits, close_ref):
        spike_closes[11] = 103.0
        bars = bar_factory(spike_closes)
        tree = Comparison(close_ref, ComparisonOperator.GT, 105.0)
        run = simulate(bars, small_config, wide_exits, ConditionSignal(tree, TradeSide.LONG),
                       snapshot_refs=[close_ref])

        snapshot = run.trades[0].indicator_snapshot
        assert snapshot['sma(period=1)'] == pytest.approx(103.0)
        # Not enough history for these yet
        assert 'SMA_200' not in snapshot
        assert 'RSI_14' not in snapshot

    def test_snapshot_is_read_only(self, bar_factory, spike_closes, spike_signal,
                                   small_config, wide_exits):
        run = simulate(bar_factory(spike_closes), small_config, wide_exits, spike_signal)
        with pytest.raises(TypeError):
            run.trades[0].indicator_snapshot['x'] = 1.0

    def test_snapshots_disabled(self, bar_factory, spike_closes, spike_signal, wide_exits):
        config = BacktestConfig(warmup_bars=5, record_snapshots=False)
        run = simulate(bar_factory(spike_closes), config, wide_exits, spike_signal)
        assert dict(run.trades[0].indicator_snapshot) == {}


class TestExitEvaluator:
    """TP/SL level computation."""

    def test_pip_offsets_follow_price_heuristic(self):
        exits = ExitSettings(PriceOffset(20, OffsetUnit.PIPS), PriceOffset(10, OffsetUnit.PIPS))
        evaluator = ExitEvaluator(BacktestConfig(), exits, 60)

        tp, sl = evaluator.levels(150.0, TradeSide.LONG)
        assert tp == pytest.approx(150.20)
        assert sl == pytest.approx(149.90)

        tp, sl = evaluator.levels(1.1000, TradeSide.SHORT)
        assert tp == pytest.approx(1.0980)
        assert sl == pytest.approx(1.1010)

    def test_no_exit_inside_band(self, tight_exits):
        evaluator = ExitEvaluator(BacktestConfig(), tight_exits, 60)
        pos = OpenPosition(TradeSide.LONG, None, 100.0, 0, 101.0, 99.0)
        result = evaluator.evaluate(pos, 3, 100.5, 99.5, 100.0)
        assert not result.should_exit
        assert result.reason is None
