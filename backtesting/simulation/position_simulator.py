"""
Position Simulator - single-position state machine over a bar series.

States: Flat (no position) and Open (one OpenPosition). No pyramiding.

Per bar i, starting after the warm-up offset:
1. Capital floor: running capital <= bankruptcy threshold halts the run
2. Open  -> exits checked in priority order (TP, SL, timeout, signal)
3. Flat  -> entry signal at bar i fills at bars[i+1].open

The bar that closes a position is never also a signal bar. An open
position left at the end of data is closed at the last close as a
timeout.

Usage:
    simulator = PositionSimulator(config, exit_settings, interval_minutes=60)
    run = simulator.run(bars, ConditionSignal(tree, TradeSide.LONG))
    print(len(run.trades), run.stopped_reason)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from backtesting.conditions import (
    ConditionNode,
    EvaluationContext,
    IndicatorRef,
    evaluate,
)
from backtesting.config import BacktestConfig, ExitSettings
from backtesting.exits.exit_evaluator import ExitEvaluator
from backtesting.indicators import DEFAULT_LIBRARY, IndicatorLibrary, compute_preset_series
from backtesting.models import (
    ExitReason,
    StoppedReason,
    TradeEvent,
    TradeSide,
    calculate_pnl,
)
from backtesting.signals import EntrySignal
from backtesting.simulation.position import OpenPosition

logger = logging.getLogger(__name__)


@dataclass
class SimulationRun:
    """Raw outcome of one simulation."""
    trades: List[TradeEvent] = field(default_factory=list)
    stopped_reason: StoppedReason = StoppedReason.COMPLETED
    final_capital: float = 0.0


class PositionSimulator:
    """
    Walks a validated bar series and emits TradeEvents.

    One instance can run many simulations; all per-run state lives in
    locals and the per-run EvaluationContext.
    """

    def __init__(
        self,
        config: BacktestConfig,
        exit_settings: ExitSettings,
        interval_minutes: int,
        library: IndicatorLibrary = DEFAULT_LIBRARY,
    ):
        self._config = config
        self._exit_settings = exit_settings
        self._interval_minutes = interval_minutes
        self._library = library
        self._exits = ExitEvaluator(config, exit_settings, interval_minutes)

    def run(
        self,
        bars: pd.DataFrame,
        entry_signal: EntrySignal,
        exit_condition: Optional[ConditionNode] = None,
        snapshot_refs: Iterable[IndicatorRef] = (),
    ) -> SimulationRun:
        """
        Simulate one strategy over the bars.

        Args:
            bars: Validated OHLCV DataFrame
            entry_signal: Returns the side to open at bar i, or None
            exit_condition: Optional tree closing the position at bar close
            snapshot_refs: Extra indicators to record at entry (on top of presets)

        Returns:
            SimulationRun with trades, stop reason and final capital
        """
        config = self._config
        n = len(bars)
        capital = config.initial_capital
        threshold = config.bankruptcy_threshold
        warmup = config.warmup_bars

        if n <= warmup + 1:
            logger.debug("Only %d bars for warm-up of %d, no trades possible", n, warmup)
            return SimulationRun(final_capital=capital)

        ctx = EvaluationContext(bars, self._library)
        opens = bars['Open'].to_numpy(dtype=float)
        highs = bars['High'].to_numpy(dtype=float)
        lows = bars['Low'].to_numpy(dtype=float)
        closes = bars['Close'].to_numpy(dtype=float)
        index = bars.index
        snapshot_refs = list(snapshot_refs)
        presets: Optional[Dict[str, np.ndarray]] = None

        trades: List[TradeEvent] = []
        position: Optional[OpenPosition] = None
        stopped_reason = StoppedReason.COMPLETED

        for i in range(warmup, n):
            # A ruined account cannot open new positions
            if capital <= threshold:
                stopped_reason = StoppedReason.BANKRUPTCY
                break

            if position is not None:
                result = self._exits.evaluate(position, i, highs[i], lows[i], closes[i])
                reason, exit_price = result.reason, result.price
                if (
                    not result.should_exit
                    and exit_condition is not None
                    and position.bars_held(i) >= 1
                    and evaluate(exit_condition, ctx.at(i))
                ):
                    reason, exit_price = ExitReason.SIGNAL, closes[i]

                if reason is not None:
                    trade = self._close(position, index[i], i, exit_price, reason)
                    trades.append(trade)
                    capital += trade.pnl
                    position = None
                    if capital <= threshold:
                        stopped_reason = StoppedReason.BANKRUPTCY
                        logger.debug("Capital %.2f at or below floor %.2f after %d trades",
                                     capital, threshold, len(trades))
                        break
                continue

            if i + 1 >= n:
                break

            side = entry_signal(ctx.at(i))
            if side is None:
                continue

            entry_index = i + 1
            entry_price = float(opens[entry_index])
            tp_price, sl_price = self._exits.levels(entry_price, side)

            snapshot: Dict[str, float] = {}
            if config.record_snapshots:
                if presets is None:
                    presets = compute_preset_series(bars, self._library)
                snapshot = self._snapshot(ctx, presets, snapshot_refs, entry_index)

            position = OpenPosition(
                side=side,
                entry_time=index[entry_index],
                entry_price=entry_price,
                entry_bar_index=entry_index,
                take_profit_price=tp_price,
                stop_loss_price=sl_price,
                indicator_snapshot=snapshot,
            )

        if position is not None:
            last = n - 1
            trade = self._close(position, index[last], last, closes[last], ExitReason.TIMEOUT)
            trades.append(trade)
            capital += trade.pnl
            if capital <= threshold:
                stopped_reason = StoppedReason.BANKRUPTCY

        return SimulationRun(
            trades=trades,
            stopped_reason=stopped_reason,
            final_capital=capital,
        )

    def _close(
        self,
        pos: OpenPosition,
        exit_time,
        exit_index: int,
        exit_price: float,
        reason: ExitReason,
    ) -> TradeEvent:
        lot_size = self._config.lot_size
        pnl = calculate_pnl(pos.side, pos.entry_price, exit_price, lot_size)
        margin = self._config.required_margin(pos.entry_price)
        pnl_percent = pnl / margin * 100.0 if margin > 0 else 0.0

        logger.debug("%s %s @ %.5f -> %.5f (%s) pnl=%.2f",
                     pos.side.value, pos.entry_time, pos.entry_price,
                     exit_price, reason.value, pnl)

        return TradeEvent(
            entry_time=pos.entry_time,
            entry_price=pos.entry_price,
            exit_time=exit_time,
            exit_price=float(exit_price),
            side=pos.side,
            lot_size=lot_size,
            pnl=pnl,
            pnl_percent=pnl_percent,
            exit_reason=reason,
            indicator_snapshot=pos.indicator_snapshot,
            entry_bar_index=pos.entry_bar_index,
            exit_bar_index=exit_index,
        )

    @staticmethod
    def _snapshot(
        ctx: EvaluationContext,
        presets: Dict[str, np.ndarray],
        refs: List[IndicatorRef],
        bar_index: int,
    ) -> Dict[str, float]:
        """Indicator values at the entry bar, NaNs dropped."""
        values = {key: float(series[bar_index]) for key, series in presets.items()}
        for ref in refs:
            values[ctx.label(ref)] = ctx.value(ref, bar_index)
        return {key: value for key, value in values.items() if not np.isnan(value)}
