"""
Exit Condition Evaluator

Evaluates the fixed exit rules for an open position against one bar,
in strict priority order. First matching condition wins.

Priority Order:
1. TAKE_PROFIT - long: high >= tp, short: low <= tp (fills at tp)
2. STOP_LOSS   - long: low <= sl,  short: high >= sl (fills at sl)
3. TIMEOUT     - bars held * bar minutes >= max holding minutes (fills at close)

The optional signal exit is evaluated by the simulator after these,
since it needs the condition evaluator.
"""

import logging
from typing import Optional, Tuple

from backtesting.config import BacktestConfig, ExitSettings
from backtesting.models import ExitReason, TradeSide
from backtesting.simulation.position import OpenPosition

logger = logging.getLogger(__name__)


class ExitEvalResult:
    """Result of exit condition evaluation."""

    __slots__ = ('should_exit', 'reason', 'price', 'details')

    def __init__(
        self,
        should_exit: bool = False,
        reason: Optional[ExitReason] = None,
        price: Optional[float] = None,
        details: str = "",
    ):
        self.should_exit = should_exit
        self.reason = reason
        self.price = price
        self.details = details


NO_EXIT = ExitEvalResult()


class ExitEvaluator:
    """
    Evaluates TP/SL/timeout for simulated positions.

    Usage:
        evaluator = ExitEvaluator(config, exit_settings, interval_minutes=60)
        tp, sl = evaluator.levels(entry_price, TradeSide.LONG)
        result = evaluator.evaluate(position, bar_index, high, low, close)
    """

    def __init__(
        self,
        config: BacktestConfig,
        exit_settings: ExitSettings,
        interval_minutes: int,
    ):
        self._config = config
        self._settings = exit_settings
        self._interval_minutes = interval_minutes

    def levels(self, entry_price: float, side: TradeSide) -> Tuple[float, float]:
        """
        Take-profit and stop-loss prices for a new position.

        Returns:
            (take_profit_price, stop_loss_price)
        """
        pip = self._config.pip_size(entry_price)
        tp_distance = self._settings.take_profit.distance(entry_price, pip)
        sl_distance = self._settings.stop_loss.distance(entry_price, pip)
        if side is TradeSide.LONG:
            return entry_price + tp_distance, entry_price - sl_distance
        return entry_price - tp_distance, entry_price + sl_distance

    def evaluate(
        self,
        pos: OpenPosition,
        bar_index: int,
        bar_high: float,
        bar_low: float,
        bar_close: float,
    ) -> ExitEvalResult:
        """
        Evaluate exit conditions for a position against a bar.

        Args:
            pos: The open position
            bar_index: Index of the bar being evaluated
            bar_high: Bar high price
            bar_low: Bar low price
            bar_close: Bar close price

        Returns:
            ExitEvalResult with should_exit=True if any condition met
        """
        # ── Priority 1: TAKE_PROFIT ─────────────────────────────────
        if self._check_take_profit(pos, bar_high, bar_low):
            return ExitEvalResult(True, ExitReason.TAKE_PROFIT, pos.take_profit_price,
                f"Take profit {pos.take_profit_price:.5f} reached")

        # ── Priority 2: STOP_LOSS ───────────────────────────────────
        if self._check_stop_loss(pos, bar_high, bar_low):
            return ExitEvalResult(True, ExitReason.STOP_LOSS, pos.stop_loss_price,
                f"Stop loss {pos.stop_loss_price:.5f} reached")

        # ── Priority 3: TIMEOUT ─────────────────────────────────────
        max_minutes = self._settings.max_holding_minutes
        if max_minutes is not None:
            held_minutes = pos.bars_held(bar_index) * self._interval_minutes
            if held_minutes >= max_minutes:
                return ExitEvalResult(True, ExitReason.TIMEOUT, bar_close,
                    f"Held {held_minutes} min >= max {max_minutes} min")

        return NO_EXIT

    @staticmethod
    def _check_take_profit(pos: OpenPosition, bar_high: float, bar_low: float) -> bool:
        if pos.is_long:
            return bar_high >= pos.take_profit_price
        return bar_low <= pos.take_profit_price

    @staticmethod
    def _check_stop_loss(pos: OpenPosition, bar_high: float, bar_low: float) -> bool:
        if pos.is_long:
            return bar_low <= pos.stop_loss_price
        return bar_high >= pos.stop_loss_price
