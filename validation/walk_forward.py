"""
Strategy Validation - Walk-Forward Validator

Partitions a date range into sequential folds, each made of an in-sample
window followed directly by an out-of-sample window, backtests both
windows independently and scores how far the two win rates drift apart.

Key Features:
- Calendar-day folds: total_days // split_count days per fold
- Default 70/30 in-sample/out-of-sample split, or explicit day counts
- Splits run concurrently on a bounded thread pool
- Fail-fast by default; SKIP policy counts failed splits instead
- Cooperative cancellation between splits
- Overfit score over splits that traded in both windows; windows with
  no bars count as zero-trade windows

Usage:
    from validation.walk_forward import WalkForwardValidator, WalkForwardRequest

    validator = WalkForwardValidator(engine)
    results = validator.validate(
        WalkForwardRequest('s-1', date(2024, 1, 1), date(2024, 4, 9), split_count=5)
    )
    print(results.summary())
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

import numpy as np

from backtesting.analytics.performance import ResultSummary, summarize
from backtesting.engine import BacktestEngine, validate_date_range
from backtesting.errors import InvalidRequestError, NoDataError, ValidationRunError
from backtesting.models import BacktestRequest, Strategy
from validation.config import WalkForwardConfig
from validation.parallel import CancellationToken, run_parallel
from validation.results import Period, WalkForwardResults, WalkForwardSplit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalkForwardRequest:
    """
    Walk-forward job description.

    in_sample_days / out_of_sample_days override the ratio split when given.
    """
    strategy_id: str
    start_date: date
    end_date: date
    split_count: int = 4
    in_sample_days: Optional[int] = None
    out_of_sample_days: Optional[int] = None
    stage1_timeframe: str = '1h'
    initial_capital: float = 1_000_000.0
    lot_size: float = 10_000.0
    leverage: float = 25.0

    def backtest_request(self, period: Period) -> BacktestRequest:
        """Stage 1 request for one window."""
        return BacktestRequest(
            strategy_id=self.strategy_id,
            start_date=period.start,
            end_date=period.end,
            stage1_timeframe=self.stage1_timeframe,
            run_stage2=False,
            initial_capital=self.initial_capital,
            lot_size=self.lot_size,
            leverage=self.leverage,
        )


@dataclass(frozen=True)
class SplitWindow:
    """
    In-sample and out-of-sample windows for a single fold.

    Attributes:
        split_number: Sequential fold identifier (1-indexed)
        in_sample: In-sample calendar window
        out_of_sample: Out-of-sample window, starting the day after in-sample ends
    """
    split_number: int
    in_sample: Period
    out_of_sample: Period


class WalkForwardValidator:
    """
    Walk-forward validation for overfitting detection.

    Example:
        validator = WalkForwardValidator(engine, WalkForwardConfig(max_workers=2))
        results = validator.validate(request)

        if results.overfit_warning:
            print("In-sample and out-of-sample win rates diverge")
    """

    def __init__(self, engine: BacktestEngine, config: Optional[WalkForwardConfig] = None):
        """
        Initialize walk-forward validator.

        Args:
            engine: Orchestrator used for every window backtest
            config: Walk-forward configuration. Uses defaults if None.
        """
        self.engine = engine
        self.config = config or WalkForwardConfig()

    def validate(
        self,
        request: WalkForwardRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> WalkForwardResults:
        """
        Run walk-forward validation.

        Args:
            request: Strategy, date range and split layout
            cancel_token: Optional cooperative cancellation

        Returns:
            WalkForwardResults with one split per fold

        Raises:
            InvalidRequestError: Bad layout, date range or strategy
            ValidationRunError: A split failed under FAIL_FAST
            OperationCancelled: Cancelled between splits
        """
        issues = self.config.validate()
        if issues:
            raise InvalidRequestError('; '.join(issues))

        strategy = self.engine.load_strategy(request.strategy_id)
        windows = self.generate_windows(
            request.start_date, request.end_date, request.split_count,
            request.in_sample_days, request.out_of_sample_days,
        )
        # Reject bad capital/timeframe/strategy settings before any split runs
        self.engine.validate_request(
            request.backtest_request(Period(request.start_date, request.end_date)), strategy,
        )

        logger.info(f"Starting walk-forward validation: {strategy.strategy_id}, "
                    f"{len(windows)} splits over {request.start_date}..{request.end_date}")

        outcome = run_parallel(
            lambda i: self._run_split(strategy, windows[i], request),
            len(windows),
            max_workers=self.config.max_workers,
            failure_policy=self.config.failure_policy,
            cancel_token=cancel_token,
            label='walk-forward split',
        )

        results = self._aggregate_results(strategy.strategy_id, outcome.results,
                                          outcome.failed_count)
        logger.info(f"Walk-forward complete: overfit score {results.overfit_score:.3f}"
                    f"{' (WARNING)' if results.overfit_warning else ''}")
        return results

    def generate_windows(
        self,
        start: date,
        end: date,
        split_count: int,
        in_sample_days: Optional[int] = None,
        out_of_sample_days: Optional[int] = None,
    ) -> List[SplitWindow]:
        """
        Lay out contiguous, non-overlapping folds over [start, end].

        Raises:
            InvalidRequestError: Range too short for the requested layout
        """
        issues = validate_date_range(start, end)
        if not self.config.min_splits <= split_count <= self.config.max_splits:
            issues.append(f"split_count must be between {self.config.min_splits} "
                          f"and {self.config.max_splits}, got {split_count}")
        if issues:
            raise InvalidRequestError('; '.join(issues))

        total_days = (end - start).days + 1
        days_per_split = total_days // split_count

        if in_sample_days is None and out_of_sample_days is None:
            in_days = int(round(days_per_split * self.config.in_sample_ratio))
            out_days = days_per_split - in_days
        else:
            in_days = in_sample_days if in_sample_days is not None else days_per_split - out_of_sample_days
            out_days = out_of_sample_days if out_of_sample_days is not None else days_per_split - in_sample_days

        if in_days < self.config.min_in_sample_days or out_days < self.config.min_out_of_sample_days:
            raise InvalidRequestError(
                f"Windows too short: {in_days} in-sample / {out_days} out-of-sample days "
                f"(minimum {self.config.min_in_sample_days} / {self.config.min_out_of_sample_days})"
            )
        if split_count * (in_days + out_days) > total_days:
            raise InvalidRequestError(
                f"{split_count} splits of {in_days}+{out_days} days do not fit "
                f"in {total_days} days"
            )

        windows = []
        fold_start = start
        for split_number in range(1, split_count + 1):
            in_end = fold_start + timedelta(days=in_days - 1)
            out_start = in_end + timedelta(days=1)
            out_end = out_start + timedelta(days=out_days - 1)
            windows.append(SplitWindow(
                split_number=split_number,
                in_sample=Period(fold_start, in_end),
                out_of_sample=Period(out_start, out_end),
            ))
            fold_start = out_end + timedelta(days=1)
        return windows

    def _run_split(
        self,
        strategy: Strategy,
        window: SplitWindow,
        request: WalkForwardRequest,
    ) -> WalkForwardSplit:
        """Backtest both windows of one fold."""
        in_summary = self._run_window(window, 'in-sample', window.in_sample, request)
        out_summary = self._run_window(window, 'out-of-sample', window.out_of_sample, request)

        logger.debug(f"Split {window.split_number}: IS {in_summary.win_rate:.1%} "
                     f"({in_summary.total_trades} trades), OOS "
                     f"{out_summary.win_rate:.1%} ({out_summary.total_trades} trades)")

        return WalkForwardSplit(
            split_number=window.split_number,
            in_sample_period=window.in_sample,
            out_of_sample_period=window.out_of_sample,
            in_sample_summary=in_summary,
            out_of_sample_summary=out_summary,
        )

    def _run_window(
        self,
        window: SplitWindow,
        label: str,
        period: Period,
        request: WalkForwardRequest,
    ) -> ResultSummary:
        """
        Backtest one window. A window without bars (weekend, holiday, data gap)
        counts as a zero-trade window and is left out of the overfit score.
        """
        try:
            result = self.engine.run(request.backtest_request(period),
                                     persist=self.config.persist_split_results)
        except NoDataError as exc:
            logger.warning(f"Split {window.split_number} {label} window has no data: {exc}")
            return summarize([], request.initial_capital)

        if not result.is_completed:
            raise ValidationRunError(
                f"Split {window.split_number} {label} backtest failed: {result.error_message}"
            )
        return result.summary

    def _aggregate_results(
        self,
        strategy_id: str,
        splits: List[WalkForwardSplit],
        failed_count: int = 0,
    ) -> WalkForwardResults:
        """Aggregate per-split summaries into run-level scores."""
        if not splits:
            return self._create_empty_results(strategy_id, failed_count)

        is_rates = np.array([s.in_sample_summary.win_rate for s in splits])
        oos_rates = np.array([s.out_of_sample_summary.win_rate for s in splits])
        diffs = is_rates - oos_rates

        # A window without trades reports win rate 0 and has nothing to compare
        scored = np.array([
            s.in_sample_summary.total_trades > 0 and s.out_of_sample_summary.total_trades > 0
            for s in splits
        ])
        overfit_score = float(np.mean(np.abs(diffs[scored]))) if scored.any() else 0.0

        return WalkForwardResults(
            strategy_id=strategy_id,
            splits=sorted(splits, key=lambda s: s.split_number),
            overfit_score=overfit_score,
            overfit_warning=overfit_score >= self.config.overfit_warning_threshold,
            overfit_warning_threshold=self.config.overfit_warning_threshold,
            avg_in_sample_win_rate=float(np.mean(is_rates)),
            avg_out_of_sample_win_rate=float(np.mean(oos_rates)),
            avg_win_rate_diff=float(np.mean(diffs)),
            total_in_sample_trades=sum(s.in_sample_summary.total_trades for s in splits),
            total_out_of_sample_trades=sum(s.out_of_sample_summary.total_trades for s in splits),
            scored_split_count=int(scored.sum()),
            failed_count=failed_count,
        )

    def _create_empty_results(self, strategy_id: str, failed_count: int) -> WalkForwardResults:
        """Create empty results when every split was skipped."""
        logger.warning(f"Walk-forward produced no splits ({failed_count} failed)")
        return WalkForwardResults(
            strategy_id=strategy_id,
            overfit_warning_threshold=self.config.overfit_warning_threshold,
            failed_count=failed_count,
        )
