"""
Backtest Engine - Two-Stage Orchestrator

Coordinates one backtest run:
1. Validate the request and strategy (input errors raise immediately)
2. Stage 1: fetch the coarse timeframe, simulate, summarize
3. Stage 2 (optional, only when Stage 1 traded): same strategy and range
   on 1-minute bars; its result replaces Stage 1
4. Persist the final result (completed runs only)

A run is atomic. Any failure after validation (data fetch, simulation,
persistence) produces a BacktestResult with status FAILED and nothing is
stored.

Usage:
    from backtesting.engine import BacktestEngine

    engine = BacktestEngine(provider, strategies, result_store=store)
    result = engine.run(BacktestRequest('s-1', date(2024, 1, 1), date(2024, 3, 31)))
    print(result.summary_text())
"""

import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional

from backtesting.analytics.performance import summarize
from backtesting.bars import validate_bars
from backtesting.conditions import iter_indicator_refs, validate_tree
from backtesting.config import (
    STAGE1_TIMEFRAMES,
    STAGE2_TIMEFRAME,
    BacktestConfig,
    timeframe_minutes,
)
from backtesting.data_providers.base import HistoricalDataProvider
from backtesting.errors import InvalidRequestError, NoDataError
from backtesting.indicators import DEFAULT_LIBRARY, IndicatorLibrary
from backtesting.models import BacktestRequest, Strategy
from backtesting.results import BacktestResult
from backtesting.signals import ConditionSignal
from backtesting.simulation.position_simulator import PositionSimulator
from backtesting.storage import ResultStore, StrategyRepository

logger = logging.getLogger(__name__)


class BacktestEngine:
    """
    Top-level backtest orchestrator.

    Stateless between runs: every run builds its own simulator and
    evaluation context, so one engine can serve concurrent callers.
    """

    def __init__(
        self,
        data_provider: HistoricalDataProvider,
        strategies: StrategyRepository,
        result_store: Optional[ResultStore] = None,
        config: Optional[BacktestConfig] = None,
        library: IndicatorLibrary = DEFAULT_LIBRARY,
    ):
        self._provider = data_provider
        self._strategies = strategies
        self._store = result_store
        self._config = config or BacktestConfig()
        self._library = library

    @property
    def config(self) -> BacktestConfig:
        return self._config

    def run(self, request: BacktestRequest, persist: bool = True) -> BacktestResult:
        """
        Execute a (possibly two-stage) backtest.

        Args:
            request: What to run
            persist: Store the completed result when a result store is set

        Returns:
            Completed or failed BacktestResult

        Raises:
            InvalidRequestError: Bad request, unknown strategy or empty data
        """
        strategy = self.load_strategy(request.strategy_id)
        config = self.validate_request(request, strategy)

        logger.info("Running backtest: %s v%d %s (%s to %s, stage2=%s)",
                    strategy.strategy_id, strategy.version_number,
                    request.stage1_timeframe, request.start_date,
                    request.end_date, request.run_stage2)

        try:
            result = self.run_stage(
                strategy, request.start_date, request.end_date,
                request.stage1_timeframe, config, stage=1,
            )
            if request.run_stage2 and result.trades:
                logger.info("Stage 1 produced %d trades, re-running on %s",
                            len(result.trades), STAGE2_TIMEFRAME)
                result = self.run_stage(
                    strategy, request.start_date, request.end_date,
                    STAGE2_TIMEFRAME, config, stage=2,
                )

            if persist and self._store is not None:
                self._store.save(result)
        except InvalidRequestError:
            raise
        except Exception as exc:
            logger.exception("Backtest failed for strategy %s", strategy.strategy_id)
            return BacktestResult.failed(
                strategy.strategy_id, strategy.version_number,
                request.stage1_timeframe, 1, f"{type(exc).__name__}: {exc}",
            )

        logger.info("Backtest complete: %s stage %d, %d trades, win rate %.1f%%",
                    strategy.strategy_id, result.stage, result.summary.total_trades,
                    result.summary.win_rate * 100)
        return result

    def run_stage(
        self,
        strategy: Strategy,
        start: date,
        end: date,
        timeframe: str,
        config: BacktestConfig,
        stage: int = 1,
    ) -> BacktestResult:
        """
        Fetch, simulate and summarize one timeframe.

        Raises:
            NoDataError: Provider returned no bars
            InvalidRequestError: Provider returned a malformed series
        """
        fetch = self._provider.fetch_bars(strategy.symbol, timeframe, start, end)
        if fetch.is_empty:
            raise NoDataError(
                f"No bars for {strategy.symbol} {timeframe} between {start} and {end}"
            )
        if fetch.coverage_ratio < config.coverage_warning_ratio:
            logger.warning("Low data coverage for %s %s: %.0f%% (source %s)",
                           strategy.symbol, timeframe, fetch.coverage_ratio * 100,
                           fetch.data_source)

        bars = validate_bars(fetch.bars)
        simulator = PositionSimulator(
            config, strategy.exit_settings, timeframe_minutes(timeframe), self._library,
        )
        run = simulator.run(
            bars,
            ConditionSignal(strategy.entry_condition, strategy.side),
            exit_condition=strategy.exit_condition,
            snapshot_refs=iter_indicator_refs(strategy.entry_condition),
        )
        summary = summarize(run.trades, config.initial_capital,
                            run.stopped_reason, run.final_capital)

        logger.debug("Stage %d %s: %d bars, %d trades, stopped=%s",
                     stage, timeframe, len(bars), len(run.trades), run.stopped_reason.value)

        return BacktestResult(
            strategy_id=strategy.strategy_id,
            version_number=strategy.version_number,
            timeframe=timeframe,
            stage=stage,
            summary=summary,
            trades=run.trades,
        )

    def load_strategy(self, strategy_id: str) -> Strategy:
        strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise InvalidRequestError(f"Unknown strategy: {strategy_id}")
        return strategy

    def validate_request(self, request: BacktestRequest, strategy: Strategy) -> BacktestConfig:
        """
        Check a request against its strategy and build the run config.

        Raises:
            InvalidRequestError: With every issue found
        """
        config = replace(
            self._config,
            initial_capital=request.initial_capital,
            lot_size=request.lot_size,
            leverage=request.leverage,
        )
        issues: List[str] = list(config.validate())
        issues.extend(validate_date_range(request.start_date, request.end_date,
                                          config.max_range_days))
        if request.stage1_timeframe not in STAGE1_TIMEFRAMES:
            issues.append(f"Unsupported stage 1 timeframe: {request.stage1_timeframe!r} "
                          f"(use one of {', '.join(STAGE1_TIMEFRAMES)})")
        issues.extend(strategy.exit_settings.validate())
        issues.extend(validate_tree(strategy.entry_condition, self._library))
        if strategy.exit_condition is not None:
            issues.extend(validate_tree(strategy.exit_condition, self._library))

        if issues:
            raise InvalidRequestError('; '.join(issues))
        return config


def validate_date_range(
    start: Optional[date],
    end: Optional[date],
    max_range_days: Optional[int] = None,
) -> List[str]:
    """Validate an inclusive date range and return list of issues."""
    if start is None or end is None:
        return ['start_date and end_date are required']
    issues = []
    if start > end:
        issues.append(f'start_date {start} is after end_date {end}')
    elif max_range_days is not None and (end - start).days + 1 > max_range_days:
        issues.append(f'date range of {(end - start).days + 1} days exceeds '
                      f'the limit of {max_range_days}')
    return issues
