"""
Strategy Validation - Monte Carlo Baseliner

Answers "is this strategy better than entering at random?". Each
iteration replaces the entry rule with a random process (enter with a
fixed probability on each eligible flat bar) and runs it through the
same PositionSimulator and summarize() as real strategies, so TP/SL and
timeout semantics are shared code.

Key Features:
- Distribution per metric: mean, median, std, min, max, percentiles and a
  fixed-bin histogram
- Percentile rank of the real strategy per metric and an overall band
  (excellent / good / average / poor / very_poor)
- Per-iteration random streams spawned from one SeedSequence, so a seeded
  run reproduces exactly regardless of thread scheduling
- Iterations run on a bounded thread pool with cooperative cancellation

Usage:
    from validation.monte_carlo import MonteCarloBaseliner, MonteCarloRequest
    from validation.config import MonteCarloConfig

    baseliner = MonteCarloBaseliner(MonteCarloConfig(seed=42))
    results = baseliner.run(request, provider, actual=backtest_result.summary)
    print(results.summary())
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from backtesting.analytics.performance import ResultSummary, summarize
from backtesting.bars import validate_bars
from backtesting.config import BacktestConfig, ExitSettings, timeframe_minutes
from backtesting.data_providers.base import HistoricalDataProvider
from backtesting.engine import validate_date_range
from backtesting.errors import InvalidRequestError, NoDataError
from backtesting.indicators import DEFAULT_LIBRARY, IndicatorLibrary
from backtesting.models import TradeSide
from backtesting.signals import RandomSignal
from backtesting.simulation.position_simulator import PositionSimulator
from validation.config import MonteCarloConfig
from validation.parallel import CancellationToken, run_parallel
from validation.results import (
    Assessment,
    DistributionStats,
    HistogramBin,
    MetricComparison,
    MonteCarloComparison,
    MonteCarloResults,
)

logger = logging.getLogger(__name__)

MIN_BARS = 10

# Metrics compared against the baseline; drawdown is the only lower-is-better one
METRICS = ('win_rate', 'profit_factor', 'max_drawdown_rate', 'net_profit_rate')
LOWER_IS_BETTER = frozenset({'max_drawdown_rate'})

# (minimum average percentile, band, comment), best first
ASSESSMENT_BANDS = (
    (90.0, Assessment.EXCELLENT,
     'Strategy far outperforms random entries; the edge is likely statistically meaningful.'),
    (75.0, Assessment.GOOD,
     'Strategy performs better than random entries; an edge is likely.'),
    (50.0, Assessment.AVERAGE,
     'Strategy performs about as well as random entries; the edge is unclear.'),
    (25.0, Assessment.POOR,
     'Strategy underperforms random entries; consider revisiting its parameters.'),
    (0.0, Assessment.VERY_POOR,
     'Strategy far underperforms random entries; the approach needs a fundamental review.'),
)


@dataclass(frozen=True)
class MonteCarloRequest:
    """Data window and exit-rule shape for a random-entry baseline."""
    symbol: str
    start_date: date
    end_date: date
    timeframe: str
    exit_settings: ExitSettings
    iterations: int = 1000
    side: TradeSide = TradeSide.LONG
    initial_capital: float = 1_000_000.0
    lot_size: float = 10_000.0
    leverage: float = 25.0


class MonteCarloBaseliner:
    """
    Random-entry Monte Carlo baseline.

    Example:
        baseliner = MonteCarloBaseliner(MonteCarloConfig(seed=7, max_workers=4))
        results = baseliner.simulate(bars, exit_settings, interval_minutes=60,
                                     iterations=500, actual=summary)
        print(results.comparison.assessment)
    """

    def __init__(
        self,
        config: Optional[MonteCarloConfig] = None,
        backtest_config: Optional[BacktestConfig] = None,
        library: IndicatorLibrary = DEFAULT_LIBRARY,
    ):
        """
        Initialize Monte Carlo baseliner.

        Args:
            config: Monte Carlo configuration. Uses defaults if None.
            backtest_config: Simulation parameters shared with real backtests
            library: Indicator library handed to the simulator
        """
        self.config = config or MonteCarloConfig()
        self.backtest_config = backtest_config or BacktestConfig()
        self.library = library

    def run(
        self,
        request: MonteCarloRequest,
        data_provider: HistoricalDataProvider,
        actual: Optional[ResultSummary] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> MonteCarloResults:
        """
        Fetch the request's bars and simulate the baseline.

        Raises:
            InvalidRequestError: Bad range, timeframe, iteration count or too few bars
        """
        issues = validate_date_range(request.start_date, request.end_date)
        if issues:
            raise InvalidRequestError('; '.join(issues))
        try:
            interval = timeframe_minutes(request.timeframe)
        except ValueError as e:
            raise InvalidRequestError(str(e)) from e

        fetch = data_provider.fetch_bars(request.symbol, request.timeframe,
                                         request.start_date, request.end_date)
        if fetch.is_empty:
            raise NoDataError(
                f"No bars for {request.symbol} {request.timeframe} between "
                f"{request.start_date} and {request.end_date}"
            )

        backtest_config = replace(
            self.backtest_config,
            initial_capital=request.initial_capital,
            lot_size=request.lot_size,
            leverage=request.leverage,
        )
        return self.simulate(
            fetch.bars, request.exit_settings, interval, request.iterations,
            side=request.side, actual=actual, cancel_token=cancel_token,
            backtest_config=backtest_config,
        )

    def simulate(
        self,
        bars: pd.DataFrame,
        exit_settings: ExitSettings,
        interval_minutes: int,
        iterations: int,
        side: TradeSide = TradeSide.LONG,
        actual: Optional[ResultSummary] = None,
        cancel_token: Optional[CancellationToken] = None,
        backtest_config: Optional[BacktestConfig] = None,
    ) -> MonteCarloResults:
        """
        Run the random-entry simulations over pre-fetched bars.

        Args:
            bars: OHLCV DataFrame (validated here)
            exit_settings: TP/SL/timeout shape of the real strategy
            interval_minutes: Minutes per bar (for timeouts)
            iterations: Number of simulations
            side: Side of every random entry (ignored when config.random_side)
            actual: Real strategy summary to rank, if any
            cancel_token: Optional cooperative cancellation
            backtest_config: Overrides the baseliner's simulation parameters

        Returns:
            MonteCarloResults with distributions and optional comparison

        Raises:
            InvalidRequestError: Bad iteration count, config or data
            ValidationRunError: An iteration failed under FAIL_FAST
            OperationCancelled: Cancelled between iterations
        """
        issues = self.config.validate() + exit_settings.validate()
        allowed = self.config.allowed_iterations
        if iterations < 1 or (allowed is not None and iterations not in allowed):
            issues.append(f"iterations must be one of {allowed}, got {iterations}"
                          if allowed else f"iterations must be positive, got {iterations}")
        if issues:
            raise InvalidRequestError('; '.join(issues))

        bars = validate_bars(bars)
        if len(bars) < MIN_BARS:
            raise InvalidRequestError(f"Monte Carlo needs at least {MIN_BARS} bars, got {len(bars)}")

        seed = self.config.seed
        if seed is None:
            logger.warning("Monte Carlo run is unseeded; the baseline is not reproducible")
        streams = np.random.SeedSequence(seed).spawn(iterations)

        config = replace(backtest_config or self.backtest_config, record_snapshots=False)
        simulator = PositionSimulator(config, exit_settings, interval_minutes, self.library)
        entry_side = None if self.config.random_side else side
        probability = self.config.entry_probability

        def one_iteration(i: int) -> ResultSummary:
            signal = RandomSignal(np.random.default_rng(streams[i]), probability, entry_side)
            run = simulator.run(bars, signal)
            return summarize(run.trades, config.initial_capital,
                             run.stopped_reason, run.final_capital)

        logger.info(f"Starting Monte Carlo baseline: {iterations} iterations over {len(bars)} bars")

        outcome = run_parallel(
            one_iteration,
            iterations,
            max_workers=self.config.max_workers,
            failure_policy=self.config.failure_policy,
            cancel_token=cancel_token,
            label='monte carlo iteration',
            progress_interval=self.config.progress_interval,
        )
        simulations = outcome.results

        if not simulations:
            return self._create_empty_results(iterations, outcome.failed_count)

        statistics = {
            metric: self.calculate_distribution(self._metric_values(simulations, metric))
            for metric in METRICS
        }
        comparison = self.compare(actual, simulations) if actual is not None else None

        results = MonteCarloResults(
            iterations=iterations,
            simulations=simulations,
            statistics=statistics,
            comparison=comparison,
            seed=seed,
            reproducible=seed is not None,
            failed_count=outcome.failed_count,
        )
        if comparison is not None:
            logger.info(f"Monte Carlo complete: {comparison.assessment.value} "
                        f"(avg percentile {comparison.average_percentile:.1f})")
        else:
            logger.info(f"Monte Carlo complete: {len(simulations)} simulations")
        return results

    def calculate_distribution(self, values: Sequence[float]) -> DistributionStats:
        """
        Summary statistics and fixed-bin histogram of one metric.

        Percentiles use the lower-rank convention (sorted[floor(p/100 * (n-1))]).
        A degenerate distribution (min == max) gets bins 0.1 wide.
        """
        data = np.asarray(values, dtype=float)
        if data.size == 0:
            return DistributionStats()

        lo, hi = float(data.min()), float(data.max())
        bins = self.config.histogram_bins
        width = (hi - lo) / bins if hi > lo else 0.1
        edges = lo + width * np.arange(bins + 1)
        if hi > lo:
            edges[-1] = hi
        counts, _ = np.histogram(data, bins=edges)

        histogram = [
            HistogramBin(
                lower=float(edges[k]),
                upper=float(edges[k + 1]),
                count=int(counts[k]),
                percentage=float(counts[k]) / data.size * 100.0,
            )
            for k in range(bins)
        ]

        return DistributionStats(
            mean=float(data.mean()),
            median=float(np.median(data)),
            std=float(data.std()),
            min=lo,
            max=hi,
            percentiles={
                p: float(np.percentile(data, p, method='lower'))
                for p in self.config.percentiles
            },
            histogram=histogram,
        )

    def compare(
        self,
        actual: ResultSummary,
        simulations: List[ResultSummary],
    ) -> MonteCarloComparison:
        """
        Rank a real strategy's metrics inside the simulated distributions.

        A metric's percentile is the share of simulations strictly worse than
        the real value (for drawdown, worse means larger). The overall band
        comes from the mean of the four percentiles.
        """
        metrics: Dict[str, MetricComparison] = {}
        for metric in METRICS:
            value = self._metric_value(actual, metric)
            percentile = self.percentile_rank(
                value, self._metric_values(simulations, metric), metric in LOWER_IS_BETTER,
            )
            metrics[metric] = MetricComparison(
                actual=value,
                percentile=percentile,
                comment=f"Better than {percentile:.0f}% of random-entry runs",
            )

        average = float(np.mean([m.percentile for m in metrics.values()]))
        assessment, comment = classify_percentile(average)
        return MonteCarloComparison(
            metrics=metrics,
            average_percentile=average,
            assessment=assessment,
            assessment_comment=comment,
        )

    @staticmethod
    def percentile_rank(value: float, values: Sequence[float], lower_is_better: bool = False) -> float:
        """Percentage of `values` strictly worse than `value`."""
        data = np.asarray(values, dtype=float)
        if data.size == 0:
            return 0.0
        worse = data > value if lower_is_better else data < value
        return float(worse.sum()) / data.size * 100.0

    def _metric_value(self, summary: ResultSummary, metric: str) -> float:
        if metric == 'profit_factor':
            return summary.profit_factor.as_float(cap=self.config.profit_factor_cap)
        return float(getattr(summary, metric))

    def _metric_values(self, simulations: List[ResultSummary], metric: str) -> List[float]:
        return [self._metric_value(s, metric) for s in simulations]

    def _create_empty_results(self, iterations: int, failed_count: int) -> MonteCarloResults:
        """Create empty results when every iteration was skipped."""
        logger.warning(f"Monte Carlo produced no simulations ({failed_count} failed)")
        return MonteCarloResults(
            iterations=iterations,
            seed=self.config.seed,
            reproducible=self.config.seed is not None,
            failed_count=failed_count,
        )


def classify_percentile(average_percentile: float) -> Tuple[Assessment, str]:
    """Map an average percentile to (Assessment, comment)."""
    for threshold, assessment, comment in ASSESSMENT_BANDS:
        if average_percentile >= threshold:
            return assessment, comment
    return ASSESSMENT_BANDS[-1][1], ASSESSMENT_BANDS[-1][2]
