"""
Strategy Validation - Results Module

Defines result dataclasses for the walk-forward validator, the Monte
Carlo baseliner and the filter analyzer. Every result exposes to_dict()
for the persistence/transport layer and summary() for humans.

Usage:
    from validation.results import WalkForwardResults, MonteCarloResults

    print(wf_results.summary())
    payload = mc_results.to_dict()
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from backtesting.analytics.performance import ResultSummary


# =============================================================================
# WALK-FORWARD
# =============================================================================

@dataclass(frozen=True)
class Period:
    """Inclusive calendar-day window."""
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def to_dict(self) -> Dict[str, str]:
        return {'start': self.start.isoformat(), 'end': self.end.isoformat()}


@dataclass
class WalkForwardSplit:
    """
    One fold: an in-sample window followed directly by an out-of-sample window.

    Attributes:
        split_number: Sequential fold identifier (1-indexed)
        in_sample_period: In-sample window
        out_of_sample_period: Out-of-sample window
        in_sample_summary: Backtest summary on the in-sample window
        out_of_sample_summary: Backtest summary on the out-of-sample window
    """
    split_number: int
    in_sample_period: Period
    out_of_sample_period: Period
    in_sample_summary: ResultSummary
    out_of_sample_summary: ResultSummary

    @property
    def win_rate_diff(self) -> float:
        """In-sample minus out-of-sample win rate."""
        return self.in_sample_summary.win_rate - self.out_of_sample_summary.win_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            'split_number': self.split_number,
            'in_sample_period': self.in_sample_period.to_dict(),
            'out_of_sample_period': self.out_of_sample_period.to_dict(),
            'in_sample_summary': self.in_sample_summary.to_dict(),
            'out_of_sample_summary': self.out_of_sample_summary.to_dict(),
            'win_rate_diff': self.win_rate_diff,
        }


@dataclass
class WalkForwardResults:
    """
    Results from walk-forward validation.

    overfit_score is the mean absolute divergence between in-sample and
    out-of-sample win rate across the splits that traded in both windows
    (scored_split_count of them): low means robust, high means
    likely curve-fit.
    """
    strategy_id: str
    splits: List[WalkForwardSplit] = field(default_factory=list)
    overfit_score: float = 0.0
    overfit_warning: bool = False
    overfit_warning_threshold: float = 0.06
    avg_in_sample_win_rate: float = 0.0
    avg_out_of_sample_win_rate: float = 0.0
    avg_win_rate_diff: float = 0.0
    total_in_sample_trades: int = 0
    total_out_of_sample_trades: int = 0
    scored_split_count: int = 0
    failed_count: int = 0

    @property
    def split_count(self) -> int:
        return len(self.splits)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'strategy_id': self.strategy_id,
            'splits': [s.to_dict() for s in self.splits],
            'overfit_score': self.overfit_score,
            'overfit_warning': self.overfit_warning,
            'summary': {
                'split_count': self.split_count,
                'avg_in_sample_win_rate': self.avg_in_sample_win_rate,
                'avg_out_of_sample_win_rate': self.avg_out_of_sample_win_rate,
                'avg_win_rate_diff': self.avg_win_rate_diff,
                'total_in_sample_trades': self.total_in_sample_trades,
                'total_out_of_sample_trades': self.total_out_of_sample_trades,
                'scored_split_count': self.scored_split_count,
                'failed_count': self.failed_count,
            },
        }

    def summary(self) -> str:
        """Human-readable summary."""
        status = "OVERFIT WARNING" if self.overfit_warning else "OK"
        lines = [
            "=" * 60,
            f"WALK-FORWARD VALIDATION: {status}",
            "=" * 60,
            f"Splits:                {self.split_count}",
            f"Avg IS Win Rate:       {self.avg_in_sample_win_rate:.1%}",
            f"Avg OOS Win Rate:      {self.avg_out_of_sample_win_rate:.1%}",
            f"Overfit Score:         {self.overfit_score:.3f} "
            f"(warn at {self.overfit_warning_threshold:.3f}, "
            f"{self.scored_split_count} scored splits)",
            f"Trades IS / OOS:       {self.total_in_sample_trades} / "
            f"{self.total_out_of_sample_trades}",
            "",
            "Per Split:",
        ]
        for split in self.splits:
            lines.append(
                f"  #{split.split_number} IS {split.in_sample_period.start}..{split.in_sample_period.end} "
                f"{split.in_sample_summary.win_rate:.1%} | OOS "
                f"{split.out_of_sample_period.start}..{split.out_of_sample_period.end} "
                f"{split.out_of_sample_summary.win_rate:.1%}"
            )
        if self.failed_count:
            lines.append(f"Skipped failed splits: {self.failed_count}")
        lines.append("=" * 60)
        return "\n".join(lines)


# =============================================================================
# MONTE CARLO
# =============================================================================

class Assessment(str, Enum):
    """Qualitative band for the mean percentile rank."""
    EXCELLENT = 'excellent'
    GOOD = 'good'
    AVERAGE = 'average'
    POOR = 'poor'
    VERY_POOR = 'very_poor'


@dataclass(frozen=True)
class HistogramBin:
    lower: float
    upper: float
    count: int
    percentage: float

    def to_dict(self) -> Dict[str, float]:
        return {'lower': self.lower, 'upper': self.upper,
                'count': self.count, 'percentage': self.percentage}


@dataclass
class DistributionStats:
    """Distribution of one metric across simulations."""
    mean: float = 0.0
    median: float = 0.0
    std: float = 0.0
    min: float = 0.0
    max: float = 0.0
    percentiles: Dict[int, float] = field(default_factory=dict)
    histogram: List[HistogramBin] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mean': self.mean,
            'median': self.median,
            'std': self.std,
            'min': self.min,
            'max': self.max,
            'percentiles': {f'p{p}': v for p, v in self.percentiles.items()},
            'histogram': [b.to_dict() for b in self.histogram],
        }


@dataclass(frozen=True)
class MetricComparison:
    """Where the real strategy's metric sits in the simulated distribution."""
    actual: float
    percentile: float
    comment: str

    def to_dict(self) -> Dict[str, Any]:
        return {'actual': self.actual, 'percentile': self.percentile, 'comment': self.comment}


@dataclass
class MonteCarloComparison:
    """Percentile rank per metric plus an overall band."""
    metrics: Dict[str, MetricComparison] = field(default_factory=dict)
    average_percentile: float = 0.0
    assessment: Assessment = Assessment.VERY_POOR
    assessment_comment: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metrics': {k: v.to_dict() for k, v in self.metrics.items()},
            'average_percentile': self.average_percentile,
            'assessment': self.assessment.value,
            'assessment_comment': self.assessment_comment,
        }


@dataclass
class MonteCarloResults:
    """
    Results from a Monte Carlo random-entry baseline.

    simulations holds one ResultSummary per successful iteration, in
    iteration order. reproducible is False when no seed was supplied.
    """
    iterations: int
    simulations: List[ResultSummary] = field(default_factory=list)
    statistics: Dict[str, DistributionStats] = field(default_factory=dict)
    comparison: Optional[MonteCarloComparison] = None
    seed: Optional[int] = None
    reproducible: bool = False
    failed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'iterations': self.iterations,
            'seed': self.seed,
            'reproducible': self.reproducible,
            'failed_count': self.failed_count,
            'simulations': [s.to_dict() for s in self.simulations],
            'statistics': {k: v.to_dict() for k, v in self.statistics.items()},
            'comparison': self.comparison.to_dict() if self.comparison else None,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "MONTE CARLO BASELINE",
            "=" * 60,
            f"Iterations:            {self.iterations:,} "
            f"({'seed ' + str(self.seed) if self.reproducible else 'unseeded'})",
        ]
        for metric, dist in self.statistics.items():
            lines.append(
                f"{metric:<22} mean {dist.mean:.4f}  median {dist.median:.4f}  "
                f"p5 {dist.percentiles.get(5, 0.0):.4f}  p95 {dist.percentiles.get(95, 0.0):.4f}"
            )
        if self.comparison is not None:
            lines.append("")
            lines.append("Real Strategy Percentile Ranks:")
            for metric, comp in self.comparison.metrics.items():
                lines.append(f"  {metric:<20} {comp.percentile:5.1f}  {comp.comment}")
            lines.append(
                f"Assessment:            {self.comparison.assessment.value} "
                f"({self.comparison.average_percentile:.1f})"
            )
        if self.failed_count:
            lines.append(f"Skipped failed iterations: {self.failed_count}")
        lines.append("=" * 60)
        return "\n".join(lines)


# =============================================================================
# FILTER ANALYSIS
# =============================================================================

@dataclass(frozen=True)
class FilterCandidate:
    """
    How well one indicator separates winners from losers.

    Derived and read-only; it is not a rule until adopted as a FilterCondition.
    """
    indicator_key: str
    display_name: str
    win_average: float
    lose_average: float
    significance_score: float
    suggested_operator: str
    suggested_value: float
    win_samples: int
    lose_samples: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'indicator_key': self.indicator_key,
            'display_name': self.display_name,
            'win_average': self.win_average,
            'lose_average': self.lose_average,
            'significance_score': self.significance_score,
            'suggested_filter': {
                'operator': self.suggested_operator,
                'value': self.suggested_value,
            },
            'win_samples': self.win_samples,
            'lose_samples': self.lose_samples,
        }


@dataclass
class FilterImprovement:
    """Before/after deltas of a filter verification."""
    win_rate_change: float = 0.0
    profit_factor_change: Optional[float] = 0.0
    trades_removed: int = 0
    trade_reduction_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'win_rate_change': self.win_rate_change,
            'profit_factor_change': self.profit_factor_change,
            'trades_removed': self.trades_removed,
            'trade_reduction_rate': self.trade_reduction_rate,
        }


@dataclass
class FilterVerification:
    """Outcome of replaying a trade list through a set of filters."""
    filters: List[Any]
    before: ResultSummary
    after: ResultSummary
    improvement: FilterImprovement
    filtered_out_trade_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filters': [f.to_dict() for f in self.filters],
            'before': self.before.to_dict(),
            'after': self.after.to_dict(),
            'improvement': self.improvement.to_dict(),
            'filtered_out_trade_count': self.filtered_out_trade_count,
        }


@dataclass
class FilterAnalysisResults:
    """Ranked candidates plus verified top-N combinations."""
    total_trades: int = 0
    win_trades: int = 0
    lose_trades: int = 0
    candidates: List[FilterCandidate] = field(default_factory=list)
    recommendations: List[FilterVerification] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_trades': self.total_trades,
            'win_trades': self.win_trades,
            'lose_trades': self.lose_trades,
            'candidates': [c.to_dict() for c in self.candidates],
            'recommendations': [r.to_dict() for r in self.recommendations],
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            "=" * 60,
            "FILTER ANALYSIS",
            "=" * 60,
            f"Trades:                {self.total_trades} "
            f"(W {self.win_trades} / L {self.lose_trades})",
            "",
            "Ranked Indicators:",
        ]
        for c in self.candidates:
            lines.append(
                f"  {c.display_name:<20} win {c.win_average:.4f}  lose {c.lose_average:.4f}  "
                f"score {c.significance_score:5.1f}  -> {c.suggested_operator} {c.suggested_value:.4f}"
            )
        for rec in self.recommendations:
            names = ' AND '.join(f.describe() for f in rec.filters)
            lines.append(
                f"  [{names}] win rate {rec.after.win_rate:.1%} "
                f"({rec.improvement.win_rate_change:+.1%}), {rec.after.total_trades} trades"
            )
        lines.append("=" * 60)
        return "\n".join(lines)
