"""
Strategy Validation - Configuration Module

Defines configuration dataclasses for the walk-forward validator, the
Monte Carlo baseliner and the filter analyzer.

Usage:
    from validation.config import WalkForwardConfig, MonteCarloConfig

    wf_config = WalkForwardConfig(max_workers=2)
    mc_config = MonteCarloConfig(seed=42, entry_probability=0.05)
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FailurePolicy(str, Enum):
    """
    What a batch does when one split/iteration fails.

    FAIL_FAST aborts the whole batch (a partial distribution is misleading).
    SKIP logs the failure, counts it, and aggregates the rest.
    """
    FAIL_FAST = 'fail_fast'
    SKIP = 'skip'


@dataclass
class WalkForwardConfig:
    """
    Configuration for walk-forward validation.

    Each fold spans total_days // split_count calendar days. Unless explicit
    day counts are requested, the first in_sample_ratio of a fold is in-sample
    and the rest out-of-sample.

    Attributes:
        in_sample_ratio: In-sample share of each fold (default 0.70)
        min_in_sample_days: Smallest in-sample window allowed
        min_out_of_sample_days: Smallest out-of-sample window allowed
        min_splits / max_splits: Accepted split counts
        overfit_warning_threshold: Mean |IS - OOS| win rate that flags overfitting
        max_workers: Concurrent splits
        failure_policy: FAIL_FAST or SKIP
        persist_split_results: Store each window's backtest in the result store
    """
    in_sample_ratio: float = 0.70
    min_in_sample_days: int = 3
    min_out_of_sample_days: int = 2
    min_splits: int = 2
    max_splits: int = 10
    overfit_warning_threshold: float = 0.06
    max_workers: int = 4
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST
    persist_split_results: bool = False

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []
        if not 0.0 < self.in_sample_ratio < 1.0:
            issues.append('in_sample_ratio must be in (0, 1)')
        if self.min_in_sample_days < 1 or self.min_out_of_sample_days < 1:
            issues.append('minimum window sizes must be at least 1 day')
        if self.min_splits < 1 or self.max_splits < self.min_splits:
            issues.append('split bounds must satisfy 1 <= min_splits <= max_splits')
        if self.max_workers < 1:
            issues.append('max_workers must be at least 1')
        return issues

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['failure_policy'] = self.failure_policy.value
        return result


@dataclass
class MonteCarloConfig:
    """
    Configuration for the Monte Carlo random-entry baseline.

    Attributes:
        seed: Random seed for reproducibility (None = non-reproducible)
        entry_probability: Chance of entering on each eligible flat bar
        random_side: Draw long/short per entry instead of using the strategy side
        allowed_iterations: Accepted iteration counts (None = any positive count)
        histogram_bins: Fixed number of histogram bins per metric
        percentiles: Percentiles reported per metric
        profit_factor_cap: Value used for unbounded profit factors
        max_workers: Concurrent iterations
        failure_policy: FAIL_FAST or SKIP
        progress_interval: Log progress every N completed iterations
    """
    seed: Optional[int] = None
    entry_probability: float = 0.05
    random_side: bool = False
    allowed_iterations: Optional[Tuple[int, ...]] = (100, 500, 1000)
    histogram_bins: int = 10
    percentiles: Tuple[int, ...] = (5, 25, 50, 75, 95)
    profit_factor_cap: float = 10.0
    max_workers: int = 4
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST
    progress_interval: int = 100

    def validate(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues = []
        if not 0.0 < self.entry_probability <= 1.0:
            issues.append('entry_probability must be in (0, 1]')
        if self.histogram_bins < 1:
            issues.append('histogram_bins must be at least 1')
        if any(not 0 <= p <= 100 for p in self.percentiles):
            issues.append('percentiles must be within [0, 100]')
        if self.profit_factor_cap <= 0:
            issues.append('profit_factor_cap must be positive')
        if self.max_workers < 1:
            issues.append('max_workers must be at least 1')
        return issues

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['failure_policy'] = self.failure_policy.value
        return result


@dataclass
class FilterAnalysisConfig:
    """
    Configuration for filter discovery and verification.

    Attributes:
        max_filters: Most filters a verification may combine
        max_recommendations: Size of the largest recommended combination
        min_trades_per_group: Winners and losers needed before an indicator is ranked
    """
    max_filters: int = 5
    max_recommendations: int = 3
    min_trades_per_group: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationConfig:
    """
    Master configuration bundling all validators.

    Attributes:
        walk_forward: Walk-forward settings
        monte_carlo: Monte Carlo settings
        filter_analysis: Filter analyzer settings
    """
    walk_forward: WalkForwardConfig = field(default_factory=WalkForwardConfig)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    filter_analysis: FilterAnalysisConfig = field(default_factory=FilterAnalysisConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'walk_forward': self.walk_forward.to_dict(),
            'monte_carlo': self.monte_carlo.to_dict(),
            'filter_analysis': self.filter_analysis.to_dict(),
        }
