"""
Strategy Validation Module

Robustness checks layered on top of the backtesting engine.

Components:
- Walk-Forward Validation (in-sample vs out-of-sample win-rate divergence)
- Monte Carlo Baseline (real strategy ranked against random entries)
- Filter Analysis (indicator filters discovered from closed trades)

Usage:
    from validation import WalkForwardValidator, WalkForwardRequest
    from validation import MonteCarloBaseliner, MonteCarloConfig
    from validation import FilterAnalyzer, FilterCondition

    results = WalkForwardValidator(engine).validate(request)
    print(results.summary())
"""

# Configuration classes
from validation.config import (
    FailurePolicy,
    WalkForwardConfig,
    MonteCarloConfig,
    FilterAnalysisConfig,
    ValidationConfig,
)

# Result classes
from validation.results import (
    Period,
    WalkForwardSplit,
    WalkForwardResults,
    Assessment,
    HistogramBin,
    DistributionStats,
    MetricComparison,
    MonteCarloComparison,
    MonteCarloResults,
    FilterCandidate,
    FilterImprovement,
    FilterVerification,
    FilterAnalysisResults,
)

# Fan-out and cancellation
from validation.parallel import (
    BatchOutcome,
    CancellationToken,
    run_parallel,
)

# Validators
from validation.walk_forward import (
    SplitWindow,
    WalkForwardRequest,
    WalkForwardValidator,
)
from validation.monte_carlo import (
    MonteCarloBaseliner,
    MonteCarloRequest,
    classify_percentile,
)
from validation.filter_analysis import (
    FilterAnalyzer,
    FilterCondition,
    attach_snapshots,
    suggested_filter,
)

__all__ = [
    # Configuration
    'FailurePolicy',
    'WalkForwardConfig',
    'MonteCarloConfig',
    'FilterAnalysisConfig',
    'ValidationConfig',

    # Results
    'Period',
    'WalkForwardSplit',
    'WalkForwardResults',
    'Assessment',
    'HistogramBin',
    'DistributionStats',
    'MetricComparison',
    'MonteCarloComparison',
    'MonteCarloResults',
    'FilterCandidate',
    'FilterImprovement',
    'FilterVerification',
    'FilterAnalysisResults',

    # Fan-out
    'BatchOutcome',
    'CancellationToken',
    'run_parallel',

    # Validators - Walk-Forward
    'SplitWindow',
    'WalkForwardRequest',
    'WalkForwardValidator',

    # Validators - Monte Carlo
    'MonteCarloBaseliner',
    'MonteCarloRequest',
    'classify_percentile',

    # Validators - Filter Analysis
    'FilterAnalyzer',
    'FilterCondition',
    'attach_snapshots',
    'suggested_filter',
]

__version__ = '0.1.0'
