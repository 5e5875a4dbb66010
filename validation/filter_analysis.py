"""
Strategy Validation - Filter Analyzer

Post-hoc discovery of entry filters from a finished backtest. Every trade
carries the indicator values observed at its entry bar; the analyzer
compares those values between winners (pnl > 0) and losers (pnl <= 0),
ranks indicators by how well they separate the two groups, and suggests
a threshold per indicator.

Verification replays the already-closed trade list, keeping only trades
whose snapshot passes every selected filter, and recomputes the summary.
It never re-runs the simulator, so it is cheap and side-effect free.

Usage:
    from validation.filter_analysis import FilterAnalyzer, FilterCondition

    analyzer = FilterAnalyzer()
    analysis = analyzer.analyze(result.trades, initial_capital=1_000_000)
    check = analyzer.verify(result.trades, [FilterCondition('RSI_14', '<', 45.0)],
                            initial_capital=1_000_000)
    print(check.improvement.win_rate_change)
"""

import logging
import math
import statistics
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from backtesting.analytics.performance import summarize
from backtesting.conditions import ComparisonOperator, compare_values
from backtesting.errors import InvalidRequestError
from backtesting.indicators import (
    DEFAULT_LIBRARY,
    PRESET_DISPLAY_NAMES,
    IndicatorLibrary,
    compute_preset_series,
)
from backtesting.models import TradeEvent
from validation.config import FilterAnalysisConfig
from validation.results import (
    FilterAnalysisResults,
    FilterCandidate,
    FilterImprovement,
    FilterVerification,
)

logger = logging.getLogger(__name__)

FILTER_OPERATORS = (
    ComparisonOperator.LT,
    ComparisonOperator.LE,
    ComparisonOperator.GT,
    ComparisonOperator.GE,
    ComparisonOperator.EQ,
)


@dataclass(frozen=True)
class FilterCondition:
    """
    A user-adopted filter: snapshot[indicator_key] <operator> value.

    Trades whose snapshot lacks the indicator never pass.
    """
    indicator_key: str
    operator: ComparisonOperator
    value: float

    def __post_init__(self):
        operator = ComparisonOperator(self.operator)
        if operator not in FILTER_OPERATORS:
            raise InvalidRequestError(f"Filter operator {operator.value!r} is not supported")
        object.__setattr__(self, 'operator', operator)
        object.__setattr__(self, 'value', float(self.value))

    def matches(self, snapshot: Mapping[str, float]) -> bool:
        observed = snapshot.get(self.indicator_key)
        if observed is None or math.isnan(observed):
            return False
        return compare_values(float(observed), self.operator, self.value)

    def describe(self) -> str:
        name = PRESET_DISPLAY_NAMES.get(self.indicator_key, self.indicator_key)
        return f"{name} {self.operator.value} {self.value:.4f}"

    def to_dict(self) -> Dict[str, Any]:
        return {'indicator': self.indicator_key, 'operator': self.operator.value,
                'value': self.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FilterCondition':
        try:
            return cls(data['indicator'], data['operator'], data['value'])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidRequestError(f"Malformed filter {dict(data)!r}: {e}") from e


class FilterAnalyzer:
    """
    Filter discovery and verification over closed trades.

    Example:
        analyzer = FilterAnalyzer(FilterAnalysisConfig(max_recommendations=2))
        analysis = analyzer.analyze(trades, initial_capital=1_000_000)
        for candidate in analysis.candidates[:3]:
            print(candidate.indicator_key, candidate.significance_score)
    """

    def __init__(self, config: Optional[FilterAnalysisConfig] = None):
        self.config = config or FilterAnalysisConfig()

    def analyze(
        self,
        trades: Sequence[TradeEvent],
        initial_capital: float = 1_000_000.0,
    ) -> FilterAnalysisResults:
        """
        Rank indicators and verify the top suggested combinations.

        Args:
            trades: Closed trades with entry snapshots
            initial_capital: Capital used for the recommendation summaries

        Returns:
            FilterAnalysisResults with candidates sorted by significance
        """
        winners = [t for t in trades if t.is_winner]
        losers = [t for t in trades if not t.is_winner]
        candidates = self.rank_candidates(trades)

        logger.info(f"Filter analysis: {len(trades)} trades "
                    f"({len(winners)} W / {len(losers)} L), {len(candidates)} indicators ranked")

        recommendations = []
        useful = [c for c in candidates if c.significance_score > 0]
        for size in range(1, min(self.config.max_recommendations, len(useful)) + 1):
            filters = [suggested_filter(c) for c in useful[:size]]
            recommendations.append(self.verify(trades, filters, initial_capital))

        return FilterAnalysisResults(
            total_trades=len(trades),
            win_trades=len(winners),
            lose_trades=len(losers),
            candidates=candidates,
            recommendations=recommendations,
        )

    def rank_candidates(self, trades: Sequence[TradeEvent]) -> List[FilterCandidate]:
        """
        Per-indicator winner/loser separation, most significant first.

        significance = |win avg - lose avg| / (max - min over all trades) * 100
        """
        keys = sorted({key for t in trades for key in t.indicator_snapshot})
        candidates = []
        for key in keys:
            win_values = _values(trades, key, winners=True)
            lose_values = _values(trades, key, winners=False)
            if (len(win_values) < self.config.min_trades_per_group
                    or len(lose_values) < self.config.min_trades_per_group):
                continue

            win_avg = statistics.mean(win_values)
            lose_avg = statistics.mean(lose_values)
            everything = win_values + lose_values
            spread = max(everything) - min(everything)
            score = abs(win_avg - lose_avg) / spread * 100 if spread > 0 else 0.0

            candidates.append(FilterCandidate(
                indicator_key=key,
                display_name=PRESET_DISPLAY_NAMES.get(key, key),
                win_average=win_avg,
                lose_average=lose_avg,
                significance_score=min(100.0, score),
                suggested_operator='>' if win_avg > lose_avg else '<',
                suggested_value=(win_avg + lose_avg) / 2,
                win_samples=len(win_values),
                lose_samples=len(lose_values),
            ))

        candidates.sort(key=lambda c: c.significance_score, reverse=True)
        return candidates

    def verify(
        self,
        trades: Sequence[TradeEvent],
        filters: Sequence[FilterCondition],
        initial_capital: float = 1_000_000.0,
    ) -> FilterVerification:
        """
        Replay trades through AND-combined filters and compare summaries.

        Raises:
            InvalidRequestError: More than max_filters filters
        """
        if len(filters) > self.config.max_filters:
            raise InvalidRequestError(
                f"At most {self.config.max_filters} filters can be combined, got {len(filters)}"
            )

        kept = [t for t in trades if all(f.matches(t.indicator_snapshot) for f in filters)]
        before = summarize(trades, initial_capital)
        after = summarize(kept, initial_capital)

        removed = len(trades) - len(kept)
        if before.profit_factor.is_unbounded or after.profit_factor.is_unbounded:
            pf_change = None
        else:
            pf_change = after.profit_factor.value - before.profit_factor.value

        improvement = FilterImprovement(
            win_rate_change=after.win_rate - before.win_rate,
            profit_factor_change=pf_change,
            trades_removed=removed,
            trade_reduction_rate=removed / len(trades) if trades else 0.0,
        )
        logger.debug(f"Verified {len(filters)} filters: {len(kept)}/{len(trades)} trades kept, "
                     f"win rate {before.win_rate:.1%} -> {after.win_rate:.1%}")

        return FilterVerification(
            filters=list(filters),
            before=before,
            after=after,
            improvement=improvement,
            filtered_out_trade_count=removed,
        )


def suggested_filter(candidate: FilterCandidate) -> FilterCondition:
    """The default FilterCondition derived from a candidate."""
    return FilterCondition(candidate.indicator_key, candidate.suggested_operator,
                           candidate.suggested_value)


def attach_snapshots(
    trades: Sequence[TradeEvent],
    bars: pd.DataFrame,
    library: IndicatorLibrary = DEFAULT_LIBRARY,
) -> List[TradeEvent]:
    """
    Fill preset indicator snapshots for trades that were imported without them.

    The entry bar is located by entry timestamp; trades whose entry time is
    not in the bar index keep their existing snapshot.
    """
    presets = compute_preset_series(bars, library)
    positions = pd.Series(np.arange(len(bars)), index=bars.index)
    enriched = []
    for trade in trades:
        bar_index = positions.get(pd.Timestamp(trade.entry_time))
        if bar_index is None:
            enriched.append(trade)
            continue
        snapshot = dict(trade.indicator_snapshot)
        for key, series in presets.items():
            value = float(series[int(bar_index)])
            if not math.isnan(value):
                snapshot.setdefault(key, value)
        enriched.append(replace(trade, indicator_snapshot=snapshot))
    return enriched


def _values(trades: Sequence[TradeEvent], key: str, winners: bool) -> List[float]:
    return [
        float(t.indicator_snapshot[key])
        for t in trades
        if t.is_winner == winners and key in t.indicator_snapshot
    ]
