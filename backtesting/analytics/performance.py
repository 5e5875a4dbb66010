"""
Performance Aggregator

summarize(trades, initial_capital) turns a list of TradeEvents into a
ResultSummary. It is a pure function: the summary can be recomputed from
its trades at any time, which is how filter verification and the Monte
Carlo baseline reuse it.

Definitions:
- win rate       = winners / total (winners: pnl > 0, losers: pnl < 0)
- profit factor  = gross profit / gross loss, Unbounded when there is
                   profit and no loss, 0 when there is neither
- expectancy     = win_rate * avg_win - (1 - win_rate) * avg_loss
- max drawdown   = largest peak-to-trough drop of cumulative PnL, trade by trade
- streaks        = consecutive winners / losers; a timeout (or flat trade)
                   breaks both streaks and belongs to neither
- Sharpe/Sortino/p-value on per-trade pnl_percent returns (n >= 2)
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from backtesting.models import ExitReason, StoppedReason, TradeEvent

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
SIGNIFICANCE_LEVEL = 0.05
HIGH_CONFIDENCE_TRADES = 30
MEDIUM_CONFIDENCE_TRADES = 10


@dataclass(frozen=True)
class ProfitFactor:
    """
    Profit factor as Finite(value) or Unbounded.

    Unbounded (gross loss of zero with some profit) is kept out of float
    arithmetic so it never leaks into JSON as Infinity.
    """
    value: Optional[float]

    @classmethod
    def finite(cls, value: float) -> 'ProfitFactor':
        return cls(float(value))

    @classmethod
    def unbounded(cls) -> 'ProfitFactor':
        return cls(None)

    @property
    def is_unbounded(self) -> bool:
        return self.value is None

    def as_float(self, cap: Optional[float] = None) -> float:
        """Numeric view: the value, or `cap` (default inf) when unbounded."""
        if self.value is not None:
            return self.value
        return math.inf if cap is None else cap

    def to_json(self) -> Optional[float]:
        return self.value

    def __str__(self) -> str:
        return 'unbounded' if self.value is None else f'{self.value:.2f}'


class ConfidenceLevel(str, Enum):
    """How much weight the sample size can carry."""
    HIGH = 'high'
    MEDIUM = 'medium'
    LOW = 'low'


@dataclass
class ResultSummary:
    """Aggregated statistics for one trade list."""

    # Counts
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    timeout_trades: int = 0

    # Rates & money
    win_rate: float = 0.0
    net_profit: float = 0.0
    net_profit_rate: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: ProfitFactor = field(default_factory=lambda: ProfitFactor.finite(0.0))
    average_win: float = 0.0
    average_loss: float = 0.0
    expectancy: float = 0.0
    risk_reward_ratio: float = 0.0

    # Risk
    max_drawdown: float = 0.0
    max_drawdown_rate: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # Statistics
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    p_value: float = 1.0
    is_statistically_significant: bool = False
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW

    # Run outcome
    initial_capital: float = 0.0
    final_capital: float = 0.0
    stopped_reason: StoppedReason = StoppedReason.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            'total_trades': self.total_trades,
            'winning_trades': self.winning_trades,
            'losing_trades': self.losing_trades,
            'timeout_trades': self.timeout_trades,
            'win_rate': self.win_rate,
            'net_profit': self.net_profit,
            'net_profit_rate': self.net_profit_rate,
            'gross_profit': self.gross_profit,
            'gross_loss': self.gross_loss,
            'profit_factor': self.profit_factor.to_json(),
            'profit_factor_unbounded': self.profit_factor.is_unbounded,
            'average_win': self.average_win,
            'average_loss': self.average_loss,
            'expectancy': self.expectancy,
            'risk_reward_ratio': self.risk_reward_ratio,
            'max_drawdown': self.max_drawdown,
            'max_drawdown_rate': self.max_drawdown_rate,
            'max_consecutive_wins': self.max_consecutive_wins,
            'max_consecutive_losses': self.max_consecutive_losses,
            'sharpe_ratio': self.sharpe_ratio,
            'sortino_ratio': self.sortino_ratio,
            'p_value': self.p_value,
            'is_statistically_significant': self.is_statistically_significant,
            'confidence_level': self.confidence_level.value,
            'initial_capital': self.initial_capital,
            'final_capital': self.final_capital,
            'stopped_reason': self.stopped_reason.value,
        }

    def summary(self) -> str:
        """Human-readable summary string."""
        lines = [
            "=" * 60,
            "BACKTEST SUMMARY",
            "=" * 60,
            f"Total Trades:   {self.total_trades} "
            f"(W {self.winning_trades} / L {self.losing_trades} / T {self.timeout_trades})",
            f"Win Rate:       {self.win_rate:.1%}",
            f"Net Profit:     {self.net_profit:,.2f} ({self.net_profit_rate:.2%})",
            f"Profit Factor:  {self.profit_factor}",
            f"Expectancy:     {self.expectancy:,.2f}",
            f"Avg Win/Loss:   {self.average_win:,.2f} / {self.average_loss:,.2f}",
            f"Max Drawdown:   {self.max_drawdown:,.2f} ({self.max_drawdown_rate:.2%})",
            f"Streaks:        +{self.max_consecutive_wins} / -{self.max_consecutive_losses}",
            f"Sharpe/Sortino: {self.sharpe_ratio:.2f} / {self.sortino_ratio:.2f}",
            f"p-value:        {self.p_value:.4f} ({self.confidence_level.value} confidence)",
            f"Final Capital:  {self.final_capital:,.2f} [{self.stopped_reason.value}]",
            "=" * 60,
        ]
        return "\n".join(lines)


def summarize(
    trades: Sequence[TradeEvent],
    initial_capital: float,
    stopped_reason: StoppedReason = StoppedReason.COMPLETED,
    final_capital: Optional[float] = None,
) -> ResultSummary:
    """
    Aggregate a trade list.

    Args:
        trades: Closed trades in chronological order
        initial_capital: Starting capital (for rates)
        stopped_reason: How the producing run ended
        final_capital: Capital at halt (default: initial + net profit)

    Returns:
        ResultSummary (all zeros for an empty list)
    """
    total = len(trades)
    if total == 0:
        return ResultSummary(
            initial_capital=initial_capital,
            final_capital=initial_capital if final_capital is None else final_capital,
            stopped_reason=stopped_reason,
        )

    pnls = np.array([t.pnl for t in trades], dtype=float)
    wins = pnls[pnls > 0]
    losses = pnls[pnls < 0]

    gross_profit = float(wins.sum())
    gross_loss = float(-losses.sum())
    net_profit = float(pnls.sum())
    win_rate = len(wins) / total
    average_win = gross_profit / len(wins) if len(wins) else 0.0
    average_loss = gross_loss / len(losses) if len(losses) else 0.0

    max_drawdown = calculate_max_drawdown(pnls)
    max_wins, max_losses = calculate_streaks(trades)
    sharpe, sortino, p_value = calculate_return_statistics(
        np.array([t.pnl_percent for t in trades], dtype=float)
    )

    return ResultSummary(
        total_trades=total,
        winning_trades=len(wins),
        losing_trades=len(losses),
        timeout_trades=sum(1 for t in trades if t.exit_reason == ExitReason.TIMEOUT),
        win_rate=win_rate,
        net_profit=net_profit,
        net_profit_rate=net_profit / initial_capital if initial_capital else 0.0,
        gross_profit=gross_profit,
        gross_loss=gross_loss,
        profit_factor=calculate_profit_factor(gross_profit, gross_loss),
        average_win=average_win,
        average_loss=average_loss,
        expectancy=win_rate * average_win - (1 - win_rate) * average_loss,
        risk_reward_ratio=average_win / average_loss if average_loss > 0 else 0.0,
        max_drawdown=max_drawdown,
        max_drawdown_rate=max_drawdown / initial_capital if initial_capital else 0.0,
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        sharpe_ratio=sharpe,
        sortino_ratio=sortino,
        p_value=p_value,
        is_statistically_significant=total >= 2 and p_value < SIGNIFICANCE_LEVEL,
        confidence_level=confidence_for(total),
        initial_capital=initial_capital,
        final_capital=(initial_capital + net_profit) if final_capital is None else final_capital,
        stopped_reason=stopped_reason,
    )


def calculate_profit_factor(gross_profit: float, gross_loss: float) -> ProfitFactor:
    """Gross profit / gross loss with the Unbounded case made explicit."""
    if gross_loss > 0:
        return ProfitFactor.finite(gross_profit / gross_loss)
    if gross_profit > 0:
        return ProfitFactor.unbounded()
    return ProfitFactor.finite(0.0)


def calculate_max_drawdown(pnls: np.ndarray) -> float:
    """
    Largest peak-to-trough drop of the cumulative PnL curve.

    The curve starts at 0 (initial capital), so a losing first trade is a
    drawdown from the starting peak.
    """
    if len(pnls) == 0:
        return 0.0
    curve = np.concatenate(([0.0], np.cumsum(pnls)))
    peaks = np.maximum.accumulate(curve)
    return float((peaks - curve).max())


def calculate_streaks(trades: Sequence[TradeEvent]) -> Tuple[int, int]:
    """
    Longest runs of consecutive winners and losers.

    Returns:
        (max_consecutive_wins, max_consecutive_losses)
    """
    max_wins = max_losses = 0
    wins = losses = 0
    for trade in trades:
        if trade.exit_reason == ExitReason.TIMEOUT or trade.pnl == 0:
            wins = losses = 0
        elif trade.is_winner:
            wins += 1
            losses = 0
            max_wins = max(max_wins, wins)
        else:
            losses += 1
            wins = 0
            max_losses = max(max_losses, losses)
    return max_wins, max_losses


def calculate_return_statistics(returns: np.ndarray) -> Tuple[float, float, float]:
    """
    Sharpe, Sortino and two-sided t-test p-value of per-trade returns.

    Returns:
        (sharpe, sortino, p_value); (0, 0, 1) with fewer than 2 returns
        or zero dispersion
    """
    n = len(returns)
    if n < 2:
        return 0.0, 0.0, 1.0

    mean = float(returns.mean())
    std = float(returns.std(ddof=1))
    if std == 0 or np.isnan(std):
        return 0.0, 0.0, 1.0

    annualization = math.sqrt(TRADING_DAYS_PER_YEAR)
    sharpe = mean / std * annualization

    downside = returns[returns < 0]
    downside_dev = float(np.sqrt(np.mean(downside ** 2))) if len(downside) else 0.0
    sortino = mean / downside_dev * annualization if downside_dev > 0 else 0.0

    t_stat = mean / (std / math.sqrt(n))
    p_value = float(2 * stats.t.sf(abs(t_stat), df=n - 1))

    return sharpe, sortino, p_value


def confidence_for(trade_count: int) -> ConfidenceLevel:
    if trade_count >= HIGH_CONFIDENCE_TRADES:
        return ConfidenceLevel.HIGH
    if trade_count >= MEDIUM_CONFIDENCE_TRADES:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def trades_to_dataframe(trades: List[TradeEvent]) -> pd.DataFrame:
    """Tabular view of trades (one row per trade, snapshot flattened)."""
    if not trades:
        return pd.DataFrame()
    rows = []
    for trade in trades:
        row = trade.to_dict()
        snapshot = row.pop('indicator_snapshot')
        row.update({f'ind_{k}': v for k, v in snapshot.items()})
        rows.append(row)
    return pd.DataFrame(rows)
