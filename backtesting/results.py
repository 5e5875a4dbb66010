"""
Backtest result record produced by the orchestrator.

A result is either completed (summary + trades) or failed (error message,
no trades). Failed results are never persisted.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from backtesting.analytics.performance import ResultSummary, trades_to_dataframe
from backtesting.models import RunStatus, TradeEvent


@dataclass
class BacktestResult:
    """
    Outcome of one orchestrated backtest.

    stage is 1 for the coarse pass and 2 when the 1-minute pass replaced it.
    """
    strategy_id: str
    version_number: int
    timeframe: str
    stage: int
    summary: ResultSummary = field(default_factory=ResultSummary)
    trades: List[TradeEvent] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED
    error_message: Optional[str] = None
    result_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def failed(
        cls,
        strategy_id: str,
        version_number: int,
        timeframe: str,
        stage: int,
        error_message: str,
    ) -> 'BacktestResult':
        """Failed run: empty summary, no trades, captured message."""
        return cls(
            strategy_id=strategy_id,
            version_number=version_number,
            timeframe=timeframe,
            stage=stage,
            status=RunStatus.FAILED,
            error_message=error_message,
        )

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def trades_df(self) -> pd.DataFrame:
        return trades_to_dataframe(self.trades)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.result_id,
            'strategy_id': self.strategy_id,
            'version_number': self.version_number,
            'timeframe': self.timeframe,
            'stage': self.stage,
            'status': self.status.value,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat(),
            'summary': self.summary.to_dict(),
            'trades': [t.to_dict() for t in self.trades],
        }

    def summary_text(self) -> str:
        """Human-readable summary string."""
        header = (f"Strategy {self.strategy_id} v{self.version_number} "
                  f"[{self.timeframe}, stage {self.stage}] {self.status.value}")
        if self.status == RunStatus.FAILED:
            return f"{header}\nError: {self.error_message}"
        return f"{header}\n{self.summary.summary()}"
