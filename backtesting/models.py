"""
Core records of the backtesting engine.

TradeEvent is created exactly once per closed position and never mutated.
Strategy and BacktestRequest describe what to simulate; results live in
backtesting.results so they can carry a ResultSummary.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import pandas as pd

from backtesting.conditions import ConditionNode, condition_to_dict, parse_condition
from backtesting.config import ExitSettings


class TradeSide(str, Enum):
    """Direction of a position."""
    LONG = 'long'
    SHORT = 'short'

    @property
    def sign(self) -> int:
        return 1 if self is TradeSide.LONG else -1

    @classmethod
    def parse(cls, value: str) -> 'TradeSide':
        """Accept 'long'/'short' as well as the order-ticket 'buy'/'sell'."""
        aliases = {'buy': cls.LONG, 'sell': cls.SHORT}
        key = str(value).lower()
        if key in aliases:
            return aliases[key]
        return cls(key)


class ExitReason(str, Enum):
    """Reason a position was closed."""
    TAKE_PROFIT = 'take_profit'
    STOP_LOSS = 'stop_loss'
    TIMEOUT = 'timeout'
    SIGNAL = 'signal'


class StoppedReason(str, Enum):
    """How a simulation run ended."""
    COMPLETED = 'completed'
    BANKRUPTCY = 'bankruptcy'


class RunStatus(str, Enum):
    """Lifecycle status of a backtest run."""
    RUNNING = 'running'
    COMPLETED = 'completed'
    FAILED = 'failed'


def calculate_pnl(
    side: TradeSide,
    entry_price: float,
    exit_price: float,
    lot_size: float,
) -> float:
    """Realized PnL: (exit - entry) * lot for longs, reversed for shorts."""
    return (exit_price - entry_price) * lot_size * side.sign


@dataclass(frozen=True)
class TradeEvent:
    """
    One closed position.

    pnl_percent is relative to the required margin
    (lot_size * entry_price / leverage), not to notional.
    """
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    side: TradeSide
    lot_size: float
    pnl: float
    pnl_percent: float
    exit_reason: ExitReason
    indicator_snapshot: Mapping[str, float] = field(default_factory=dict, hash=False)
    entry_bar_index: int = -1
    exit_bar_index: int = -1
    trade_id: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)

    def __post_init__(self):
        # Freeze the snapshot so the record stays immutable end to end
        object.__setattr__(
            self, 'indicator_snapshot', MappingProxyType(dict(self.indicator_snapshot))
        )

    @property
    def bars_held(self) -> int:
        return self.exit_bar_index - self.entry_bar_index

    @property
    def is_winner(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'entry_time': pd.Timestamp(self.entry_time).isoformat(),
            'entry_price': self.entry_price,
            'exit_time': pd.Timestamp(self.exit_time).isoformat(),
            'exit_price': self.exit_price,
            'side': self.side.value,
            'lot_size': self.lot_size,
            'pnl': self.pnl,
            'pnl_percent': self.pnl_percent,
            'exit_reason': self.exit_reason.value,
            'entry_bar_index': self.entry_bar_index,
            'exit_bar_index': self.exit_bar_index,
            'indicator_snapshot': dict(self.indicator_snapshot),
        }


@dataclass(frozen=True)
class Strategy:
    """
    One version of a user-defined strategy.

    The exit_condition tree is optional; when set, a true evaluation closes
    the position at that bar's close with ExitReason.SIGNAL.
    """
    strategy_id: str
    symbol: str
    side: TradeSide
    entry_condition: ConditionNode
    exit_settings: ExitSettings
    version_number: int = 1
    name: str = ''
    exit_condition: Optional[ConditionNode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy_id': self.strategy_id,
            'version_number': self.version_number,
            'name': self.name,
            'symbol': self.symbol,
            'side': self.side.value,
            'entry_condition': condition_to_dict(self.entry_condition),
            'exit_condition': (
                condition_to_dict(self.exit_condition) if self.exit_condition is not None else None
            ),
            'exit_settings': self.exit_settings.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Strategy':
        exit_condition = data.get('exit_condition')
        return cls(
            strategy_id=str(data['strategy_id']),
            version_number=int(data.get('version_number', 1)),
            name=data.get('name', ''),
            symbol=data['symbol'],
            side=TradeSide.parse(data.get('side', 'long')),
            entry_condition=parse_condition(data['entry_condition']),
            exit_condition=parse_condition(exit_condition) if exit_condition else None,
            exit_settings=ExitSettings.from_dict(data['exit_settings']),
        )


@dataclass(frozen=True)
class BacktestRequest:
    """
    What the orchestrator is asked to run.

    Dates are inclusive calendar days.
    """
    strategy_id: str
    start_date: date
    end_date: date
    stage1_timeframe: str = '1h'
    run_stage2: bool = False
    initial_capital: float = 1_000_000.0
    lot_size: float = 10_000.0
    leverage: float = 25.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy_id': self.strategy_id,
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
            'stage1_timeframe': self.stage1_timeframe,
            'run_stage2': self.run_stage2,
            'initial_capital': self.initial_capital,
            'lot_size': self.lot_size,
            'leverage': self.leverage,
        }
