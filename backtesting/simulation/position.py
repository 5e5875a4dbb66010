"""
OpenPosition - the Open state of the single-position state machine.

The simulator holds either None (Flat) or one OpenPosition. TP/SL prices
are fixed at entry and never move.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict

from backtesting.models import TradeSide


@dataclass
class OpenPosition:
    """A position opened at a bar's open price."""

    side: TradeSide
    entry_time: datetime
    entry_price: float
    entry_bar_index: int
    take_profit_price: float
    stop_loss_price: float
    indicator_snapshot: Dict[str, float] = field(default_factory=dict)

    def bars_held(self, bar_index: int) -> int:
        return bar_index - self.entry_bar_index

    @property
    def is_long(self) -> bool:
        return self.side is TradeSide.LONG
