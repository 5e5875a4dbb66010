"""
Entry signals for the position simulator.

An entry signal looks at the evaluation context at bar i and returns the
side to open (filled at bar i+1's open) or None. Real strategies use a
condition tree; the Monte Carlo baseline plugs in a random signal so both
share the exact same simulator.
"""

from typing import Optional, Protocol

import numpy as np

from backtesting.conditions import ConditionNode, EvaluationContext, evaluate
from backtesting.models import TradeSide


class EntrySignal(Protocol):
    """Decides whether to open a position at the current bar."""

    def __call__(self, ctx: EvaluationContext) -> Optional[TradeSide]:
        ...


class ConditionSignal:
    """Opens `side` whenever the condition tree is true."""

    def __init__(self, tree: ConditionNode, side: TradeSide):
        self.tree = tree
        self.side = side

    def __call__(self, ctx: EvaluationContext) -> Optional[TradeSide]:
        return self.side if evaluate(self.tree, ctx) else None


class RandomSignal:
    """
    Opens with a fixed probability on every eligible flat bar.

    Args:
        rng: Generator owned by one simulation (never shared across threads)
        probability: Chance of entering on a given bar
        side: Fixed side, or None to draw long/short uniformly per entry
    """

    def __init__(
        self,
        rng: np.random.Generator,
        probability: float,
        side: Optional[TradeSide] = None,
    ):
        self._rng = rng
        self.probability = probability
        self.side = side

    def __call__(self, ctx: EvaluationContext) -> Optional[TradeSide]:
        if self._rng.random() >= self.probability:
            return None
        if self.side is not None:
            return self.side
        return TradeSide.LONG if self._rng.random() < 0.5 else TradeSide.SHORT
