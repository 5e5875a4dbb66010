"""
Persistence collaborators.

The engine only talks to these protocols; storage concerns stay outside
the core. In-memory implementations back tests and the CLI.
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol

from backtesting.models import Strategy
from backtesting.results import BacktestResult

logger = logging.getLogger(__name__)


class StrategyRepository(Protocol):
    """Looks up strategy versions by id."""

    def get(self, strategy_id: str) -> Optional[Strategy]:
        """Return the current version of a strategy, or None."""
        ...


class ResultStore(Protocol):
    """Stores completed backtest results (summary + trades together)."""

    def save(self, result: BacktestResult) -> None:
        """
        Persist a completed result.

        Raises:
            StorageError: Persistence failed
        """
        ...


class InMemoryStrategyRepository:
    """Dictionary-backed strategy repository."""

    def __init__(self, strategies: Optional[List[Strategy]] = None):
        self._strategies: Dict[str, Strategy] = {}
        for strategy in strategies or []:
            self.add(strategy)

    def add(self, strategy: Strategy) -> None:
        self._strategies[strategy.strategy_id] = strategy

    def get(self, strategy_id: str) -> Optional[Strategy]:
        return self._strategies.get(strategy_id)


class InMemoryResultStore:
    """
    Thread-safe result store.

    Walk-forward splits may complete concurrently, so writes are serialized.
    """

    def __init__(self):
        self._results: Dict[str, BacktestResult] = {}
        self._lock = threading.Lock()

    def save(self, result: BacktestResult) -> None:
        with self._lock:
            self._results[result.result_id] = result
        logger.debug("Stored result %s (%d trades)", result.result_id, len(result.trades))

    def get(self, result_id: str) -> Optional[BacktestResult]:
        with self._lock:
            return self._results.get(result_id)

    def list_for_strategy(self, strategy_id: str) -> List[BacktestResult]:
        with self._lock:
            return [r for r in self._results.values() if r.strategy_id == strategy_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)
