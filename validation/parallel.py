"""
Fan-out / fan-in for independent validation units.

Walk-forward splits and Monte Carlo iterations are independent runs over
read-only input. run_parallel() spreads them over a bounded thread pool,
waits for every unit, and returns results in unit order so aggregation
never depends on scheduling.

Cancellation is cooperative: the token is checked before each unit
starts, never inside a running simulation.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from backtesting.errors import OperationCancelled, ValidationRunError
from validation.config import FailurePolicy

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CancellationToken:
    """Thread-safe cancellation flag shared between a caller and a batch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, what: str = 'operation') -> None:
        if self._event.is_set():
            raise OperationCancelled(f'{what} cancelled')


@dataclass
class BatchOutcome(Generic[T]):
    """Results of a batch in unit order, plus failures (SKIP policy only)."""
    results: List[T] = field(default_factory=list)
    failures: List[Tuple[int, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


def run_parallel(
    unit: Callable[[int], T],
    count: int,
    max_workers: int = 4,
    failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
    cancel_token: Optional[CancellationToken] = None,
    label: str = 'unit',
    progress_interval: Optional[int] = None,
) -> BatchOutcome:
    """
    Run unit(0) .. unit(count - 1) on a thread pool.

    Args:
        unit: Work function taking the unit index
        count: Number of units
        max_workers: Pool size bound
        failure_policy: FAIL_FAST raises on the first failure, SKIP records it
        cancel_token: Checked before every unit starts
        label: Name used in log and error messages
        progress_interval: Log progress every N completed units

    Returns:
        BatchOutcome with results ordered by unit index

    Raises:
        ValidationRunError: A unit failed under FAIL_FAST
        OperationCancelled: The token was cancelled before all units ran
    """
    token = cancel_token or CancellationToken()
    abort = threading.Event()

    def guarded(index: int) -> T:
        if abort.is_set():
            raise OperationCancelled(f'{label} {index} skipped after batch abort')
        token.raise_if_cancelled(f'{label} batch')
        return unit(index)

    results: Dict[int, T] = {}
    failures: List[Tuple[int, str]] = []
    first_error: Optional[Tuple[int, BaseException]] = None

    workers = max(1, min(max_workers, count))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(guarded, i): i for i in range(count)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                results[index] = future.result()
            except OperationCancelled:
                abort.set()
                continue
            except Exception as e:
                if failure_policy == FailurePolicy.FAIL_FAST:
                    if first_error is None:
                        first_error = (index, e)
                    abort.set()
                    for pending in futures:
                        pending.cancel()
                    continue
                logger.warning(f"{label} {index} failed, skipping: {e}")
                failures.append((index, f"{type(e).__name__}: {e}"))
                continue

            done = len(results) + len(failures)
            if progress_interval and done % progress_interval == 0:
                logger.debug(f"{label}: {done}/{count} complete")

    if first_error is not None:
        index, error = first_error
        raise ValidationRunError(f"{label} {index} failed: {error}") from error

    token.raise_if_cancelled(f'{label} batch')
    if len(results) + len(failures) < count:
        raise OperationCancelled(f'{label} batch incomplete')

    failures.sort()
    return BatchOutcome(results=[results[i] for i in sorted(results)], failures=failures)
