"""
Exception hierarchy for the backtesting and validation engine.

Input problems are raised synchronously before any simulation starts.
Data insufficiency and the bankruptcy stop are normal outcomes and never
raise. Infrastructure failures surface either as exceptions from the
collaborators or as a failed BacktestResult at the orchestrator boundary.
"""


class BacktestError(Exception):
    """Base class for all engine errors."""


class InvalidRequestError(BacktestError, ValueError):
    """Rejected input: bad date range, unsupported timeframe, malformed tree, etc."""


class NoDataError(InvalidRequestError):
    """The provider returned no bars for the requested window."""


class DataProviderError(BacktestError):
    """Historical data collaborator failed to deliver bars."""


class StorageError(BacktestError):
    """Persistence collaborator failed to store or load a record."""


class ValidationRunError(BacktestError):
    """A walk-forward split or Monte Carlo iteration failed under fail-fast."""


class OperationCancelled(BacktestError):
    """A long-running batch was cancelled between units of work."""
