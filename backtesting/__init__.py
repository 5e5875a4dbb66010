"""
Strategy Backtesting Engine - next-bar-fill single-position simulation

Evaluates user-defined entry rule trees against historical OHLCV series,
simulates one position at a time with fixed TP/SL/timeout exits, and
aggregates the closed trades into performance statistics. An optional
second pass re-runs the strategy on 1-minute bars for intrabar precision.

Module Structure:
    config          - BacktestConfig, ExitSettings, timeframe tables
    models          - TradeEvent, Strategy, BacktestRequest, enums
    indicators      - pandas indicator library + preset snapshot indicators
    conditions      - Condition tree (Comparison | Group) and evaluator
    signals         - Entry signals (condition tree, random)
    bars            - OHLCV validation and slicing
    data_providers  - HistoricalDataProvider protocol + in-memory provider
    simulation      - Position state and the position simulator
    exits           - TP/SL/timeout evaluation in priority order
    analytics       - ResultSummary and summarize()
    engine          - Two-stage BacktestEngine orchestrator
    storage         - Strategy repository and result store protocols
    runners         - CLI entry point
"""

__version__ = '0.1.0'
