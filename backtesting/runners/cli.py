"""
CLI Entry Point for the Strategy Backtesting Engine

Runs a backtest from a CSV of OHLCV bars and a JSON strategy definition,
optionally followed by walk-forward validation, a Monte Carlo baseline
and filter analysis.

Usage:
    python -m backtesting.runners.cli --bars usdjpy_1m.csv --strategy rsi.json \
        --start 2024-01-01 --end 2024-03-31 --stage1 1h
    python -m backtesting.runners.cli --bars eurusd_1h.csv --bars-timeframe 1h \
        --strategy rsi.json --start 2024-01-01 --end 2024-03-31 --walk-forward 4
    python -m backtesting.runners.cli ... --monte-carlo 500 --seed 42 --filters
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from backtesting.config import BacktestConfig, STAGE1_TIMEFRAMES, TIMEFRAME_MINUTES
from backtesting.data_providers.base import DataFrameProvider
from backtesting.engine import BacktestEngine
from backtesting.errors import BacktestError
from backtesting.models import BacktestRequest, Strategy
from backtesting.storage import InMemoryResultStore, InMemoryStrategyRepository
from config.settings import get_engine_settings
from validation.config import MonteCarloConfig, WalkForwardConfig
from validation.filter_analysis import FilterAnalyzer
from validation.monte_carlo import MonteCarloBaseliner, MonteCarloRequest
from validation.walk_forward import WalkForwardRequest, WalkForwardValidator


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='Strategy Backtesting Engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # Data selection
    parser.add_argument('--bars', required=True,
                        help='CSV with a timestamp column and open/high/low/close[/volume]')
    parser.add_argument('--bars-timeframe', default='1m', choices=sorted(TIMEFRAME_MINUTES),
                        help='Timeframe of the CSV bars (default: 1m)')
    parser.add_argument('--strategy', required=True,
                        help='Path to JSON strategy definition')
    parser.add_argument('--start', required=True, help='Start date YYYY-MM-DD')
    parser.add_argument('--end', required=True, help='End date YYYY-MM-DD')

    # Run settings
    parser.add_argument('--stage1', default='1h', choices=STAGE1_TIMEFRAMES,
                        help='Stage 1 timeframe (default: 1h)')
    parser.add_argument('--stage2', action='store_true',
                        help='Re-run on 1m bars when Stage 1 trades')
    parser.add_argument('--capital', type=float, default=1_000_000.0,
                        help='Initial capital (default: 1000000)')
    parser.add_argument('--lot-size', type=float, default=10_000.0,
                        help='Units per trade (default: 10000)')
    parser.add_argument('--leverage', type=float, default=25.0,
                        help='Leverage for margin (default: 25)')

    # Validation
    parser.add_argument('--walk-forward', type=int, metavar='SPLITS',
                        help='Run walk-forward validation with this many splits')
    parser.add_argument('--monte-carlo', type=int, metavar='ITERATIONS',
                        help='Run a Monte Carlo baseline (100, 500 or 1000)')
    parser.add_argument('--seed', type=int,
                        help='Monte Carlo seed (default: STRATLAB_MONTE_CARLO_SEED)')
    parser.add_argument('--workers', type=int,
                        help='Concurrent splits/iterations (default: STRATLAB_MAX_WORKERS or 4)')
    parser.add_argument('--filters', action='store_true',
                        help='Run filter analysis on the backtest trades')

    # Output
    parser.add_argument('--output', '-o', help='Write all results as JSON to this path')
    parser.add_argument('--csv', help='Export trades to this CSV path')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose logging')

    return parser.parse_args(argv)


def load_bars(path: str) -> pd.DataFrame:
    """Read a bar CSV; the first column (or 'timestamp') becomes the index."""
    df = pd.read_csv(path)
    time_col = 'timestamp' if 'timestamp' in df.columns else df.columns[0]
    df[time_col] = pd.to_datetime(df[time_col])
    return df.set_index(time_col).sort_index()


def load_strategy(path: str) -> Strategy:
    with open(path) as f:
        return Strategy.from_dict(json.load(f))


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S',
    )

    try:
        settings = get_engine_settings()
        strategy = load_strategy(args.strategy)
        provider = DataFrameProvider()
        provider.add(strategy.symbol, args.bars_timeframe, load_bars(args.bars))
    except (OSError, ValueError, KeyError) as e:
        logging.error("Input error: %s", e)
        sys.exit(1)

    workers = args.workers or settings.max_workers
    seed = args.seed if args.seed is not None else settings.monte_carlo_seed

    start = pd.Timestamp(args.start).date()
    end = pd.Timestamp(args.end).date()
    engine = BacktestEngine(
        provider,
        InMemoryStrategyRepository([strategy]),
        result_store=InMemoryResultStore(),
        config=BacktestConfig.from_settings(settings),
    )
    output = {}

    try:
        result = engine.run(BacktestRequest(
            strategy_id=strategy.strategy_id,
            start_date=start,
            end_date=end,
            stage1_timeframe=args.stage1,
            run_stage2=args.stage2,
            initial_capital=args.capital,
            lot_size=args.lot_size,
            leverage=args.leverage,
        ))
        print(result.summary_text())
        output['backtest'] = result.to_dict()
        if not result.is_completed:
            sys.exit(2)

        if args.walk_forward:
            validator = WalkForwardValidator(engine, WalkForwardConfig(max_workers=workers))
            wf_results = validator.validate(WalkForwardRequest(
                strategy_id=strategy.strategy_id,
                start_date=start,
                end_date=end,
                split_count=args.walk_forward,
                stage1_timeframe=args.stage1,
                initial_capital=args.capital,
                lot_size=args.lot_size,
                leverage=args.leverage,
            ))
            print(wf_results.summary())
            output['walk_forward'] = wf_results.to_dict()

        if args.monte_carlo:
            baseliner = MonteCarloBaseliner(
                MonteCarloConfig(seed=seed, max_workers=workers),
                backtest_config=engine.config,
            )
            mc_results = baseliner.run(
                MonteCarloRequest(
                    symbol=strategy.symbol,
                    start_date=start,
                    end_date=end,
                    timeframe=result.timeframe,
                    exit_settings=strategy.exit_settings,
                    iterations=args.monte_carlo,
                    side=strategy.side,
                    initial_capital=args.capital,
                    lot_size=args.lot_size,
                    leverage=args.leverage,
                ),
                provider,
                actual=result.summary,
            )
            print(mc_results.summary())
            output['monte_carlo'] = mc_results.to_dict()

        if args.filters:
            analysis = FilterAnalyzer().analyze(result.trades, initial_capital=args.capital)
            print(analysis.summary())
            output['filter_analysis'] = analysis.to_dict()
    except BacktestError as e:
        logging.error("%s: %s", type(e).__name__, e)
        sys.exit(1)

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(output, f, indent=2, default=str)
        print(f"\nResults written to: {output_path}")

    if args.csv and not result.trades_df.empty:
        csv_path = Path(args.csv)
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        result.trades_df.to_csv(csv_path, index=False)
        print(f"\nTrades exported to: {csv_path}")

    return output


if __name__ == '__main__':
    main()
