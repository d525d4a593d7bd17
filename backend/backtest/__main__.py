"""CLI entry point for the backtesting system.

Usage:
    python -m backtest --candles data/btc_1h.csv --pair BTC/USDT
    python -m backtest --candles data/eth_1h.json --pair ETH/USDT --config backtest.yaml
    python -m backtest --candles data/btc_1h.csv --start 2025-01-01 --end 2025-06-30 -o results.json
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add backend to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from core.errors import InsufficientDataError, InvalidConfigError
from core.pipeline import SignalPipeline
from core.validator import SignalValidator

from backtest.config import get_backtest_settings, load_backtest_config
from backtest.data_loader import load_candles
from backtest.engine import BacktestSimulator
from backtest.report import ReportFormatter

logger = logging.getLogger("backtest")


def parse_date(date_str: str) -> datetime:
    """Parse YYYY-MM-DD to timezone-aware datetime."""
    try:
        dt = datetime.strptime(date_str, "%Y-%m-%d")
        return dt.replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid date format: {date_str} (expected YYYY-MM-DD)"
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Backtest the candlestick signal engine on historical candles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m backtest --candles data/btc_1h.csv --pair BTC/USDT
  python -m backtest --candles data/btc_1h.csv --config backtest.yaml -o results.json
  python -m backtest --candles data/btc_1h.csv --start 2025-01-01 --end 2025-06-30
        """,
    )
    parser.add_argument(
        "--candles",
        type=Path,
        required=True,
        help="CSV or JSON file with timestamp/open/high/low/close/volume columns",
    )
    parser.add_argument(
        "--pair",
        type=str,
        default="BTC/USDT",
        help="Instrument name (default: BTC/USDT)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Backtest YAML config (run, strategy, patterns, validator sections)",
    )
    parser.add_argument(
        "--start",
        type=parse_date,
        default=None,
        help="Start date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--end",
        type=parse_date,
        default=None,
        help="End date (YYYY-MM-DD), inclusive",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output file path for JSON results",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose logging",
    )
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if args.config is not None:
        load_dotenv(args.config.parent / ".env", override=False)
    settings = get_backtest_settings()
    file_config = load_backtest_config(args.config)

    # CLI dates override the config file's range
    updates = {}
    if args.start is not None:
        updates["start_time"] = int(args.start.timestamp() * 1000)
    if args.end is not None:
        updates["end_time"] = int(args.end.timestamp() * 1000) + 24 * 60 * 60 * 1000 - 1
    config = file_config.backtest.model_copy(update=updates)

    candles = load_candles(args.candles)
    pipeline = SignalPipeline(file_config.strategy, file_config.patterns)
    validator = SignalValidator(file_config.validator) if file_config.validator else None

    simulator = BacktestSimulator(
        config=config,
        pair=args.pair,
        settings=settings,
        validator=validator,
        pipeline=pipeline,
    )

    def on_progress(fraction: float) -> None:
        logger.info(f"Progress: {fraction:.0%}")

    try:
        result = await simulator.run(candles, on_progress=on_progress)
    except (InsufficientDataError, InvalidConfigError) as e:
        logger.error(str(e))
        return 1

    ReportFormatter.print_console(result)
    if args.output:
        ReportFormatter.save_json(result, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
