"""Backtesting system for the candlestick signal engine.

Only depends on core/ for business logic. Candles come from CSV/JSON
files; results are printed and optionally exported as JSON.

Usage:
    python -m backtest --candles data/btc_1h.csv --pair BTC/USDT
"""

from backtest.config import BacktestConfig, BacktestSettings
from backtest.engine import BacktestSimulator
from backtest.stats import BacktestResults

__all__ = ["BacktestConfig", "BacktestSettings", "BacktestSimulator", "BacktestResults"]
