"""Core signal logic: indicators, patterns, composition and validation.

This package contains pure business logic with no I/O dependencies.
It is shared by the signal pipeline and the backtesting system (backtest/).
"""
