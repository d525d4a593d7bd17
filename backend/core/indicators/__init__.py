"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    BollingerBands,
    IndicatorCalculator,
    IndicatorSet,
    MACDResult,
    StochasticResult,
    adx,
    atr,
    bollinger_bands,
    cci,
    ema,
    last_value,
    macd,
    rsi,
    sma,
    stochastic,
    true_range,
    vwap,
    williams_r,
)

__all__ = [
    "BollingerBands",
    "IndicatorCalculator",
    "IndicatorSet",
    "MACDResult",
    "StochasticResult",
    "adx",
    "atr",
    "bollinger_bands",
    "cci",
    "ema",
    "last_value",
    "macd",
    "rsi",
    "sma",
    "stochastic",
    "true_range",
    "vwap",
    "williams_r",
]
