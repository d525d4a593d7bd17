"""Value objects shared by the signal pipeline and the backtester."""

from core.models.candle import Candle, CandleArrays
from core.models.config import (
    PatternConfig,
    StrategyConfig,
    ValidatorConfig,
    VolumeExpectation,
)
from core.models.market import MarketBias, MarketData, MarketRegime, MarketTrend, RiskLevel
from core.models.signal import Pattern, SignalFingerprint, SignalType, TradingSignal

__all__ = [
    "Candle",
    "CandleArrays",
    "PatternConfig",
    "StrategyConfig",
    "ValidatorConfig",
    "VolumeExpectation",
    "MarketBias",
    "MarketData",
    "MarketRegime",
    "MarketTrend",
    "RiskLevel",
    "Pattern",
    "SignalFingerprint",
    "SignalType",
    "TradingSignal",
]
