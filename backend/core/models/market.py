"""Market snapshot and regime models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict


class MarketTrend(str, Enum):
    STRONG_BULLISH = "STRONG_BULLISH"
    BULLISH = "BULLISH"
    SIDEWAYS = "SIDEWAYS"
    BEARISH = "BEARISH"
    STRONG_BEARISH = "STRONG_BEARISH"


class MarketBias(str, Enum):
    BUY_BIAS = "BUY_BIAS"
    SELL_BIAS = "SELL_BIAS"
    NEUTRAL_BIAS = "NEUTRAL_BIAS"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class MarketData(BaseModel):
    """24h ticker snapshot for one instrument."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    price: float
    change_24h: float = 0.0  # percent
    volume_24h: float = 0.0  # quote currency
    high_24h: float = 0.0
    low_24h: float = 0.0


class MarketRegime(BaseModel):
    """Aggregate trend read across the major pairs."""

    model_config = ConfigDict(frozen=True)

    overall_trend: MarketTrend = MarketTrend.SIDEWAYS
    trend_strength: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW
    recommended_bias: MarketBias = MarketBias.NEUTRAL_BIAS
    confidence: float = 0.5
    bullish_count: int = 0
    bearish_count: int = 0
    average_change: float = 0.0
