"""Market regime analysis across the major pairs.

Reads 24h changes of the major pairs and recommends a directional bias
that the signal composer applies as buy/sell score multipliers.
"""

from __future__ import annotations

import logging
from typing import Sequence

from core.models.market import MarketBias, MarketData, MarketRegime, MarketTrend, RiskLevel
from core.volume import normalize_symbol

logger = logging.getLogger(__name__)

MAJOR_BASES = ("BTC", "ETH", "BNB", "SOL", "ADA")

STRONG_MOVE_PCT = 3.0
HIGH_RISK_MOVE_PCT = 8.0
MEDIUM_RISK_MOVE_PCT = 4.0

# (buy, sell) score multipliers per trend
_BIAS_MULTIPLIERS = {
    MarketTrend.STRONG_BULLISH: (1.25, 0.75),
    MarketTrend.BULLISH: (1.15, 0.85),
    MarketTrend.SIDEWAYS: (1.0, 1.0),
    MarketTrend.BEARISH: (0.85, 1.15),
    MarketTrend.STRONG_BEARISH: (0.75, 1.25),
}


class MarketRegimeAnalyzer:
    """Classify the overall market trend from 24h ticker snapshots."""

    def __init__(self, major_bases: Sequence[str] = MAJOR_BASES):
        self.major_bases = tuple(major_bases)

    def _majors(self, markets: Sequence[MarketData]) -> list[MarketData]:
        majors = [
            m for m in markets
            if normalize_symbol(m.symbol).split("/")[0] in self.major_bases
        ]
        return majors or list(markets)

    def analyze(self, markets: Sequence[MarketData]) -> MarketRegime:
        """Aggregate trend, strength, risk and recommended bias."""
        majors = self._majors(markets)
        if not majors:
            return MarketRegime()

        changes = [m.change_24h for m in majors]
        bullish = sum(1 for c in changes if c > 0)
        bearish = sum(1 for c in changes if c < 0)
        strong_bullish = sum(1 for c in changes if c > STRONG_MOVE_PCT)
        strong_bearish = sum(1 for c in changes if c < -STRONG_MOVE_PCT)
        average = sum(changes) / len(changes)

        if strong_bullish >= 3 or (bullish >= 4 and average > STRONG_MOVE_PCT):
            trend = MarketTrend.STRONG_BULLISH
        elif strong_bearish >= 3 or (bearish >= 4 and average < -STRONG_MOVE_PCT):
            trend = MarketTrend.STRONG_BEARISH
        elif bullish >= 3 or average > 1.0:
            trend = MarketTrend.BULLISH
        elif bearish >= 3 or average < -1.0:
            trend = MarketTrend.BEARISH
        else:
            trend = MarketTrend.SIDEWAYS

        strength = min(abs(average) / 5.0, 1.0)
        largest_move = max(abs(c) for c in changes)
        if largest_move > HIGH_RISK_MOVE_PCT:
            risk = RiskLevel.HIGH
        elif largest_move > MEDIUM_RISK_MOVE_PCT:
            risk = RiskLevel.MEDIUM
        else:
            risk = RiskLevel.LOW

        if trend in (MarketTrend.STRONG_BULLISH, MarketTrend.BULLISH):
            bias = MarketBias.BUY_BIAS
        elif trend in (MarketTrend.STRONG_BEARISH, MarketTrend.BEARISH):
            bias = MarketBias.SELL_BIAS
        else:
            bias = MarketBias.NEUTRAL_BIAS
        confidence = 0.5 + 0.5 * strength if bias != MarketBias.NEUTRAL_BIAS else 0.5

        regime = MarketRegime(
            overall_trend=trend,
            trend_strength=strength,
            risk_level=risk,
            recommended_bias=bias,
            confidence=confidence,
            bullish_count=bullish,
            bearish_count=bearish,
            average_change=average,
        )
        logger.debug(
            f"Market regime: {trend.value} strength={strength:.2f} "
            f"risk={risk.value} bias={bias.value}"
        )
        return regime

    @staticmethod
    def bias_multipliers(regime: MarketRegime | None) -> tuple[float, float]:
        """(buy, sell) score multipliers for a regime."""
        if regime is None:
            return 1.0, 1.0
        return _BIAS_MULTIPLIERS[regime.overall_trend]
