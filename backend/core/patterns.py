"""Candlestick pattern detection.

Scans the last one to three candles of a window for named reversal and
continuation shapes. The trailing window supplies context: average volume
for confirmation, and pivot support/resistance levels for the patterns
that only count near a level (hammer at support, shooting star at
resistance, doji variants, ...).

Reliability tiers are descriptive metadata carried on each Pattern. Volume
confirmation raises confidence but never gates detection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from core.models.candle import Candle
from core.models.config import PatternConfig
from core.models.signal import Pattern, SignalType

logger = logging.getLogger(__name__)

BUY = SignalType.BUY
SELL = SignalType.SELL


@dataclass(slots=True)
class PatternContext:
    """Trailing-window context for the pattern rules."""

    average_volume: float = 0.0
    support: list[float] = field(default_factory=list)
    resistance: list[float] = field(default_factory=list)


@dataclass(slots=True)
class _Match:
    name: str
    direction: SignalType
    tier: int
    base_confidence: float
    candles: list[Candle]
    strong_volume: bool = False


class PatternDetector:
    """Detect candlestick patterns on the tail of a candle window."""

    def __init__(self, config: PatternConfig | None = None):
        self.config = config or PatternConfig()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect(self, candles: Sequence[Candle]) -> list[Pattern]:
        """Return all patterns ending at the last candle, tier 1 first.

        Fewer than three candles simply skips the multi-candle rules.
        """
        if not candles:
            return []

        context = self.build_context(candles)
        matches = self._single_bar(candles[-1], context)
        if len(candles) >= 2:
            matches += self._double_bar(candles[-2], candles[-1])
        if len(candles) >= 3:
            matches += self._triple_bar(candles[-3], candles[-2], candles[-1])

        matches.sort(key=lambda m: m.tier)
        patterns = [self._to_pattern(m, candles[-1], context) for m in matches]
        if patterns:
            logger.debug(
                "Detected patterns at %d: %s",
                candles[-1].timestamp,
                ", ".join(p.name for p in patterns),
            )
        return patterns

    def build_context(self, candles: Sequence[Candle]) -> PatternContext:
        window = candles[-self.config.volume_window:]
        average_volume = sum(c.volume for c in window) / len(window)
        support, resistance = self.support_resistance(candles)
        return PatternContext(
            average_volume=average_volume,
            support=support,
            resistance=resistance,
        )

    def support_resistance(self, candles: Sequence[Candle]) -> tuple[list[float], list[float]]:
        """Pivot lows/highs over the lookback window, most recent last.

        A pivot is strictly lower (higher) than ``level_pivot_bars`` candles
        on each side. Returns empty lists with fewer than
        ``min_level_candles`` candles.
        """
        cfg = self.config
        if len(candles) < cfg.min_level_candles:
            return [], []

        window = list(candles[-cfg.level_lookback:])
        bars = cfg.level_pivot_bars
        support: list[float] = []
        resistance: list[float] = []
        for i in range(bars, len(window) - bars):
            neighbours = window[i - bars:i] + window[i + 1:i + bars + 1]
            if all(window[i].low < n.low for n in neighbours):
                support.append(window[i].low)
            if all(window[i].high > n.high for n in neighbours):
                resistance.append(window[i].high)
        return support[-cfg.max_levels:], resistance[-cfg.max_levels:]

    def is_near(self, price: float, levels: list[float]) -> bool:
        tolerance = self.config.level_tolerance
        return any(level > 0 and abs(price - level) / level <= tolerance for level in levels)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _single_bar(self, c: Candle, ctx: PatternContext) -> list[_Match]:
        """Detect one-bar patterns on the last candle."""
        matches: list[_Match] = []
        rng = c.range_size
        if rng <= 0:
            return matches

        body = c.body_size
        upper, lower = c.upper_shadow, c.lower_shadow
        body_ratio = body / rng
        near_support = self.is_near(c.low, ctx.support)
        near_resistance = self.is_near(c.high, ctx.resistance)

        # Doji family
        if body_ratio < 0.1:
            if lower > 0.6 * rng and upper < 0.1 * rng and near_support:
                matches.append(_Match("Dragonfly Doji", BUY, 1, 0.72, [c]))
            if upper > 0.6 * rng and lower < 0.1 * rng and near_resistance:
                matches.append(_Match("Gravestone Doji", SELL, 1, 0.70, [c]))
            return matches

        # Hammer shape: long lower shadow
        if lower > 2 * body and upper < 0.5 * body:
            if near_support:
                matches.append(_Match("Hammer at Support", BUY, 2, 0.71, [c]))
            if near_resistance:
                matches.append(_Match("Hanging Man at Top", SELL, 3, 0.61, [c]))

        # Inverted hammer shape: long upper shadow
        if upper > 2 * body and lower < 0.5 * body:
            if near_resistance:
                matches.append(_Match("Shooting Star at Resistance", SELL, 2, 0.69, [c]))
            if near_support:
                matches.append(_Match("Inverted Hammer Reversal", BUY, 3, 0.62, [c]))

        # Marubozu
        if body_ratio > 0.9 and upper < 0.05 * rng and lower < 0.05 * rng:
            if c.is_bullish:
                matches.append(_Match("Bullish Marubozu", BUY, 3, 0.65, [c], strong_volume=True))
            elif c.is_bearish:
                matches.append(_Match("Bearish Marubozu", SELL, 3, 0.63, [c], strong_volume=True))

        return matches

    def _double_bar(self, prev: Candle, curr: Candle) -> list[_Match]:
        """Detect two-bar patterns ending at the last candle."""
        matches: list[_Match] = []
        body_prev = prev.body_size
        body_now = curr.body_size
        if body_prev == 0 or curr.range_size <= 0:
            return matches

        # Bullish Engulfing
        if (prev.is_bearish and curr.is_bullish
                and curr.open <= prev.close and curr.close > prev.open
                and body_now > 1.1 * body_prev):
            matches.append(_Match("Bullish Engulfing", BUY, 1, 0.78, [prev, curr]))

        # Bearish Engulfing
        elif (prev.is_bullish and curr.is_bearish
                and curr.open >= prev.close and curr.close < prev.open
                and body_now > 1.1 * body_prev):
            matches.append(_Match("Bearish Engulfing", SELL, 1, 0.76, [prev, curr]))

        # Piercing Pattern
        elif (prev.is_bearish and curr.is_bullish
                and curr.open < prev.close
                and prev.midpoint < curr.close < prev.open):
            matches.append(_Match("Piercing Pattern", BUY, 2, 0.68, [prev, curr]))

        # Dark Cloud Cover
        elif (prev.is_bullish and curr.is_bearish
                and curr.open > prev.close
                and prev.open < curr.close < prev.midpoint):
            matches.append(_Match("Dark Cloud Cover", SELL, 2, 0.66, [prev, curr]))

        return matches

    def _triple_bar(self, first: Candle, second: Candle, third: Candle) -> list[_Match]:
        """Detect three-bar patterns ending at the last candle."""
        matches: list[_Match] = []
        bars = [first, second, third]
        if any(c.range_size <= 0 for c in bars):
            return matches

        body1, body2, body3 = first.body_size, second.body_size, third.body_size

        # Morning Star
        if (first.is_bearish and third.is_bullish
                and body2 < 0.5 * body1 and body3 > 0.6 * body1
                and third.close > first.midpoint):
            matches.append(_Match("Morning Star", BUY, 1, 0.83, bars))

        # Evening Star
        elif (first.is_bullish and third.is_bearish
                and body2 < 0.5 * body1 and body3 > 0.6 * body1
                and third.close < first.midpoint):
            matches.append(_Match("Evening Star", SELL, 1, 0.81, bars))

        # Three White Soldiers
        if (all(c.is_bullish for c in bars)
                and first.close < second.close < third.close
                and first.open < second.open <= first.close
                and second.open < third.open <= second.close):
            matches.append(_Match("Three White Soldiers", BUY, 2, 0.74, bars))

        # Three Black Crows
        elif (all(c.is_bearish for c in bars)
                and first.close > second.close > third.close
                and first.close <= second.open < first.open
                and second.close <= third.open < second.open):
            matches.append(_Match("Three Black Crows", SELL, 2, 0.72, bars))

        return matches

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def _to_pattern(self, match: _Match, last: Candle, ctx: PatternContext) -> Pattern:
        cfg = self.config
        required = cfg.strong_volume_ratio if match.strong_volume else cfg.volume_confirmation_ratio
        ratio = last.volume / ctx.average_volume if ctx.average_volume > 0 else 0.0
        confirmed = ratio >= required

        confidence = match.base_confidence
        if not confirmed:
            confidence *= cfg.unconfirmed_volume_factor
        confidence = min(confidence, cfg.max_confidence)

        entry = last.close
        if match.direction == BUY:
            risk = max(entry - min(c.low for c in match.candles), entry * cfg.min_risk_pct)
            stop = entry - risk
            target = entry + risk * cfg.target_risk_reward
        else:
            risk = max(max(c.high for c in match.candles) - entry, entry * cfg.min_risk_pct)
            stop = entry + risk
            target = entry - risk * cfg.target_risk_reward

        return Pattern(
            name=match.name,
            direction=match.direction,
            confidence=confidence,
            tier=match.tier,
            volume_confirmed=confirmed,
            suggested_entry=entry,
            suggested_stop_loss=stop,
            suggested_take_profit=target,
            risk_reward=cfg.target_risk_reward,
        )
