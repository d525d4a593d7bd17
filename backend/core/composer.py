"""Signal composition.

Fuses indicator readings, detected patterns, volume context and an
optional market-regime bias into a single TradingSignal with entry,
stop-loss, take-profit, leverage and position size.

Scoring accumulates weighted evidence for each side; the difference
between the buy and sell scores is the signal scalar. Confidence is a
saturating function of that scalar, so it is bounded and monotonic.

Any arithmetic failure or non-finite intermediate value resolves to a
NEUTRAL signal with zero confidence.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from core.errors import DegenerateArithmeticError
from core.indicators.indicators import IndicatorSet, last_value
from core.models.candle import Candle
from core.models.config import StrategyConfig
from core.models.market import MarketRegime
from core.models.signal import Pattern, SignalType, TradingSignal
from core.regime import MarketRegimeAnalyzer
from core.volume import VolumeValidator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ComposeContext:
    """Optional context for a composition."""

    pair: str | None = None
    regime: MarketRegime | None = None
    volume_24h: float | None = None  # quote volume; estimated from candles when None


@dataclass(slots=True)
class ScoreBreakdown:
    """Accumulated buy/sell evidence with human-readable reasons."""

    buy: float = 0.0
    sell: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add(self, side: SignalType, weight: float, reason: str) -> None:
        if side == SignalType.BUY:
            self.buy += weight
        elif side == SignalType.SELL:
            self.sell += weight
        self.reasons.append(reason)

    @property
    def net(self) -> float:
        return self.buy - self.sell


def _is_nan(value: float) -> bool:
    return value is None or math.isnan(value)


class SignalComposer:
    """Combine indicators and patterns into one TradingSignal."""

    def __init__(
        self,
        config: StrategyConfig | None = None,
        volume_validator: VolumeValidator | None = None,
    ):
        self.config = config or StrategyConfig()
        self.volume_validator = volume_validator or VolumeValidator(self.config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compose(
        self,
        candles: Sequence[Candle],
        indicators: IndicatorSet,
        patterns: Sequence[Pattern],
        context: ComposeContext | None = None,
    ) -> TradingSignal:
        """Compose a signal for the last candle of ``candles``."""
        context = context or ComposeContext()
        pair = context.pair or ""
        if not candles:
            return TradingSignal.neutral(pair=pair, reason="no candles")

        try:
            return self._compose(candles, indicators, patterns, context)
        except (ArithmeticError, ValueError, DegenerateArithmeticError) as e:
            logger.warning(f"Signal composition failed for {pair or 'series'}: {e}; using NEUTRAL")
            return TradingSignal.neutral(
                timestamp=candles[-1].timestamp, pair=pair, reason=f"degenerate: {e}"
            )

    def score(
        self,
        candles: Sequence[Candle],
        indicators: IndicatorSet,
        patterns: Sequence[Pattern],
        regime: MarketRegime | None = None,
    ) -> ScoreBreakdown:
        """Weighted buy/sell evidence for the last candle."""
        cfg = self.config
        breakdown = ScoreBreakdown()

        for pattern in patterns:
            breakdown.add(
                pattern.direction,
                cfg.pattern_weight * pattern.confidence,
                f"{pattern.name} ({pattern.confidence:.0%})",
            )

        self._score_rsi(indicators, breakdown)
        self._score_macd(indicators, breakdown)
        self._score_bollinger(candles[-1].close, indicators, breakdown)
        self._score_volume(candles, breakdown)
        self._score_momentum(candles, breakdown)

        buy_mult, sell_mult = MarketRegimeAnalyzer.bias_multipliers(regime)
        breakdown.buy *= buy_mult
        breakdown.sell *= sell_mult
        if regime is not None and (buy_mult, sell_mult) != (1.0, 1.0):
            breakdown.reasons.append(f"Market regime {regime.overall_trend.value}")

        if not (math.isfinite(breakdown.buy) and math.isfinite(breakdown.sell)):
            raise DegenerateArithmeticError(
                f"non-finite score buy={breakdown.buy} sell={breakdown.sell}"
            )
        return breakdown

    def classify(self, breakdown: ScoreBreakdown) -> tuple[SignalType, float]:
        """Direction and confidence from a score breakdown."""
        cfg = self.config
        net = breakdown.net
        if breakdown.buy >= cfg.min_score and net >= cfg.min_margin:
            direction = SignalType.BUY
        elif breakdown.sell >= cfg.min_score and -net >= cfg.min_margin:
            direction = SignalType.SELL
        else:
            return SignalType.NEUTRAL, 0.0

        confidence = cfg.max_confidence * (1.0 - math.exp(-abs(net) / cfg.confidence_scale))
        return direction, min(max(confidence, 0.0), 0.95)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def _compose(
        self,
        candles: Sequence[Candle],
        indicators: IndicatorSet,
        patterns: Sequence[Pattern],
        context: ComposeContext,
    ) -> TradingSignal:
        cfg = self.config
        last = candles[-1]
        pair = context.pair or ""

        breakdown = self.score(candles, indicators, patterns, context.regime)
        direction, confidence = self.classify(breakdown)
        if direction == SignalType.NEUTRAL:
            return TradingSignal.neutral(timestamp=last.timestamp, pair=pair)

        reasons = list(breakdown.reasons)
        if context.pair:
            volume = context.volume_24h
            if volume is None:
                volume = self.volume_validator.realized_volume(candles)
            check = self.volume_validator.validate(context.pair, volume)
            if not check.is_realistic:
                confidence *= cfg.low_volume_confidence_factor
                reasons.append(
                    f"Low volume {volume:,.0f} < {check.expectation.min:,.0f}"
                )

        entry = last.close
        stop_loss, take_profit = self.calculate_levels(
            direction, entry, last_value(indicators.atr), confidence
        )
        risk = abs(entry - stop_loss)
        reward = abs(take_profit - entry)
        risk_reward = reward / risk
        leverage, position_size = self.calculate_sizing(confidence, risk_reward)

        notional = cfg.reference_margin * leverage
        fees = notional * cfg.taker_fee * 2
        net_profit = notional * reward / entry - fees
        net_loss = notional * risk / entry + fees

        signal = TradingSignal(
            type=direction,
            confidence=confidence,
            patterns=[p.name for p in patterns if p.direction == direction],
            entry=entry,
            stop_loss=stop_loss,
            take_profit=take_profit,
            risk_reward=risk_reward,
            leverage=leverage,
            position_size=position_size,
            fees=fees,
            net_profit=net_profit,
            net_loss=net_loss,
            timestamp=last.timestamp,
            pair=pair,
            reasons=reasons,
        )

        numeric = (confidence, stop_loss, take_profit, risk_reward, position_size, fees, net_profit, net_loss)
        if not all(math.isfinite(v) for v in numeric) or not signal.levels_consistent:
            raise DegenerateArithmeticError(
                f"inconsistent levels entry={entry} sl={stop_loss} tp={take_profit}"
            )

        logger.info(
            f"{direction.value} signal: {pair or 'series'} @ {entry} "
            f"TP={take_profit:.6g} SL={stop_loss:.6g} conf={confidence:.2f} lev={leverage}x"
        )
        return signal

    def calculate_levels(
        self,
        direction: SignalType,
        entry: float,
        atr_value: float,
        confidence: float,
    ) -> tuple[float, float]:
        """ATR-scaled stop-loss and take-profit.

        Falls back to ``entry * atr_fallback_pct`` when ATR is missing or 0.
        """
        cfg = self.config
        if _is_nan(atr_value) or not math.isfinite(atr_value) or atr_value <= 0:
            atr_value = entry * cfg.atr_fallback_pct

        high = confidence > cfg.high_confidence_threshold
        if direction == SignalType.BUY:
            sl_mult = cfg.buy_sl_atr_mult_high if high else cfg.buy_sl_atr_mult
            tp_mult = cfg.buy_tp_atr_mult_high if high else cfg.buy_tp_atr_mult
            return entry - atr_value * sl_mult, entry + atr_value * tp_mult

        sl_mult = cfg.sell_sl_atr_mult_high if high else cfg.sell_sl_atr_mult
        tp_mult = cfg.sell_tp_atr_mult_high if high else cfg.sell_tp_atr_mult
        return entry + atr_value * sl_mult, entry - atr_value * tp_mult

    def calculate_sizing(self, confidence: float, risk_reward: float) -> tuple[int, float]:
        """Deterministic leverage and position size (percent of capital)."""
        cfg = self.config
        quality = confidence * min(risk_reward / cfg.target_risk_reward, 1.0)
        quality = min(max(quality, 0.0), 1.0)

        leverage = round(cfg.min_leverage + (cfg.max_leverage - cfg.min_leverage) * quality)
        leverage = min(max(leverage, cfg.min_leverage), cfg.max_leverage)

        position = cfg.min_position_pct + (cfg.max_position_pct - cfg.min_position_pct) * quality
        position = min(max(position, cfg.min_position_pct), cfg.max_position_pct)
        return int(leverage), position

    # ------------------------------------------------------------------
    # Sub-scores
    # ------------------------------------------------------------------

    def _score_rsi(self, indicators: IndicatorSet, breakdown: ScoreBreakdown) -> None:
        cfg = self.config
        now = last_value(indicators.rsi)
        prev = last_value(indicators.rsi, 2)
        if _is_nan(now) or _is_nan(prev):
            return

        if now < cfg.rsi_oversold and now > prev:
            breakdown.add(SignalType.BUY, cfg.rsi_extreme_weight, f"RSI oversold and rising ({now:.1f})")
        elif now > cfg.rsi_overbought and now < prev:
            breakdown.add(SignalType.SELL, cfg.rsi_extreme_weight, f"RSI overbought and falling ({now:.1f})")

        momentum = now - prev
        if momentum > cfg.rsi_momentum_threshold and now < cfg.rsi_momentum_ceiling:
            breakdown.add(SignalType.BUY, cfg.rsi_momentum_weight, f"RSI momentum +{momentum:.1f}")
        elif momentum < -cfg.rsi_momentum_threshold and now > cfg.rsi_momentum_floor:
            breakdown.add(SignalType.SELL, cfg.rsi_momentum_weight, f"RSI momentum {momentum:.1f}")

    def _score_macd(self, indicators: IndicatorSet, breakdown: ScoreBreakdown) -> None:
        cfg = self.config
        line, signal = indicators.macd.line, indicators.macd.signal
        if len(signal) < 2:
            return
        line = line[len(line) - len(signal):]
        now_line, prev_line = float(line[-1]), float(line[-2])
        now_signal, prev_signal = float(signal[-1]), float(signal[-2])

        if prev_line <= prev_signal and now_line > now_signal:
            breakdown.add(SignalType.BUY, cfg.macd_crossover_weight, "MACD bullish crossover")
        elif prev_line >= prev_signal and now_line < now_signal:
            breakdown.add(SignalType.SELL, cfg.macd_crossover_weight, "MACD bearish crossover")

        if now_line > now_signal and now_line > 0:
            breakdown.add(SignalType.BUY, cfg.macd_position_weight, "MACD above signal and zero")
        elif now_line < now_signal and now_line < 0:
            breakdown.add(SignalType.SELL, cfg.macd_position_weight, "MACD below signal and zero")

    def _score_bollinger(self, close: float, indicators: IndicatorSet, breakdown: ScoreBreakdown) -> None:
        cfg = self.config
        bands = indicators.bollinger
        upper, middle, lower = last_value(bands.upper), last_value(bands.middle), last_value(bands.lower)
        if _is_nan(upper) or upper - lower <= 0:
            return

        if close <= lower:
            breakdown.add(SignalType.BUY, cfg.bollinger_band_weight, "Price at lower Bollinger band")
        elif close >= upper:
            breakdown.add(SignalType.SELL, cfg.bollinger_band_weight, "Price at upper Bollinger band")
        elif close > middle:
            breakdown.add(SignalType.BUY, cfg.bollinger_middle_weight, "Price above Bollinger middle")
        elif close < middle:
            breakdown.add(SignalType.SELL, cfg.bollinger_middle_weight, "Price below Bollinger middle")

    def _score_volume(self, candles: Sequence[Candle], breakdown: ScoreBreakdown) -> None:
        cfg = self.config
        window = candles[-cfg.volume_average_window:]
        average = sum(c.volume for c in window) / len(window)
        last = candles[-1]
        if average <= 0 or last.volume <= cfg.volume_confirmation_ratio * average:
            return

        if last.is_bullish:
            breakdown.add(SignalType.BUY, cfg.volume_weight, f"Volume {last.volume / average:.1f}x average")
        elif last.is_bearish:
            breakdown.add(SignalType.SELL, cfg.volume_weight, f"Volume {last.volume / average:.1f}x average")

    def _score_momentum(self, candles: Sequence[Candle], breakdown: ScoreBreakdown) -> None:
        cfg = self.config
        if len(candles) < 2 or candles[-2].close <= 0:
            return

        change = (candles[-1].close - candles[-2].close) / candles[-2].close
        if change > cfg.momentum_threshold:
            breakdown.add(SignalType.BUY, cfg.momentum_weight, f"Price momentum {change:+.2%}")
        elif change < -cfg.momentum_threshold:
            breakdown.add(SignalType.SELL, cfg.momentum_weight, f"Price momentum {change:+.2%}")
