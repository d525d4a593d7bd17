"""End-to-end signal pipeline.

candles -> indicators -> patterns -> composer -> (optional) validator
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from core.composer import ComposeContext, SignalComposer
from core.indicators.indicators import IndicatorCalculator, IndicatorSet
from core.models.candle import Candle
from core.models.config import PatternConfig, StrategyConfig
from core.models.market import MarketData, MarketRegime
from core.models.signal import Pattern, SignalType, TradingSignal
from core.patterns import PatternDetector
from core.regime import MarketRegimeAnalyzer
from core.validator import SignalValidator, ValidationResult
from core.volume import normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PipelineResult:
    signal: TradingSignal
    indicators: IndicatorSet | None = None
    patterns: list[Pattern] = field(default_factory=list)
    regime: MarketRegime | None = None
    validation: ValidationResult | None = None

    @property
    def should_save(self) -> bool:
        """Accepted by the validator (or no validator configured)."""
        if self.validation is None:
            return self.signal.is_actionable
        return self.validation.accepted


class SignalPipeline:
    """Compute a signal for the latest candle of a series."""

    def __init__(
        self,
        strategy: StrategyConfig | None = None,
        pattern_config: PatternConfig | None = None,
        validator: SignalValidator | None = None,
    ):
        self.strategy = strategy or StrategyConfig()
        self.calculator = IndicatorCalculator(self.strategy)
        self.detector = PatternDetector(pattern_config)
        self.composer = SignalComposer(self.strategy)
        self.regime_analyzer = MarketRegimeAnalyzer()
        self.validator = validator

    def evaluate(
        self,
        candles: Sequence[Candle],
        pair: str | None = None,
        market_data: Sequence[MarketData] | None = None,
        now: float | None = None,
    ) -> PipelineResult:
        """Run every stage. ``now`` (unix seconds) is passed to the validator."""
        if not candles:
            return PipelineResult(signal=TradingSignal.neutral(pair=pair or ""))

        indicators = self.calculator.calculate(candles)
        patterns = self.detector.detect(candles)
        regime = self.regime_analyzer.analyze(market_data) if market_data else None

        volume_24h = None
        if market_data and pair:
            for market in market_data:
                if normalize_symbol(market.symbol) == normalize_symbol(pair):
                    volume_24h = market.volume_24h
                    break

        signal = self.composer.compose(
            candles,
            indicators,
            patterns,
            ComposeContext(pair=pair, regime=regime, volume_24h=volume_24h),
        )

        validation = None
        if self.validator is not None and signal.type != SignalType.NEUTRAL:
            validation = self.validator.validate(signal, pair or "", now=now)

        return PipelineResult(
            signal=signal,
            indicators=indicators,
            patterns=patterns,
            regime=regime,
            validation=validation,
        )

    def generate_signal(self, candles: Sequence[Candle], pair: str | None = None) -> TradingSignal:
        """Signal only; the default signal source for the backtester."""
        return self.evaluate(candles, pair).signal
