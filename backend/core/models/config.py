"""Signal engine configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class VolumeExpectation(BaseModel):
    """Expected 24h quote volume for an instrument."""

    min: float
    realistic: float


DEFAULT_VOLUME_EXPECTATIONS: dict[str, VolumeExpectation] = {
    "BTC/USDT": VolumeExpectation(min=500_000_000, realistic=1_000_000_000),
    "ETH/USDT": VolumeExpectation(min=300_000_000, realistic=600_000_000),
    "ADA/USDT": VolumeExpectation(min=50_000_000, realistic=100_000_000),
    "SOL/USDT": VolumeExpectation(min=30_000_000, realistic=80_000_000),
    "XRP/USDT": VolumeExpectation(min=100_000_000, realistic=200_000_000),
    "DOGE/USDT": VolumeExpectation(min=200_000_000, realistic=500_000_000),
    "DOT/USDT": VolumeExpectation(min=20_000_000, realistic=50_000_000),
    "LINK/USDT": VolumeExpectation(min=15_000_000, realistic=40_000_000),
    "AVAX/USDT": VolumeExpectation(min=10_000_000, realistic=30_000_000),
}


class PatternConfig(BaseModel):
    """Candlestick pattern detection parameters."""

    # Average volume over the trailing window
    volume_window: int = 10
    volume_confirmation_ratio: float = 1.2
    strong_volume_ratio: float = 1.5  # marubozu
    unconfirmed_volume_factor: float = 0.75
    max_confidence: float = 0.95

    # Support/resistance pivots
    level_lookback: int = 50
    level_pivot_bars: int = 2
    max_levels: int = 3
    min_level_candles: int = 20
    level_tolerance: float = 0.02  # 2%

    # Suggested levels
    target_risk_reward: float = 2.0
    min_risk_pct: float = 0.005


class StrategyConfig(BaseModel):
    """Indicator periods, scoring weights and level/sizing parameters."""

    # Indicator periods
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    sma_period: int = 20
    ema_period: int = 12
    bb_period: int = 20
    bb_std_dev: float = 2.0
    stoch_k: int = 14
    stoch_d: int = 3
    williams_period: int = 14
    atr_period: int = 14
    adx_period: int = 14
    cci_period: int = 20

    # RSI zones
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_momentum_threshold: float = 2.0
    rsi_momentum_ceiling: float = 65.0
    rsi_momentum_floor: float = 35.0

    # Scoring weights (patterns dominate)
    pattern_weight: float = 3.0
    rsi_extreme_weight: float = 2.0
    rsi_momentum_weight: float = 1.0
    macd_crossover_weight: float = 2.0
    macd_position_weight: float = 1.0
    bollinger_band_weight: float = 1.5
    bollinger_middle_weight: float = 0.5
    volume_weight: float = 1.0
    momentum_weight: float = 1.0

    volume_confirmation_ratio: float = 1.2
    volume_average_window: int = 10
    momentum_threshold: float = 0.001  # 0.1% last-bar change

    # Classification
    min_score: float = 2.0
    min_margin: float = 1.0
    confidence_scale: float = 4.0
    max_confidence: float = 0.95

    # Stop/target ATR multipliers
    high_confidence_threshold: float = 0.6
    buy_sl_atr_mult: float = 1.2
    buy_tp_atr_mult: float = 3.0
    buy_sl_atr_mult_high: float = 0.8
    buy_tp_atr_mult_high: float = 4.0
    sell_sl_atr_mult: float = 1.3
    sell_tp_atr_mult: float = 2.8
    sell_sl_atr_mult_high: float = 0.9
    sell_tp_atr_mult_high: float = 3.6
    atr_fallback_pct: float = 0.02

    # Sizing
    min_leverage: int = 1
    max_leverage: int = 20
    min_position_pct: float = 0.5
    max_position_pct: float = 5.0
    target_risk_reward: float = 3.0

    # Fees (futures taker)
    taker_fee: float = 0.001
    reference_margin: float = 1000.0

    # Volume realism
    low_volume_confidence_factor: float = 0.85
    volume_expectations: dict[str, VolumeExpectation] = Field(
        default_factory=lambda: dict(DEFAULT_VOLUME_EXPECTATIONS)
    )
    default_volume_expectation: VolumeExpectation = VolumeExpectation(
        min=5_000_000, realistic=20_000_000
    )


class ValidatorConfig(BaseModel):
    """Static gates, cooldown and duplicate-suppression parameters."""

    # Static gates
    min_confidence: float = 0.3
    pair_min_confidence: dict[str, float] = Field(default_factory=dict)
    sell_confidence_multiplier: float = 1.0
    pattern_discount: float = 0.85
    min_risk_reward: float = 1.0
    high_confidence_threshold: float = 0.8

    # Cooldown per pair
    cooldown_seconds: float = 120.0

    # Fingerprint store
    retention_seconds: float = 900.0
    confidence_step: float = 0.05
    entry_significant_digits: int = 4
    duplicate_confidence_delta: float = 0.05
    duplicate_price_delta_pct: float = 0.001
    prune_interval_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings) -> ValidatorConfig:
        """Build from EngineSettings overrides."""
        return cls(
            cooldown_seconds=settings.cooldown_seconds,
            retention_seconds=settings.retention_seconds,
            min_confidence=settings.min_confidence,
            min_risk_reward=settings.min_risk_reward,
        )
