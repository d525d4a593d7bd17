"""Signal and pattern data models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SignalType(str, Enum):
    """Signal direction."""

    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"

    def opposite(self) -> SignalType:
        if self is SignalType.BUY:
            return SignalType.SELL
        if self is SignalType.SELL:
            return SignalType.BUY
        return SignalType.NEUTRAL


class Pattern(BaseModel):
    """A candlestick pattern detected on the last 1-3 candles of a window."""

    model_config = ConfigDict(frozen=True)

    name: str
    direction: SignalType
    confidence: float
    tier: int = 3
    volume_confirmed: bool = False
    suggested_entry: float
    suggested_stop_loss: float
    suggested_take_profit: float
    risk_reward: float

    @property
    def strength(self) -> float:
        """Confidence on a 0-100 scale."""
        return self.confidence * 100


class TradingSignal(BaseModel):
    """Composed trading signal with levels and sizing.

    For BUY: stop_loss < entry < take_profit.
    For SELL: take_profit < entry < stop_loss.
    NEUTRAL signals carry zero levels and are never actionable.
    """

    model_config = ConfigDict(frozen=True)

    type: SignalType = SignalType.NEUTRAL
    confidence: float = Field(default=0.0, ge=0, le=1, allow_inf_nan=False)
    patterns: list[str] = Field(default_factory=list)
    entry: float = 0.0
    stop_loss: float = 0.0
    take_profit: float = 0.0
    risk_reward: float = 0.0
    leverage: int = 1
    position_size: float = 0.0  # percent of capital
    fees: float = 0.0
    net_profit: float = 0.0
    net_loss: float = 0.0
    timestamp: int = 0  # ms of the candle the signal was computed on
    pair: str = ""
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def neutral(cls, timestamp: int = 0, pair: str = "", reason: str | None = None) -> TradingSignal:
        """Canonical non-actionable signal."""
        return cls(
            timestamp=timestamp,
            pair=pair,
            reasons=[reason] if reason else [],
        )

    @property
    def is_actionable(self) -> bool:
        """BUY/SELL with strictly ordered, positive levels."""
        if self.type == SignalType.NEUTRAL:
            return False
        return self.levels_consistent

    @property
    def levels_consistent(self) -> bool:
        values = (self.entry, self.stop_loss, self.take_profit)
        if not all(math.isfinite(v) and v > 0 for v in values):
            return False
        if self.type == SignalType.BUY:
            return self.stop_loss < self.entry < self.take_profit
        if self.type == SignalType.SELL:
            return self.take_profit < self.entry < self.stop_loss
        return False

    @property
    def risk_amount(self) -> float:
        """Get the risk amount (distance to stop loss)."""
        return abs(self.entry - self.stop_loss)

    @property
    def reward_amount(self) -> float:
        """Get the reward amount (distance to take profit)."""
        return abs(self.take_profit - self.entry)


@dataclass(slots=True, frozen=True)
class SignalFingerprint:
    """Coarse summary of an accepted signal used for duplicate suppression."""

    pair: str
    type: SignalType
    rounded_confidence: float
    entry_bucket: float
    confidence: float
    entry: float
    recorded_at: float  # unix seconds

    @property
    def key(self) -> tuple[str, str, float, float]:
        return (self.pair, self.type.value, self.rounded_confidence, self.entry_bucket)

    def is_near(
        self,
        other: SignalFingerprint,
        confidence_delta: float,
        price_delta_pct: float,
    ) -> bool:
        """Same pair and type with small confidence and entry deltas."""
        if self.pair != other.pair or self.type != other.type:
            return False
        if self.key == other.key:
            return True
        return (
            abs(self.confidence - other.confidence) < confidence_delta
            and abs(self.entry - other.entry) < self.entry * price_delta_pct
        )
