"""Candlestick (OHLCV) data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    """One OHLCV bar. Timestamp is epoch milliseconds."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        """Check if this is a bullish (green) candle."""
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        """Check if this is a bearish (red) candle."""
        return self.close < self.open

    @property
    def body_size(self) -> float:
        """Get the absolute size of the candle body."""
        return abs(self.close - self.open)

    @property
    def range_size(self) -> float:
        """Get the full range (high - low) of the candle."""
        return self.high - self.low

    @property
    def upper_shadow(self) -> float:
        return self.high - max(self.open, self.close)

    @property
    def lower_shadow(self) -> float:
        return min(self.open, self.close) - self.low

    @property
    def midpoint(self) -> float:
        """Midpoint of the body."""
        return (self.open + self.close) / 2


@dataclass(slots=True)
class CandleArrays:
    """Column view of a candle series as float64 arrays."""

    timestamps: np.ndarray
    opens: np.ndarray
    highs: np.ndarray
    lows: np.ndarray
    closes: np.ndarray
    volumes: np.ndarray

    def __len__(self) -> int:
        return len(self.closes)

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> CandleArrays:
        return cls(
            timestamps=np.array([c.timestamp for c in candles], dtype=np.int64),
            opens=np.array([c.open for c in candles], dtype=np.float64),
            highs=np.array([c.high for c in candles], dtype=np.float64),
            lows=np.array([c.low for c in candles], dtype=np.float64),
            closes=np.array([c.close for c in candles], dtype=np.float64),
            volumes=np.array([c.volume for c in candles], dtype=np.float64),
        )
