"""Per-symbol trading volume realism checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from core.models.candle import Candle
from core.models.config import StrategyConfig, VolumeExpectation

DAY_MS = 24 * 60 * 60 * 1000

_QUOTE_ASSETS = ("USDT", "USDC", "BUSD", "USD", "BTC", "ETH")


def normalize_symbol(symbol: str) -> str:
    """'btcusdt' / 'BTC-USDT' / 'BTC/USDT' -> 'BTC/USDT'."""
    s = symbol.upper().replace("-", "/").replace("_", "/")
    if "/" in s:
        return s
    for quote in _QUOTE_ASSETS:
        if s.endswith(quote) and len(s) > len(quote):
            return f"{s[:-len(quote)]}/{quote}"
    return s


@dataclass(slots=True, frozen=True)
class VolumeCheck:
    is_realistic: bool
    is_high: bool
    ratio: float  # volume / expected minimum
    expectation: VolumeExpectation


class VolumeValidator:
    """Compare realized 24h quote volume with per-symbol expectations."""

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def expectation(self, symbol: str) -> VolumeExpectation:
        return self.config.volume_expectations.get(
            normalize_symbol(symbol), self.config.default_volume_expectation
        )

    def validate(self, symbol: str, volume: float) -> VolumeCheck:
        expected = self.expectation(symbol)
        ratio = volume / expected.min if expected.min > 0 else 0.0
        return VolumeCheck(
            is_realistic=volume >= expected.min,
            is_high=volume >= expected.realistic,
            ratio=ratio,
            expectation=expected,
        )

    @staticmethod
    def realized_volume(candles: Sequence[Candle]) -> float:
        """Estimate 24h quote volume from the trailing candles.

        Sums close * volume over the last 24 hours of timestamps and scales
        the sum up when the series spans less than a day.
        """
        if not candles:
            return 0.0

        last = candles[-1].timestamp
        cutoff = last - DAY_MS
        recent = [c for c in candles if c.timestamp > cutoff]
        quote_volume = sum(c.close * c.volume for c in recent)

        if len(recent) >= 2:
            # Each candle covers one interval; n candles span n intervals
            interval = (recent[-1].timestamp - recent[0].timestamp) / (len(recent) - 1)
            covered = interval * len(recent)
            if 0 < covered < DAY_MS:
                quote_volume *= DAY_MS / covered
        return quote_volume
