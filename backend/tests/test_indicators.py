"""Tests for technical indicators."""

import math

import numpy as np
import pytest

from core.indicators import (
    IndicatorCalculator,
    adx,
    atr,
    bollinger_bands,
    cci,
    ema,
    macd,
    rsi,
    sma,
    stochastic,
    true_range,
    vwap,
    williams_r,
)
from core.models.candle import Candle

BASE_TS = 1_735_689_600_000  # 2025-01-01 00:00 UTC
HOUR = 3_600_000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def rising_candles(n: int = 60, start: float = 100.0, step: float = 0.01) -> list[Candle]:
    """Each close is ``step`` above the previous one; no shadows."""
    candles = []
    price = start
    for i in range(n):
        close = price * (1 + step)
        candles.append(Candle(
            timestamp=BASE_TS + i * HOUR,
            open=price, high=close, low=price, close=close, volume=1000.0,
        ))
        price = close
    return candles


def flat_candles(n: int = 60, price: float = 100.0) -> list[Candle]:
    return [
        Candle(timestamp=BASE_TS + i * HOUR, open=price, high=price, low=price, close=price, volume=1000.0)
        for i in range(n)
    ]


def random_walk(n: int = 200, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return 100 + np.cumsum(rng.normal(0, 1, n))


class TestSMA:
    """Tests for SMA calculation."""

    def test_sma_basic(self):
        result = sma([float(i) for i in range(1, 11)], 3)

        assert len(result) == 8
        assert result[0] == pytest.approx(2.0)
        assert result[1] == pytest.approx(3.0)
        assert result[-1] == pytest.approx(9.0)

    def test_sma_insufficient_data(self):
        assert len(sma([1.0, 2.0], 3)) == 0


class TestEMA:
    """Tests for EMA calculation."""

    def test_ema_seeded_with_sma(self):
        result = ema([float(i) for i in range(1, 11)], 5)

        assert len(result) == 6
        # First value is SMA of first 5 = 3
        assert result[0] == pytest.approx(3.0)
        # (6 - 3) * 2/6 + 3 = 4
        assert result[1] == pytest.approx(4.0)
        assert all(np.diff(result) > 0)

    def test_ema_insufficient_data(self):
        assert len(ema([100.0, 101.0, 102.0], 10)) == 0


class TestRSI:
    """Tests for RSI (Wilder smoothing)."""

    def test_rsi_bounded(self):
        result = rsi(random_walk(), 14)

        assert len(result) == 200 - 14
        assert np.all(result >= 0)
        assert np.all(result <= 100)

    def test_rsi_wilder_smoothing(self):
        # deltas +1 -1 +1 -1; seed gain 0.5 / loss 0.5
        result = rsi([1.0, 2.0, 1.0, 2.0, 1.0], 2)

        assert len(result) == 3
        assert result[0] == pytest.approx(50.0)
        assert result[1] == pytest.approx(75.0)
        assert result[2] == pytest.approx(37.5)

    def test_rsi_only_gains_is_100(self):
        closes = [c.close for c in rising_candles()]
        result = rsi(closes, 14)
        assert np.all(result == 100.0)

    def test_rsi_flat_series_is_50(self):
        result = rsi([100.0] * 30, 14)
        assert np.all(result == 50.0)

    def test_rsi_needs_period_plus_one(self):
        assert len(rsi([100.0] * 14, 14)) == 0
        assert len(rsi([100.0] * 15, 14)) == 1


class TestMACD:
    """Tests for MACD line/signal/histogram."""

    def test_macd_lengths_and_alignment(self):
        closes = random_walk(60)
        result = macd(closes, 12, 26, 9)

        assert len(result.line) == 60 - 26 + 1
        assert len(result.signal) == len(result.line) - 9 + 1
        np.testing.assert_allclose(
            result.histogram, result.line[-len(result.signal):] - result.signal
        )

    def test_macd_line_is_fast_minus_slow(self):
        closes = random_walk(60)
        result = macd(closes, 12, 26, 9)
        expected = ema(closes, 12)[-len(result.line):] - ema(closes, 26)
        np.testing.assert_allclose(result.line, expected)

    def test_macd_positive_in_uptrend(self):
        closes = [c.close for c in rising_candles()]
        result = macd(closes)
        assert np.all(result.line > 0)

    def test_macd_insufficient_data(self):
        result = macd([100.0] * 20)
        assert len(result.line) == 0
        assert len(result.signal) == 0
        assert len(result.histogram) == 0


class TestBollinger:
    """Tests for Bollinger Bands."""

    def test_population_std(self):
        result = bollinger_bands([1.0, 2.0, 3.0, 4.0, 5.0], 5, 2.0)

        assert result.middle[0] == pytest.approx(3.0)
        assert result.upper[0] == pytest.approx(3.0 + 2 * math.sqrt(2))
        assert result.lower[0] == pytest.approx(3.0 - 2 * math.sqrt(2))

    def test_flat_series_has_zero_width(self):
        result = bollinger_bands([100.0] * 30, 20, 2.0)

        assert len(result.middle) == 11
        assert np.all(result.upper == result.middle)
        assert np.all(result.lower == result.middle)
        assert np.all(result.middle == 100.0)


class TestOscillators:
    """Tests for Stochastic, Williams %R and CCI."""

    def test_stochastic_zero_range_is_50(self):
        result = stochastic([100.0] * 20, [100.0] * 20, [100.0] * 20, 14, 3)

        assert len(result.k) == 7
        assert len(result.d) == 5
        assert np.all(result.k == 50.0)
        assert np.all(result.d == 50.0)

    def test_stochastic_close_at_high(self):
        highs = [float(100 + i) for i in range(20)]
        lows = [h - 2 for h in highs]
        result = stochastic(highs, lows, highs, 14, 3)
        np.testing.assert_allclose(result.k, 100.0)

    def test_williams_r_range(self):
        closes = random_walk()
        result = williams_r(closes + 1, closes - 1, closes, 14)

        assert np.all(result <= 0)
        assert np.all(result >= -100)

    def test_williams_r_zero_range_is_minus_50(self):
        result = williams_r([100.0] * 20, [100.0] * 20, [100.0] * 20, 14)
        assert np.all(result == -50.0)

    def test_williams_r_close_at_low(self):
        lows = [float(100 - i) for i in range(20)]
        highs = [l + 2 for l in lows]
        result = williams_r(highs, lows, lows, 14)
        np.testing.assert_allclose(result, -100.0)

    def test_cci_flat_is_zero(self):
        result = cci([100.0] * 30, [100.0] * 30, [100.0] * 30, 20)

        assert len(result) == 11
        assert np.all(result == 0.0)

    def test_cci_insufficient_data(self):
        assert len(cci([1.0] * 5, [1.0] * 5, [1.0] * 5, 20)) == 0


class TestATR:
    """Tests for true range and ATR calculation."""

    def test_true_range_length(self):
        assert len(true_range([2.0, 3.0, 4.0], [1.0, 2.0, 3.0], [1.5, 2.5, 3.5])) == 2

    def test_atr_constant_range(self):
        result = atr([102.0] * 20, [100.0] * 20, [101.0] * 20, 9)

        assert len(result) == 20 - 9
        np.testing.assert_allclose(result, 2.0)

    def test_atr_flat_series_is_zero(self):
        candles = flat_candles()
        result = atr(
            [c.high for c in candles], [c.low for c in candles], [c.close for c in candles], 14
        )
        assert np.all(result == 0.0)

    def test_atr_non_negative(self):
        closes = random_walk()
        result = atr(closes + 0.5, closes - 0.5, closes, 14)
        assert np.all(result >= 0)

    def test_atr_gap_uses_previous_close(self):
        # Second bar gaps up: |high - prev close| dominates
        result = true_range([101.0, 111.0], [99.0, 109.0], [100.0, 110.0])
        assert result[0] == pytest.approx(11.0)

    def test_atr_insufficient_data(self):
        assert len(atr([102.0] * 5, [100.0] * 5, [101.0] * 5, 9)) == 0


class TestADX:
    """Tests for ADX."""

    def test_adx_flat_is_zero(self):
        result = adx([100.0] * 40, [100.0] * 40, [100.0] * 40, 14)

        assert len(result) == 40 - 2 * 14 + 1
        assert np.all(result == 0.0)

    def test_adx_strong_trend(self):
        candles = rising_candles()
        result = adx(
            [c.high for c in candles], [c.low for c in candles], [c.close for c in candles], 14
        )
        assert result[-1] == pytest.approx(100.0)

    def test_adx_bounded(self):
        closes = random_walk()
        result = adx(closes + 1, closes - 1, closes, 14)

        assert np.all(result >= 0)
        assert np.all(result <= 100)

    def test_adx_insufficient_data(self):
        assert len(adx([1.0] * 20, [1.0] * 20, [1.0] * 20, 14)) == 0


class TestVWAP:
    """Tests for cumulative VWAP."""

    def test_vwap_cumulative(self):
        result = vwap([11.0, 21.0], [9.0, 19.0], [10.0, 20.0], [1.0, 3.0])

        assert result[0] == pytest.approx(10.0)
        assert result[1] == pytest.approx((10.0 * 1 + 20.0 * 3) / 4)

    def test_vwap_zero_volume_uses_typical_price(self):
        result = vwap([12.0, 13.0], [9.0, 10.0], [10.5, 11.5], [0.0, 0.0])
        np.testing.assert_allclose(result, [10.5, 11.5])


class TestIndicatorCalculator:
    """Tests for IndicatorCalculator."""

    def test_idempotent(self):
        candles = rising_candles(80)
        calc = IndicatorCalculator()

        first = calc.calculate(candles)
        second = calc.calculate(candles)

        for name in ("rsi", "sma", "ema", "williams_r", "atr", "vwap", "adx", "cci"):
            assert np.array_equal(getattr(first, name), getattr(second, name))
        for a, b in zip(first.macd, second.macd):
            assert np.array_equal(a, b)
        for a, b in zip(first.bollinger, second.bollinger):
            assert np.array_equal(a, b)

    def test_tail_aligned_lengths(self):
        indicators = IndicatorCalculator().calculate(rising_candles(60))

        assert len(indicators.rsi) == 60 - 14
        assert len(indicators.atr) == 60 - 14
        assert len(indicators.sma) == 60 - 20 + 1
        assert len(indicators.vwap) == 60

    def test_latest_short_series_is_nan(self):
        indicators = IndicatorCalculator().calculate(rising_candles(5))
        latest = IndicatorCalculator.latest(indicators)

        assert math.isnan(latest["rsi"])
        assert math.isnan(latest["macd"])
        assert not math.isnan(latest["vwap"])

    def test_empty_input(self):
        indicators = IndicatorCalculator().calculate([])
        assert len(indicators.rsi) == 0
        assert len(indicators.vwap) == 0
