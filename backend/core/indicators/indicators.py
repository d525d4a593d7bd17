"""Technical indicators for signal generation.

Every function takes one or more numeric series and returns a float64
array aligned to the *tail* of the input: the last element corresponds to
the last input value and the array is shorter than the input by the
indicator's warm-up. When the input is too short the result is an empty
array, never an exception.

Degenerate inputs (zero ranges, zero volume, zero deviations) produce the
documented neutral values instead of NaN or infinity.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Sequence, Union

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from core.models.candle import Candle, CandleArrays
from core.models.config import StrategyConfig

ArrayLike = Union[Sequence[float], np.ndarray]

CCI_CONSTANT = 0.015


class MACDResult(NamedTuple):
    line: np.ndarray
    signal: np.ndarray
    histogram: np.ndarray


class BollingerBands(NamedTuple):
    upper: np.ndarray
    middle: np.ndarray
    lower: np.ndarray


class StochasticResult(NamedTuple):
    k: np.ndarray
    d: np.ndarray


def _as_array(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _empty() -> np.ndarray:
    return np.empty(0, dtype=np.float64)


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray, default: float = 0.0) -> np.ndarray:
    """Element-wise division with ``default`` wherever the denominator is 0."""
    out = np.full(np.shape(numerator), default, dtype=np.float64)
    return np.divide(numerator, denominator, out=out, where=denominator != 0)


def _wilder(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder smoothing seeded with the mean of the first ``period`` values."""
    if len(values) < period:
        return _empty()
    out = np.empty(len(values) - period + 1, dtype=np.float64)
    out[0] = values[:period].mean()
    for i in range(1, len(out)):
        out[i] = (out[i - 1] * (period - 1) + values[i + period - 1]) / period
    return out


# =============================================================================
# Moving averages
# =============================================================================

def sma(values: ArrayLike, period: int) -> np.ndarray:
    """Simple moving average. Length: n - period + 1."""
    arr = _as_array(values)
    if period <= 0 or len(arr) < period:
        return _empty()
    return sliding_window_view(arr, period).mean(axis=1)


def ema(values: ArrayLike, period: int) -> np.ndarray:
    """Exponential moving average seeded with the SMA of the first period.

    Length: n - period + 1.
    """
    arr = _as_array(values)
    if period <= 0 or len(arr) < period:
        return _empty()

    multiplier = 2.0 / (period + 1)
    result = np.empty(len(arr) - period + 1, dtype=np.float64)
    result[0] = arr[:period].mean()
    for i, price in enumerate(arr[period:], start=1):
        result[i] = (price - result[i - 1]) * multiplier + result[i - 1]
    return result


# =============================================================================
# Momentum
# =============================================================================

def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        # No movement at all is neutral; only gains is fully overbought
        return 50.0 if avg_gain == 0 else 100.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def rsi(closes: ArrayLike, period: int = 14) -> np.ndarray:
    """Relative Strength Index with Wilder smoothing.

    Requires at least ``period + 1`` closes. Length: n - period.
    """
    arr = _as_array(closes)
    if period <= 0 or len(arr) < period + 1:
        return _empty()

    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(gains[:period].mean())
    avg_loss = float(losses[:period].mean())

    result = np.empty(len(deltas) - period + 1, dtype=np.float64)
    result[0] = _rsi_value(avg_gain, avg_loss)
    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        result[i - period + 1] = _rsi_value(avg_gain, avg_loss)
    return result


def macd(
    closes: ArrayLike,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MACDResult:
    """MACD line (EMA fast - EMA slow), its signal EMA and the histogram.

    The line has length n - slow + 1; signal and histogram are shorter by
    a further ``signal - 1`` values.
    """
    fast_ema = ema(closes, fast)
    slow_ema = ema(closes, slow)
    if len(slow_ema) == 0 or len(fast_ema) < len(slow_ema):
        return MACDResult(_empty(), _empty(), _empty())

    line = fast_ema[len(fast_ema) - len(slow_ema):] - slow_ema
    signal_line = ema(line, signal)
    histogram = line[len(line) - len(signal_line):] - signal_line
    return MACDResult(line, signal_line, histogram)


def stochastic(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticResult:
    """Stochastic %K / %D. %K is 50 when the window range is zero."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if k_period <= 0 or len(c) < k_period:
        return StochasticResult(_empty(), _empty())

    highest = sliding_window_view(h, k_period).max(axis=1)
    lowest = sliding_window_view(l, k_period).min(axis=1)
    close = c[k_period - 1:]
    k = _safe_divide((close - lowest) * 100.0, highest - lowest, default=50.0)
    return StochasticResult(k, sma(k, d_period))


def williams_r(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> np.ndarray:
    """Williams %R in [-100, 0]; -50 when the window range is zero."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if period <= 0 or len(c) < period:
        return _empty()

    highest = sliding_window_view(h, period).max(axis=1)
    lowest = sliding_window_view(l, period).min(axis=1)
    close = c[period - 1:]
    return _safe_divide((highest - close) * -100.0, highest - lowest, default=-50.0)


def cci(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 20,
) -> np.ndarray:
    """Commodity Channel Index; 0 when the mean deviation is zero."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if period <= 0 or len(c) < period:
        return _empty()

    typical = (h + l + c) / 3.0
    windows = sliding_window_view(typical, period)
    mean = windows.mean(axis=1)
    mean_dev = np.abs(windows - mean[:, None]).mean(axis=1)
    return _safe_divide(typical[period - 1:] - mean, CCI_CONSTANT * mean_dev)


# =============================================================================
# Volatility
# =============================================================================

def bollinger_bands(
    closes: ArrayLike,
    period: int = 20,
    std_dev: float = 2.0,
) -> BollingerBands:
    """SMA +/- std_dev population standard deviations."""
    arr = _as_array(closes)
    if period <= 0 or len(arr) < period:
        return BollingerBands(_empty(), _empty(), _empty())

    windows = sliding_window_view(arr, period)
    flat = np.ptp(windows, axis=1) == 0
    # Exact zero width on constant windows
    middle = np.where(flat, windows[:, 0], windows.mean(axis=1))
    deviation = np.where(flat, 0.0, windows.std(axis=1))
    return BollingerBands(
        middle + std_dev * deviation,
        middle,
        middle - std_dev * deviation,
    )


def true_range(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
) -> np.ndarray:
    """True range starting from the second bar. Length: n - 1."""
    h, l, c = _as_array(highs), _as_array(lows), _as_array(closes)
    if len(c) < 2:
        return _empty()

    prev_close = c[:-1]
    return np.maximum.reduce([
        h[1:] - l[1:],
        np.abs(h[1:] - prev_close),
        np.abs(l[1:] - prev_close),
    ])


def atr(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> np.ndarray:
    """Average True Range as the SMA of the true range. Length: n - period."""
    return sma(true_range(highs, lows, closes), period)


def adx(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> np.ndarray:
    """Average Directional Index (Wilder). Length: n - 2 * period + 1."""
    h, l = _as_array(highs), _as_array(lows)
    if period <= 0 or len(h) < 2 * period:
        return _empty()

    up = h[1:] - h[:-1]
    down = l[:-1] - l[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)

    smoothed_tr = _wilder(true_range(highs, lows, closes), period)
    plus_di = 100.0 * _safe_divide(_wilder(plus_dm, period), smoothed_tr)
    minus_di = 100.0 * _safe_divide(_wilder(minus_dm, period), smoothed_tr)

    dx = 100.0 * _safe_divide(np.abs(plus_di - minus_di), plus_di + minus_di)
    return _wilder(dx, period)


# =============================================================================
# Volume
# =============================================================================

def vwap(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    volumes: ArrayLike,
) -> np.ndarray:
    """Cumulative VWAP. Falls back to the typical price while no volume traded."""
    h, l, c, v = _as_array(highs), _as_array(lows), _as_array(closes), _as_array(volumes)
    if len(c) == 0:
        return _empty()

    typical = (h + l + c) / 3.0
    cum_pv = np.cumsum(typical * v)
    cum_vol = np.cumsum(v)
    return np.divide(cum_pv, cum_vol, out=typical.copy(), where=cum_vol > 0)


# =============================================================================
# IndicatorCalculator class
# =============================================================================

def last_value(values: np.ndarray, offset: int = 1) -> float:
    """Value ``offset`` positions from the end, NaN if the array is too short."""
    if len(values) < offset:
        return math.nan
    return float(values[-offset])


@dataclass(slots=True)
class IndicatorSet:
    """Tail-aligned indicator arrays for one candle series."""

    rsi: np.ndarray
    macd: MACDResult
    sma: np.ndarray
    ema: np.ndarray
    bollinger: BollingerBands
    stochastic: StochasticResult
    williams_r: np.ndarray
    atr: np.ndarray
    vwap: np.ndarray
    adx: np.ndarray
    cci: np.ndarray


class IndicatorCalculator:
    """Calculator for all technical indicators used by the signal composer."""

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def calculate(self, candles: Sequence[Candle] | CandleArrays) -> IndicatorSet:
        """Calculate every indicator over the full series."""
        cfg = self.config
        if not isinstance(candles, CandleArrays):
            candles = CandleArrays.from_candles(candles)
        h, l, c, v = candles.highs, candles.lows, candles.closes, candles.volumes

        return IndicatorSet(
            rsi=rsi(c, cfg.rsi_period),
            macd=macd(c, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal),
            sma=sma(c, cfg.sma_period),
            ema=ema(c, cfg.ema_period),
            bollinger=bollinger_bands(c, cfg.bb_period, cfg.bb_std_dev),
            stochastic=stochastic(h, l, c, cfg.stoch_k, cfg.stoch_d),
            williams_r=williams_r(h, l, c, cfg.williams_period),
            atr=atr(h, l, c, cfg.atr_period),
            vwap=vwap(h, l, c, v),
            adx=adx(h, l, c, cfg.adx_period),
            cci=cci(h, l, c, cfg.cci_period),
        )

    @staticmethod
    def latest(indicators: IndicatorSet) -> dict[str, float]:
        """Latest value of every indicator (NaN where not yet warmed up)."""
        return {
            "rsi": last_value(indicators.rsi),
            "macd": last_value(indicators.macd.line),
            "macd_signal": last_value(indicators.macd.signal),
            "macd_histogram": last_value(indicators.macd.histogram),
            "sma": last_value(indicators.sma),
            "ema": last_value(indicators.ema),
            "bb_upper": last_value(indicators.bollinger.upper),
            "bb_middle": last_value(indicators.bollinger.middle),
            "bb_lower": last_value(indicators.bollinger.lower),
            "stoch_k": last_value(indicators.stochastic.k),
            "stoch_d": last_value(indicators.stochastic.d),
            "williams_r": last_value(indicators.williams_r),
            "atr": last_value(indicators.atr),
            "vwap": last_value(indicators.vwap),
            "adx": last_value(indicators.adx),
            "cci": last_value(indicators.cci),
        }
