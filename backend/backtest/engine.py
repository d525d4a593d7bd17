"""Backtest simulator.

Replays a candle series bar by bar. At each step from the warm-up
offset onwards:

1. Compute a signal over the trailing analysis window
2. Close open trades whose exit fired on this candle
3. Open a new trade if the signal is actionable and capacity allows
4. Append an equity-curve point

Open trades are force-closed at the final close (TIME_STOP) and the
statistics are computed once from the closed trades and equity curve.

``run`` is a coroutine that yields to the event loop every
``yield_every`` candles; where it yields never changes the result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from core.errors import InsufficientDataError
from core.indicators.indicators import atr, last_value
from core.models.candle import Candle
from core.models.signal import SignalType, TradingSignal
from core.pipeline import SignalPipeline
from core.validator import SignalValidator

from backtest.config import BacktestConfig, BacktestSettings, get_backtest_settings
from backtest.positions import CloseReason, PositionBook
from backtest.stats import BacktestResults, EquityPoint, StatisticsCalculator

logger = logging.getLogger(__name__)

SignalSource = Callable[[Sequence[Candle], str], TradingSignal]
ProgressCallback = Callable[[float], None]


class BacktestSimulator:
    """Run one backtest over one instrument's candle series."""

    def __init__(
        self,
        config: BacktestConfig | None = None,
        pair: str = "BTC/USDT",
        settings: BacktestSettings | None = None,
        signal_source: SignalSource | None = None,
        validator: SignalValidator | None = None,
        pipeline: SignalPipeline | None = None,
    ):
        self.config = config or BacktestConfig()
        self.pair = pair
        self.settings = settings or get_backtest_settings()
        self._pipeline = pipeline or SignalPipeline()
        self._signal_source = signal_source or self._pipeline.generate_signal
        self._validator = validator
        self._stop_requested = False
        self._atr_period = self._pipeline.strategy.atr_period

    def stop(self) -> None:
        """Stop after the current candle; results cover the processed range.

        A stop requested before ``run`` ends the next run at its first step.
        """
        self._stop_requested = True

    def filter_candles(self, candles: Sequence[Candle]) -> list[Candle]:
        """Apply the config's date range, sort by time and drop repeated timestamps.

        The last candle seen for a timestamp wins.
        """
        start, end = self.config.start_time, self.config.end_time
        by_time: dict[int, Candle] = {}
        for c in candles:
            if (start is None or c.timestamp >= start) and (end is None or c.timestamp <= end):
                by_time[c.timestamp] = c
        return [by_time[ts] for ts in sorted(by_time)]

    def run_sync(self, candles: Sequence[Candle]) -> BacktestResults:
        """Blocking wrapper around ``run``."""
        return asyncio.run(self.run(candles))

    async def run(
        self,
        candles: Sequence[Candle],
        on_progress: ProgressCallback | None = None,
    ) -> BacktestResults:
        """Run the simulation.

        Raises:
            InvalidConfigError: config values out of bounds
            InsufficientDataError: fewer than ``min_candles`` after filtering
        """
        self.config.check()
        series = self.filter_candles(candles)
        if len(series) < self.settings.min_candles:
            raise InsufficientDataError(self.settings.min_candles, len(series))

        if self._validator is not None:
            self._validator.clear()

        book = PositionBook(
            self.config,
            self.settings,
            self.pair,
            atr_fallback_pct=self._pipeline.strategy.atr_fallback_pct,
        )
        equity_curve: list[EquityPoint] = []
        peak = book.balance
        warmup = min(self.settings.warmup_candles, len(series) - 1)
        total_steps = len(series) - warmup
        last_index = warmup - 1

        logger.info(
            f"Backtest {self.pair}: {len(series)} candles, warm-up {warmup}, "
            f"balance {book.balance:.2f}"
        )

        for step, i in enumerate(range(warmup, len(series)), start=1):
            if self._stop_requested:
                logger.info(f"Backtest {self.pair} stopped at candle {i}")
                break

            candle = series[i]
            try:
                self._step(series, i, book)
            except Exception as e:
                logger.warning(f"Backtest step {i} ({candle.timestamp}) failed: {e}")
                last_index = i
                continue

            peak = max(peak, book.balance)
            equity_curve.append(self._equity_point(candle.timestamp, book.balance, peak))
            last_index = i

            if step % self.settings.yield_every == 0:
                if on_progress is not None:
                    on_progress(step / total_steps)
                await asyncio.sleep(0)
        self._stop_requested = False

        final_candle = series[max(last_index, 0)]
        if book.open_trades:
            book.close_all(final_candle, CloseReason.TIME_STOP)
            peak = max(peak, book.balance)
            point = self._equity_point(final_candle.timestamp, book.balance, peak)
            if equity_curve and equity_curve[-1].timestamp == final_candle.timestamp:
                equity_curve[-1] = point
            else:
                equity_curve.append(point)

        if on_progress is not None:
            on_progress(1.0)

        results = StatisticsCalculator(self.settings).calculate(
            trades=book.closed_trades,
            equity_curve=equity_curve,
            config=self.config,
            pair=self.pair,
            final_balance=book.balance,
            start_time=series[0].timestamp,
            end_time=final_candle.timestamp,
        )
        logger.info(
            f"Backtest {self.pair} done: {results.total_trades} trades, "
            f"win rate {results.win_rate:.1f}%, return {results.total_return_pct:+.2f}%"
        )
        return results

    def _step(self, series: list[Candle], i: int, book: PositionBook) -> None:
        candle = series[i]
        window = series[max(0, i + 1 - self.settings.analysis_window):i + 1]
        signal = self._signal_source(window, self.pair)

        book.process_exits(candle, signal)

        if not self._is_entry(signal) or not book.can_open():
            return
        if self._validator is not None:
            validation = self._validator.validate(signal, self.pair, now=candle.timestamp / 1000)
            if not validation.accepted:
                return

        atr_value = last_value(
            atr(
                [c.high for c in window],
                [c.low for c in window],
                [c.close for c in window],
                self._atr_period,
            )
        )
        book.open_trade(signal, candle, atr_value)

    def _is_entry(self, signal: TradingSignal) -> bool:
        return (
            signal.type != SignalType.NEUTRAL
            and signal.is_actionable
            and signal.confidence >= self.config.min_signal_confidence
        )

    @staticmethod
    def _equity_point(timestamp: int, balance: float, peak: float) -> EquityPoint:
        drawdown = max(peak - balance, 0.0)
        drawdown_pct = drawdown / peak * 100 if peak > 0 else 0.0
        return EquityPoint(
            timestamp=timestamp,
            equity=balance,
            drawdown=drawdown,
            drawdown_pct=drawdown_pct,
        )
