"""Simulated position lifecycle for backtesting.

Exit rules, evaluated against each candle's high/low for trades opened
on an earlier candle (first match wins):

- Stop-loss:   LONG low <= stop, SHORT high >= stop -> SL_HIT at the stop
- Take-profit: LONG high >= target, SHORT low <= target -> TP_HIT at the target
- Time stop:   held for >= time_stop_hours -> TIME_STOP at the close
- Reversal:    actionable signal in the opposite direction -> SIGNAL_REVERSE at the close

A candle touching both stop and target resolves to the stop.
Every fill takes adverse slippage; commission is charged on entry (deducted
from the balance immediately) and on exit.
"""

from __future__ import annotations

import hashlib
import logging
from enum import Enum

from pydantic import BaseModel

from core.models.candle import Candle
from core.models.config import StrategyConfig
from core.models.signal import SignalType, TradingSignal

from backtest.config import BacktestConfig, BacktestSettings, LevelMode, PositionSizing

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class TradeOutcome(str, Enum):
    WIN = "WIN"
    LOSS = "LOSS"


class CloseReason(str, Enum):
    TP_HIT = "TP_HIT"
    SL_HIT = "SL_HIT"
    TIME_STOP = "TIME_STOP"
    SIGNAL_REVERSE = "SIGNAL_REVERSE"


def _generate_trade_id(pair: str, entry_time: int, direction: str, sequence: int) -> str:
    """Deterministic trade ID so identical runs produce identical output."""
    key = f"{pair}:{entry_time}:{direction}:{sequence}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class BacktestTrade(BaseModel):
    """A simulated trade. Mutated only by the PositionBook that opened it."""

    id: str = ""
    sequence: int = 0
    pair: str
    signal: TradingSignal
    direction: SignalType
    entry_price: float
    entry_time: int
    stop_loss: float
    take_profit: float
    leverage: float = 1.0
    position_size_usd: float  # notional
    entry_fee: float = 0.0
    fees: float = 0.0  # entry + exit commission
    status: TradeStatus = TradeStatus.OPEN
    exit_price: float | None = None
    exit_time: int | None = None
    outcome: TradeOutcome | None = None
    gross_pnl: float | None = None
    pnl: float | None = None  # net of all fees
    pnl_percentage: float | None = None  # of margin
    close_reason: CloseReason | None = None

    def model_post_init(self, __context) -> None:
        """Generate deterministic ID after model initialization."""
        if not self.id:
            self.id = _generate_trade_id(
                self.pair, self.entry_time, self.direction.value, self.sequence
            )

    @property
    def is_long(self) -> bool:
        return self.direction == SignalType.BUY

    @property
    def margin(self) -> float:
        return self.position_size_usd / self.leverage

    @property
    def holding_ms(self) -> int:
        if self.exit_time is None:
            return 0
        return self.exit_time - self.entry_time


class PositionBook:
    """Running balance plus open and closed trades for one backtest run."""

    def __init__(
        self,
        config: BacktestConfig,
        settings: BacktestSettings,
        pair: str,
        atr_fallback_pct: float = StrategyConfig().atr_fallback_pct,
    ):
        self.config = config
        self.settings = settings
        self.pair = pair
        self.atr_fallback_pct = atr_fallback_pct
        self.balance = config.initial_balance
        self.open_trades: list[BacktestTrade] = []
        self.closed_trades: list[BacktestTrade] = []
        self._sequence = 0

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def leverage_for(self, signal: TradingSignal) -> float:
        cfg = self.config
        if not cfg.enable_leverage:
            return 1.0
        return float(min(max(signal.leverage, cfg.min_leverage), cfg.max_leverage))

    def kelly_fraction(self) -> float | None:
        """Simplified Kelly fraction from closed trades.

        None until ``kelly_min_trades`` trades have closed.
        """
        closed = self.closed_trades
        if len(closed) < self.settings.kelly_min_trades:
            return None

        wins = [t.pnl_percentage for t in closed if t.outcome == TradeOutcome.WIN]
        losses = [abs(t.pnl_percentage) for t in closed if t.outcome == TradeOutcome.LOSS]
        win_rate = len(wins) / len(closed)
        if not losses:
            return self.settings.kelly_max_fraction
        if not wins:
            return 0.0

        avg_win = sum(wins) / len(wins)
        avg_loss = sum(losses) / len(losses)
        if avg_loss == 0:
            return self.settings.kelly_max_fraction
        payoff = avg_win / avg_loss
        kelly = win_rate - (1 - win_rate) / payoff if payoff > 0 else 0.0
        return min(max(kelly, 0.0), self.settings.kelly_max_fraction)

    def position_size(self, leverage: float) -> float:
        """Notional size for a new trade in quote currency."""
        cfg = self.config
        if cfg.position_sizing == PositionSizing.FIXED:
            return cfg.position_size_value

        if cfg.position_sizing == PositionSizing.KELLY:
            fraction = self.kelly_fraction()
            if fraction is not None:
                return self.balance * fraction * leverage

        return self.balance * cfg.position_size_value / 100 * leverage

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def can_open(self) -> bool:
        return len(self.open_trades) < self.config.max_open_positions and self.balance > 0

    def open_trade(self, signal: TradingSignal, candle: Candle, atr_value: float) -> BacktestTrade | None:
        """Open a trade at the candle close. Returns None when size is 0."""
        cfg = self.config
        leverage = self.leverage_for(signal)
        size = self.position_size(leverage)
        if size <= 0:
            return None

        long = signal.type == SignalType.BUY
        slip = cfg.slippage_pct / 100
        entry = candle.close * (1 + slip) if long else candle.close * (1 - slip)
        stop_loss, take_profit = self._levels(signal, entry, atr_value)

        entry_fee = size * cfg.commission_pct / 100
        self.balance -= entry_fee

        trade = BacktestTrade(
            sequence=self._sequence,
            pair=self.pair,
            signal=signal,
            direction=signal.type,
            entry_price=entry,
            entry_time=candle.timestamp,
            stop_loss=stop_loss,
            take_profit=take_profit,
            leverage=leverage,
            position_size_usd=size,
            entry_fee=entry_fee,
            fees=entry_fee,
        )
        self._sequence += 1
        self.open_trades.append(trade)
        logger.info(
            f"Opened {trade.direction.value} {self.pair} @ {entry:.6g} "
            f"size={size:.2f} lev={leverage:g}x SL={stop_loss:.6g} TP={take_profit:.6g}"
        )
        return trade

    def _levels(self, signal: TradingSignal, entry: float, atr_value: float) -> tuple[float, float]:
        cfg = self.config
        direction = 1 if signal.type == SignalType.BUY else -1
        if not atr_value > 0:
            atr_value = entry * self.atr_fallback_pct

        if cfg.stop_loss_mode == LevelMode.ATR:
            stop_loss = entry - direction * atr_value * cfg.stop_loss_atr_mult
        elif cfg.stop_loss_mode == LevelMode.PERCENTAGE:
            stop_loss = entry * (1 - direction * cfg.stop_loss_pct / 100)
        else:
            stop_loss = signal.stop_loss

        if cfg.take_profit_mode == LevelMode.ATR:
            take_profit = entry + direction * atr_value * cfg.take_profit_atr_mult
        elif cfg.take_profit_mode == LevelMode.PERCENTAGE:
            take_profit = entry * (1 + direction * cfg.take_profit_pct / 100)
        else:
            take_profit = signal.take_profit
        return stop_loss, take_profit

    def check_exit(
        self,
        trade: BacktestTrade,
        candle: Candle,
        signal: TradingSignal | None = None,
    ) -> tuple[CloseReason, float] | None:
        """First matching exit rule and its (pre-slippage) fill price."""
        if trade.is_long:
            if candle.low <= trade.stop_loss:
                return CloseReason.SL_HIT, trade.stop_loss
            if candle.high >= trade.take_profit:
                return CloseReason.TP_HIT, trade.take_profit
        else:
            if candle.high >= trade.stop_loss:
                return CloseReason.SL_HIT, trade.stop_loss
            if candle.low <= trade.take_profit:
                return CloseReason.TP_HIT, trade.take_profit

        hours = self.config.time_stop_hours
        if hours is not None and candle.timestamp - trade.entry_time >= hours * HOUR_MS:
            return CloseReason.TIME_STOP, candle.close

        if (
            signal is not None
            and signal.is_actionable
            and signal.type == trade.direction.opposite()
        ):
            return CloseReason.SIGNAL_REVERSE, candle.close
        return None

    def process_exits(self, candle: Candle, signal: TradingSignal | None = None) -> list[BacktestTrade]:
        """Close every open trade (opened before this candle) whose exit fired."""
        closed: list[BacktestTrade] = []
        for trade in list(self.open_trades):
            if trade.entry_time >= candle.timestamp:
                continue
            hit = self.check_exit(trade, candle, signal)
            if hit is not None:
                reason, price = hit
                closed.append(self.close_trade(trade, price, candle.timestamp, reason))
        return closed

    def close_trade(
        self,
        trade: BacktestTrade,
        price: float,
        timestamp: int,
        reason: CloseReason,
    ) -> BacktestTrade:
        """Fill the exit, settle P&L into the balance, mark the trade CLOSED."""
        cfg = self.config
        slip = cfg.slippage_pct / 100
        exit_price = price * (1 - slip) if trade.is_long else price * (1 + slip)

        direction = 1 if trade.is_long else -1
        change = direction * (exit_price - trade.entry_price) / trade.entry_price
        gross = trade.position_size_usd * change
        exit_fee = trade.position_size_usd * cfg.commission_pct / 100

        trade.exit_price = exit_price
        trade.exit_time = timestamp
        trade.gross_pnl = gross
        trade.fees = trade.entry_fee + exit_fee
        trade.pnl = gross - trade.fees
        trade.pnl_percentage = trade.pnl / trade.margin * 100
        trade.outcome = TradeOutcome.WIN if trade.pnl > 0 else TradeOutcome.LOSS
        trade.close_reason = reason
        trade.status = TradeStatus.CLOSED

        # Entry fee already left the balance at open
        self.balance += gross - exit_fee

        self.open_trades.remove(trade)
        self.closed_trades.append(trade)
        logger.info(
            f"Closed {trade.direction.value} {self.pair} {reason.value} @ {exit_price:.6g} "
            f"pnl={trade.pnl:+.2f} ({trade.pnl_percentage:+.2f}%) balance={self.balance:.2f}"
        )
        return trade

    def close_all(self, candle: Candle, reason: CloseReason = CloseReason.TIME_STOP) -> list[BacktestTrade]:
        """Force-close every open trade at the candle close."""
        return [
            self.close_trade(trade, candle.close, candle.timestamp, reason)
            for trade in list(self.open_trades)
        ]
