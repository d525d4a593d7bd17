"""Statistics calculator for backtest results.

Computes overall performance metrics, risk ratios, streaks and monthly
returns from the closed trades and the equity curve of one run.

Conventions:
- Win rate and return/drawdown percentages are on a 0-100 scale.
- Sharpe uses per-step equity returns, population std and
  sqrt(annualization_factor); 0 when the std is 0.
- Profit factor is capped at ``profit_factor_cap`` when there are no losses.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone

import numpy as np
from pydantic import BaseModel, Field

from backtest.config import BacktestConfig, BacktestSettings
from backtest.positions import BacktestTrade, TradeOutcome

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


class EquityPoint(BaseModel):
    timestamp: int  # ms
    equity: float
    drawdown: float  # peak - equity, quote currency
    drawdown_pct: float  # of peak


class MonthlyReturn(BaseModel):
    month: str  # YYYY-MM, by exit time (UTC)
    pnl: float = 0.0
    return_pct: float = 0.0  # of initial balance
    trades: int = 0


class BacktestResults(BaseModel):
    """Complete backtest results."""

    # Metadata
    pair: str
    config: BacktestConfig
    start_time: int
    end_time: int

    initial_balance: float
    final_balance: float

    # Overall
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_return: float = 0.0
    total_return_pct: float = 0.0
    roi: float = 0.0  # net P&L over total margin deployed, percent

    # Risk
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    profit_factor: float = 0.0
    calmar_ratio: float = 0.0

    # Trade stats
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    avg_holding_hours: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    total_fees: float = 0.0

    monthly_returns: list[MonthlyReturn] = Field(default_factory=list)
    equity_curve: list[EquityPoint] = Field(default_factory=list)
    trades: list[BacktestTrade] = Field(default_factory=list)


def month_key(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m")


class StatisticsCalculator:
    """Compute BacktestResults from closed trades and an equity curve."""

    def __init__(self, settings: BacktestSettings | None = None):
        self.settings = settings or BacktestSettings()

    def calculate(
        self,
        trades: list[BacktestTrade],
        equity_curve: list[EquityPoint],
        config: BacktestConfig,
        pair: str,
        final_balance: float,
        start_time: int,
        end_time: int,
    ) -> BacktestResults:
        initial = config.initial_balance
        ordered = sorted(trades, key=lambda t: (t.exit_time or 0, t.sequence))

        wins = [t.pnl for t in ordered if t.outcome == TradeOutcome.WIN]
        losses = [t.pnl for t in ordered if t.outcome == TradeOutcome.LOSS]
        gross_profit = sum(wins)
        gross_loss = abs(sum(losses))

        total_return = final_balance - initial
        total_return_pct = total_return / initial * 100 if initial > 0 else 0.0
        max_dd, max_dd_pct = self._max_drawdown(equity_curve)
        max_wins, max_losses = self._streaks(ordered)

        margin_used = sum(t.margin for t in ordered)
        net_pnl = sum(t.pnl for t in ordered)

        result = BacktestResults(
            pair=pair,
            config=config,
            start_time=start_time,
            end_time=end_time,
            initial_balance=initial,
            final_balance=final_balance,
            total_trades=len(ordered),
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / len(ordered) * 100 if ordered else 0.0,
            total_return=total_return,
            total_return_pct=total_return_pct,
            roi=net_pnl / margin_used * 100 if margin_used > 0 else 0.0,
            max_drawdown=max_dd,
            max_drawdown_pct=max_dd_pct,
            sharpe_ratio=self.sharpe_ratio(equity_curve, initial),
            profit_factor=self.profit_factor(gross_profit, gross_loss),
            calmar_ratio=total_return_pct / max_dd_pct if max_dd_pct > 0 else 0.0,
            avg_win=gross_profit / len(wins) if wins else 0.0,
            avg_loss=gross_loss / len(losses) if losses else 0.0,
            largest_win=max(wins, default=0.0),
            largest_loss=min(losses, default=0.0),
            avg_holding_hours=(
                sum(t.holding_ms for t in ordered) / len(ordered) / HOUR_MS if ordered else 0.0
            ),
            max_consecutive_wins=max_wins,
            max_consecutive_losses=max_losses,
            total_fees=sum(t.fees for t in ordered),
            monthly_returns=self.monthly_returns(ordered, initial),
            equity_curve=equity_curve,
            trades=ordered,
        )
        return result

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def profit_factor(self, gross_profit: float, gross_loss: float) -> float:
        if gross_loss > 0:
            return min(gross_profit / gross_loss, self.settings.profit_factor_cap)
        return self.settings.profit_factor_cap if gross_profit > 0 else 0.0

    def sharpe_ratio(self, equity_curve: list[EquityPoint], initial_balance: float) -> float:
        """Annualized mean/std of per-step equity returns."""
        if not equity_curve:
            return 0.0
        equity = np.array([initial_balance] + [p.equity for p in equity_curve], dtype=np.float64)
        previous = equity[:-1]
        valid = previous > 0
        if valid.sum() < 2:
            return 0.0

        returns = (equity[1:][valid] - previous[valid]) / previous[valid]
        std = float(np.std(returns))
        if std == 0 or not math.isfinite(std):
            return 0.0
        return float(np.mean(returns)) / std * math.sqrt(self.settings.annualization_factor)

    @staticmethod
    def _max_drawdown(equity_curve: list[EquityPoint]) -> tuple[float, float]:
        if not equity_curve:
            return 0.0, 0.0
        return (
            max(p.drawdown for p in equity_curve),
            max(p.drawdown_pct for p in equity_curve),
        )

    @staticmethod
    def _streaks(trades: list[BacktestTrade]) -> tuple[int, int]:
        """Longest win and loss runs in close order."""
        max_wins = max_losses = wins = losses = 0
        for trade in trades:
            if trade.outcome == TradeOutcome.WIN:
                wins += 1
                losses = 0
            else:
                losses += 1
                wins = 0
            max_wins = max(max_wins, wins)
            max_losses = max(max_losses, losses)
        return max_wins, max_losses

    @staticmethod
    def monthly_returns(trades: list[BacktestTrade], initial_balance: float) -> list[MonthlyReturn]:
        buckets: dict[str, MonthlyReturn] = defaultdict(lambda: MonthlyReturn(month=""))
        for trade in trades:
            if trade.exit_time is None:
                continue
            key = month_key(trade.exit_time)
            bucket = buckets[key]
            bucket.month = key
            bucket.pnl += trade.pnl
            bucket.trades += 1

        months = sorted(buckets.values(), key=lambda m: m.month)
        for m in months:
            m.return_pct = m.pnl / initial_balance * 100 if initial_balance > 0 else 0.0
        return months
