"""Report formatting for backtest results.

Outputs results to console (formatted tables) and JSON files.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import orjson

from backtest.stats import BacktestResults


def _fmt_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


class ReportFormatter:
    """Format backtest results for display and export."""

    @staticmethod
    def print_console(result: BacktestResults) -> None:
        """Print formatted report to console."""
        print("\n" + "=" * 70)
        print(f"  BACKTEST RESULTS — {result.pair}")
        print("=" * 70)
        print(f"  Period: {_fmt_time(result.start_time)} → {_fmt_time(result.end_time)}")
        cfg = result.config
        print(
            f"  Sizing: {cfg.position_sizing.value} {cfg.position_size_value:g}  "
            f"Leverage: {'on' if cfg.enable_leverage else 'off'} "
            f"({cfg.min_leverage:g}-{cfg.max_leverage:g}x)  Max open: {cfg.max_open_positions}"
        )

        # Overall
        print("\n" + "-" * 70)
        print("  OVERALL")
        print("-" * 70)
        print(f"  Initial balance: {result.initial_balance:>14,.2f}")
        print(f"  Final balance:   {result.final_balance:>14,.2f}")
        print(f"  Total return:    {result.total_return:>+14,.2f} ({result.total_return_pct:+.2f}%)")
        print(f"  Trades:          {result.total_trades:>14}")
        print(f"  Wins / Losses:   {result.winning_trades:>6} / {result.losing_trades}")
        print(f"  Win rate:        {result.win_rate:>13.1f}%")
        print(f"  Total fees:      {result.total_fees:>14,.2f}")

        # Risk
        print("\n" + "-" * 70)
        print("  RISK")
        print("-" * 70)
        print(f"  Max drawdown:    {result.max_drawdown:>14,.2f} ({result.max_drawdown_pct:.2f}%)")
        print(f"  Sharpe ratio:    {result.sharpe_ratio:>14.2f}")
        print(f"  Profit factor:   {result.profit_factor:>14.2f}")
        print(f"  Calmar ratio:    {result.calmar_ratio:>14.2f}")
        print(f"  ROI on margin:   {result.roi:>13.2f}%")

        # Trades
        print("\n" + "-" * 70)
        print("  TRADES")
        print("-" * 70)
        print(f"  Avg win:         {result.avg_win:>14,.2f}")
        print(f"  Avg loss:        {result.avg_loss:>14,.2f}")
        print(f"  Largest win:     {result.largest_win:>14,.2f}")
        print(f"  Largest loss:    {result.largest_loss:>14,.2f}")
        print(f"  Avg holding:     {result.avg_holding_hours:>13.1f}h")
        print(f"  Max win streak:  {result.max_consecutive_wins:>14}")
        print(f"  Max loss streak: {result.max_consecutive_losses:>14}")

        if result.trades:
            reasons: dict[str, int] = {}
            for t in result.trades:
                key = t.close_reason.value if t.close_reason else "-"
                reasons[key] = reasons.get(key, 0) + 1
            print("  Close reasons:   " + ", ".join(f"{k}={v}" for k, v in sorted(reasons.items())))

        # Monthly
        if result.monthly_returns:
            print("\n" + "-" * 70)
            print("  MONTHLY RETURNS")
            print("-" * 70)
            print(f"  {'Month':<10} {'Trades':>7} {'P&L':>14} {'Return':>9}")
            for m in result.monthly_returns:
                print(f"  {m.month:<10} {m.trades:>7} {m.pnl:>+14,.2f} {m.return_pct:>+8.2f}%")

        print("\n" + "=" * 70)

    @staticmethod
    def to_dict(result: BacktestResults) -> dict:
        """Convert results to JSON-serializable dict."""
        return result.model_dump(mode="json")

    @staticmethod
    def save_json(result: BacktestResults, filepath: str | Path) -> None:
        """Save results to JSON file."""
        data = ReportFormatter.to_dict(result)
        with open(filepath, "wb") as f:
            f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        print(f"\nResults saved to {filepath}")

    @staticmethod
    def load_json(filepath: str | Path) -> BacktestResults:
        """Load results previously written by ``save_json``."""
        with open(filepath, "rb") as f:
            return BacktestResults.model_validate(orjson.loads(f.read()))
