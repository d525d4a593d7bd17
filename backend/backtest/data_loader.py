"""Load candle series from CSV or JSON files into Candle models.

Accepted columns (case-insensitive): a time column (``timestamp``,
``time``, ``open_time`` or ``date``) and ``open``, ``high``, ``low``,
``close``, ``volume``. Numeric times in seconds or milliseconds and
ISO-8601 strings are all normalised to epoch milliseconds.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

from core.models.candle import Candle

logger = logging.getLogger(__name__)

TIME_COLUMNS = ("timestamp", "time", "open_time", "date")
PRICE_COLUMNS = ("open", "high", "low", "close")

# Numeric epochs below this are seconds (year ~5138 in ms)
_SECONDS_CUTOFF = 100_000_000_000


def _to_millis(column: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(column):
        values = column.astype("float64")
        return values.where(values >= _SECONDS_CUTOFF, values * 1000).round().astype("int64")
    parsed = pd.to_datetime(column, utc=True)
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """Normalise a DataFrame of OHLCV rows to sorted, de-duplicated candles."""
    df = df.rename(columns={c: str(c).strip().lower() for c in df.columns})

    time_col = next((c for c in TIME_COLUMNS if c in df.columns), None)
    if time_col is None:
        raise ValueError(f"No time column found (expected one of {', '.join(TIME_COLUMNS)})")
    missing = [c for c in PRICE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing price columns: {', '.join(missing)}")

    df = df.dropna(subset=[time_col]).reset_index(drop=True)
    out = pd.DataFrame({"timestamp": _to_millis(df[time_col])})
    for col in PRICE_COLUMNS:
        out[col] = pd.to_numeric(df[col], errors="coerce")
    out["volume"] = pd.to_numeric(df["volume"], errors="coerce") if "volume" in df.columns else 0.0

    before = len(out)
    out = (
        out.dropna()
        .drop_duplicates(subset="timestamp", keep="last")
        .sort_values("timestamp")
    )
    if len(out) < before:
        logger.warning(f"Dropped {before - len(out)} invalid or duplicate rows")

    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in out.itertuples(index=False)
    ]


def load_candles(path: str | Path) -> list[Candle]:
    """Load candles from a ``.csv`` or ``.json`` file."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        df = pd.read_json(path, convert_dates=False)
    else:
        df = pd.read_csv(path)
    candles = candles_from_frame(df)
    logger.info(f"Loaded {len(candles)} candles from {path}")
    return candles
