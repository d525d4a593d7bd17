"""Tests for loading candle files."""

import orjson
import pandas as pd
import pytest

from backtest.data_loader import candles_from_frame, load_candles

BASE_TS = 1_735_689_600_000
HOUR = 3_600_000

ROWS = [
    (BASE_TS + HOUR, 101.0, 103.0, 100.0, 102.0, 12.5),
    (BASE_TS, 100.0, 102.0, 99.0, 101.0, 10.0),
    (BASE_TS + 2 * HOUR, 102.0, 104.0, 101.0, 103.0, 8.0),
]


def write_csv(path, rows, time_values=None, header="timestamp,open,high,low,close,volume"):
    lines = [header]
    for i, row in enumerate(rows):
        time_value = row[0] if time_values is None else time_values[i]
        lines.append(",".join(str(v) for v in (time_value, *row[1:])))
    path.write_text("\n".join(lines) + "\n")
    return path


class TestLoadCandles:
    def test_csv_milliseconds(self, tmp_path):
        candles = load_candles(write_csv(tmp_path / "c.csv", ROWS))

        assert [c.timestamp for c in candles] == [BASE_TS, BASE_TS + HOUR, BASE_TS + 2 * HOUR]
        assert candles[0].open == 100.0
        assert candles[1].volume == 12.5

    def test_csv_seconds(self, tmp_path):
        seconds = [row[0] // 1000 for row in ROWS]
        candles = load_candles(write_csv(tmp_path / "c.csv", ROWS, seconds))
        assert candles[0].timestamp == BASE_TS

    def test_csv_iso_dates(self, tmp_path):
        dates = ["2025-01-01T01:00:00Z", "2025-01-01T00:00:00Z", "2025-01-01T02:00:00Z"]
        path = write_csv(tmp_path / "c.csv", ROWS, dates, header="Date,Open,High,Low,Close,Volume")
        candles = load_candles(path)
        assert [c.timestamp for c in candles] == [BASE_TS, BASE_TS + HOUR, BASE_TS + 2 * HOUR]

    def test_json_records(self, tmp_path):
        records = [
            {"timestamp": r[0], "open": r[1], "high": r[2], "low": r[3], "close": r[4], "volume": r[5]}
            for r in ROWS
        ]
        path = tmp_path / "c.json"
        path.write_bytes(orjson.dumps(records))

        candles = load_candles(path)
        assert len(candles) == 3
        assert candles[-1].close == 103.0

    def test_duplicates_and_bad_rows_dropped(self, tmp_path):
        rows = ROWS + [(BASE_TS, 100.0, 102.0, 99.0, 100.5, 11.0)]
        path = write_csv(tmp_path / "c.csv", rows)
        path.write_text(path.read_text() + f"{BASE_TS + 3 * HOUR},abc,1,1,1,1\n")

        candles = load_candles(path)
        assert len(candles) == 3
        assert candles[0].close == 100.5  # last duplicate wins


class TestCandlesFromFrame:
    def test_missing_time_column(self):
        with pytest.raises(ValueError, match="time column"):
            candles_from_frame(pd.DataFrame({"open": [1.0], "high": [1.0], "low": [1.0], "close": [1.0]}))

    def test_missing_price_column(self):
        with pytest.raises(ValueError, match="close"):
            candles_from_frame(pd.DataFrame({"timestamp": [BASE_TS], "open": [1.0], "high": [1.0], "low": [1.0]}))

    def test_volume_optional(self):
        df = pd.DataFrame({"time": [BASE_TS], "open": [1.0], "high": [2.0], "low": [0.5], "close": [1.5]})
        candles = candles_from_frame(df)
        assert candles[0].volume == 0.0
