"""Tests for configuration models, YAML loading and env settings."""

import pytest

from core.errors import InvalidConfigError
from core.models.config import StrategyConfig, ValidatorConfig
from core.settings import EngineSettings, get_engine_settings
from backtest.config import (
    BacktestConfig,
    BacktestConfigFile,
    BacktestSettings,
    LevelMode,
    PositionSizing,
    load_backtest_config,
)


class TestBacktestConfig:
    def test_defaults_are_valid(self):
        config = BacktestConfig()
        assert config.problems() == []
        config.check()

    def test_every_problem_reported(self):
        config = BacktestConfig(
            initial_balance=0,
            max_open_positions=0,
            min_leverage=5,
            max_leverage=2,
            slippage_pct=-1,
        )
        with pytest.raises(InvalidConfigError) as exc:
            config.check()

        assert len(exc.value.problems) == 4
        assert "initial_balance" in str(exc.value)

    def test_percentage_over_100(self):
        problems = BacktestConfig(position_size_value=150).problems()
        assert any("percentage" in p for p in problems)

    def test_fixed_size_may_exceed_100(self):
        config = BacktestConfig(position_sizing=PositionSizing.FIXED, position_size_value=5000)
        assert config.problems() == []

    def test_leverage_above_exchange_max(self):
        assert BacktestConfig(max_leverage=200).problems()

    @pytest.mark.parametrize("field", ["stop_loss_pct", "take_profit_pct"])
    def test_exit_percentage_below_100(self, field):
        problems = BacktestConfig(**{field: 150}).problems()
        assert problems == [f"{field} must be < 100 (got 150.0)"]

    def test_date_range_order(self):
        assert BacktestConfig(start_time=2, end_time=1).problems() == ["start_time must not be after end_time"]

    def test_frozen(self):
        config = BacktestConfig()
        with pytest.raises(Exception):
            config.initial_balance = 1.0


class TestLoadBacktestConfig:
    def test_none_gives_defaults(self):
        assert load_backtest_config(None) == BacktestConfigFile()

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_backtest_config(tmp_path / "missing.yaml")
        assert config.validator is None
        assert config.backtest == BacktestConfig()

    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "backtest.yaml"
        path.write_text(
            "backtest:\n"
            "  initial_balance: 5000\n"
            "  position_sizing: KELLY\n"
            "  stop_loss_mode: ATR\n"
            "  time_stop_hours: null\n"
            "strategy:\n"
            "  rsi_period: 7\n"
            "  pattern_weight: 4.0\n"
            "patterns:\n"
            "  level_tolerance: 0.01\n"
            "validator:\n"
            "  cooldown_seconds: 300\n"
        )
        config = load_backtest_config(path)

        assert config.backtest.initial_balance == 5000
        assert config.backtest.position_sizing == PositionSizing.KELLY
        assert config.backtest.stop_loss_mode == LevelMode.ATR
        assert config.backtest.time_stop_hours is None
        assert config.strategy.rsi_period == 7
        assert config.strategy.macd_slow == 26
        assert config.patterns.level_tolerance == 0.01
        assert config.validator.cooldown_seconds == 300
        assert config.validator.retention_seconds == 900

    def test_validator_section_falls_back_to_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "backtest.yaml"
        path.write_text("validator:\n  cooldown_seconds: 300\n")
        monkeypatch.setenv("SIGNAL_ENGINE_COOLDOWN_SECONDS", "30")
        monkeypatch.setenv("SIGNAL_ENGINE_RETENTION_SECONDS", "600")
        get_engine_settings.cache_clear()
        try:
            config = load_backtest_config(path)
        finally:
            get_engine_settings.cache_clear()

        assert config.validator.cooldown_seconds == 300
        assert config.validator.retention_seconds == 600

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_backtest_config(path) == BacktestConfigFile()


class TestSettings:
    def test_backtest_env_override(self, monkeypatch):
        monkeypatch.setenv("BACKTEST_MIN_CANDLES", "120")
        monkeypatch.setenv("BACKTEST_ANNUALIZATION_FACTOR", "365")
        settings = BacktestSettings()

        assert settings.min_candles == 120
        assert settings.annualization_factor == 365.0
        assert settings.warmup_candles == 50

    def test_engine_env_override(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_ENGINE_COOLDOWN_SECONDS", "300")
        settings = EngineSettings()

        assert settings.cooldown_seconds == 300.0
        config = ValidatorConfig.from_settings(settings)
        assert config.cooldown_seconds == 300.0
        assert config.retention_seconds == 900.0

    def test_strategy_defaults(self):
        config = StrategyConfig()
        assert (config.macd_fast, config.macd_slow, config.macd_signal) == (12, 26, 9)
        assert config.volume_expectations["BTC/USDT"].min == 500_000_000
