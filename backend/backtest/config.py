"""Backtest configuration.

Two layers:
- BacktestSettings: engine constants overridable through ``BACKTEST_*``
  environment variables (warm-up, analysis window, annualization, ...).
- BacktestConfig: the per-run parameters (balance, sizing, exits, costs),
  immutable for the duration of a run and validated before it starts.

A YAML file can carry a run config plus strategy/pattern/validator
overrides; see ``load_backtest_config``.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import InvalidConfigError
from core.models.config import PatternConfig, StrategyConfig, ValidatorConfig
from core.settings import get_engine_settings

logger = logging.getLogger(__name__)

MAX_LEVERAGE = 125


class BacktestSettings(BaseSettings):
    """Backtest engine constants loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BACKTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    min_candles: int = 50
    warmup_candles: int = 50
    analysis_window: int = 200
    annualization_factor: float = 252.0
    profit_factor_cap: float = 999.0

    # Cooperative yield / progress cadence (candles)
    yield_every: int = 100

    # Kelly sizing
    kelly_min_trades: int = 10
    kelly_max_fraction: float = 0.25


_settings: BacktestSettings | None = None


def get_backtest_settings() -> BacktestSettings:
    """Get cached backtest settings instance."""
    global _settings
    if _settings is None:
        _settings = BacktestSettings()
    return _settings


class PositionSizing(str, Enum):
    FIXED = "FIXED"  # position_size_value is the notional in quote currency
    PERCENTAGE = "PERCENTAGE"  # percent of balance, times leverage
    KELLY = "KELLY"


class LevelMode(str, Enum):
    SIGNAL = "SIGNAL"  # use the signal's own stop/target
    ATR = "ATR"
    PERCENTAGE = "PERCENTAGE"


class BacktestConfig(BaseModel):
    """Per-run backtest parameters."""

    model_config = ConfigDict(frozen=True)

    initial_balance: float = 10_000.0
    position_sizing: PositionSizing = PositionSizing.PERCENTAGE
    position_size_value: float = 10.0
    max_open_positions: int = 1

    enable_leverage: bool = True
    min_leverage: float = 1.0
    max_leverage: float = 10.0

    stop_loss_mode: LevelMode = LevelMode.SIGNAL
    take_profit_mode: LevelMode = LevelMode.SIGNAL
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 4.0
    stop_loss_atr_mult: float = 1.5
    take_profit_atr_mult: float = 3.0

    slippage_pct: float = 0.05
    commission_pct: float = 0.1
    time_stop_hours: float | None = 24.0
    min_signal_confidence: float = 0.1

    # Optional date filter, epoch ms
    start_time: int | None = None
    end_time: int | None = None

    def problems(self) -> list[str]:
        """Every violated bound, empty when the config is usable."""
        problems: list[str] = []
        if not self.initial_balance > 0:
            problems.append(f"initial_balance must be > 0 (got {self.initial_balance})")
        if not self.position_size_value > 0:
            problems.append(f"position_size_value must be > 0 (got {self.position_size_value})")
        if self.position_sizing == PositionSizing.PERCENTAGE and self.position_size_value > 100:
            problems.append(f"percentage position size must be <= 100 (got {self.position_size_value})")
        if self.max_open_positions < 1:
            problems.append(f"max_open_positions must be >= 1 (got {self.max_open_positions})")
        if not 1 <= self.min_leverage <= self.max_leverage <= MAX_LEVERAGE:
            problems.append(
                f"leverage bounds must satisfy 1 <= min <= max <= {MAX_LEVERAGE} "
                f"(got {self.min_leverage}..{self.max_leverage})"
            )
        if not 0 <= self.slippage_pct < 100:
            problems.append(f"slippage_pct must be in [0, 100) (got {self.slippage_pct})")
        if not 0 <= self.commission_pct < 100:
            problems.append(f"commission_pct must be in [0, 100) (got {self.commission_pct})")
        for name in ("stop_loss_pct", "take_profit_pct", "stop_loss_atr_mult", "take_profit_atr_mult"):
            if not getattr(self, name) > 0:
                problems.append(f"{name} must be > 0 (got {getattr(self, name)})")
        for name in ("stop_loss_pct", "take_profit_pct"):
            if getattr(self, name) >= 100:
                problems.append(f"{name} must be < 100 (got {getattr(self, name)})")
        if self.time_stop_hours is not None and not self.time_stop_hours > 0:
            problems.append(f"time_stop_hours must be > 0 (got {self.time_stop_hours})")
        if not 0 <= self.min_signal_confidence <= 1:
            problems.append(f"min_signal_confidence must be in [0, 1] (got {self.min_signal_confidence})")
        if (
            self.start_time is not None
            and self.end_time is not None
            and self.start_time > self.end_time
        ):
            problems.append("start_time must not be after end_time")
        return problems

    def check(self) -> None:
        """Raise InvalidConfigError listing every violated bound."""
        problems = self.problems()
        if problems:
            raise InvalidConfigError(problems)


class BacktestConfigFile(BaseModel):
    """Top-level backtest YAML file."""

    backtest: BacktestConfig = BacktestConfig()
    strategy: StrategyConfig = StrategyConfig()
    patterns: PatternConfig = PatternConfig()
    validator: ValidatorConfig | None = None  # no validator when omitted


def load_backtest_config(path: Path | str | None = None) -> BacktestConfigFile:
    """Load a backtest config from YAML.

    Falls back to defaults if no path is given or the file doesn't exist.
    A ``validator`` section turns the signal validator on; fields it leaves
    out come from ``EngineSettings``.
    """
    if path is None:
        return BacktestConfigFile()

    config_path = Path(path)
    if not config_path.exists():
        logger.info("No backtest config found at %s, using defaults", config_path)
        return BacktestConfigFile()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    # Unset validator fields fall back to the SIGNAL_ENGINE_ environment
    section = raw.get("validator")
    if isinstance(section, dict):
        defaults = ValidatorConfig.from_settings(get_engine_settings()).model_dump()
        raw["validator"] = {**defaults, **section}

    config = BacktestConfigFile(**raw)
    logger.info(
        "Loaded backtest config: balance=%.2f sizing=%s max_open=%d validator=%s",
        config.backtest.initial_balance,
        config.backtest.position_sizing.value,
        config.backtest.max_open_positions,
        "on" if config.validator else "off",
    )
    return config
