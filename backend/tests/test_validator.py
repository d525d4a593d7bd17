"""Tests for SignalValidator static gates, cooldown and deduplication."""

import threading

import pytest
from pydantic import ValidationError

from core.models.config import ValidatorConfig
from core.models.signal import SignalType, TradingSignal
from core.settings import get_engine_settings
from core.validator import (
    SignalValidator,
    ValidationStatus,
    round_significant,
)

NOW = 1_735_689_600.0  # unix seconds


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_signal(
    signal_type: SignalType = SignalType.BUY,
    entry: float = 100.0,
    confidence: float = 0.7,
    patterns: list[str] | None = None,
    risk_reward: float | None = None,
) -> TradingSignal:
    if signal_type == SignalType.BUY:
        stop_loss, take_profit = entry * 0.95, entry * 1.10
    else:
        stop_loss, take_profit = entry * 1.05, entry * 0.90
    return TradingSignal(
        type=signal_type,
        confidence=confidence,
        patterns=["Bullish Engulfing"] if patterns is None else patterns,
        entry=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        risk_reward=2.0 if risk_reward is None else risk_reward,
        pair="BTC/USDT",
    )


@pytest.fixture
def validator() -> SignalValidator:
    return SignalValidator()


class TestCooldown:
    """One accepted signal per pair per cooldown window."""

    def test_identical_signals_within_cooldown(self, validator):
        signal = make_signal()
        first = validator.validate(signal, "BTC/USDT", now=NOW)
        second = validator.validate(signal, "BTC/USDT", now=NOW + 10)

        assert first.accepted
        assert second.status == ValidationStatus.COOLDOWN
        assert second.display_only
        assert not second.accepted

    def test_different_signal_within_cooldown(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        result = validator.validate(make_signal(SignalType.SELL, entry=120.0), "BTC/USDT", now=NOW + 60)
        assert result.status == ValidationStatus.COOLDOWN

    def test_accepted_after_cooldown(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        result = validator.validate(make_signal(entry=105.0), "BTC/USDT", now=NOW + 121)
        assert result.accepted

    def test_pairs_are_isolated(self, validator):
        assert validator.validate(make_signal(), "BTC/USDT", now=NOW).accepted
        assert validator.validate(make_signal(), "ETH/USDT", now=NOW + 1).accepted

    def test_cooldown_does_not_extend(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.validate(make_signal(entry=110.0), "BTC/USDT", now=NOW + 100)
        # Display-only signals do not restart the window
        assert validator.validate(make_signal(entry=120.0), "BTC/USDT", now=NOW + 130).accepted


class TestDuplicates:
    """Fingerprint matching inside the retention window."""

    def test_identical_after_cooldown_is_duplicate(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        result = validator.validate(make_signal(), "BTC/USDT", now=NOW + 200)
        assert result.status == ValidationStatus.DUPLICATE

    def test_same_bucket_is_duplicate(self, validator):
        validator.validate(make_signal(entry=100.0, confidence=0.70), "BTC/USDT", now=NOW)
        # Confidence rounds to 0.70, entry to 100.0
        result = validator.validate(make_signal(entry=100.004, confidence=0.71), "BTC/USDT", now=NOW + 200)
        assert result.status == ValidationStatus.DUPLICATE

    def test_near_duplicate(self, validator):
        validator.validate(make_signal(entry=100.0, confidence=0.70), "BTC/USDT", now=NOW)
        # Different buckets, but within 0.05 confidence and 0.1% price
        result = validator.validate(make_signal(entry=100.06, confidence=0.74), "BTC/USDT", now=NOW + 200)
        assert result.status == ValidationStatus.DUPLICATE

    def test_other_direction_is_not_duplicate(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        result = validator.validate(make_signal(SignalType.SELL), "BTC/USDT", now=NOW + 200)
        assert result.accepted

    def test_duplicate_expires_after_retention(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        assert validator.validate(make_signal(), "BTC/USDT", now=NOW + 901).accepted

    def test_duplicate_not_recorded(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.validate(make_signal(), "BTC/USDT", now=NOW + 200)
        assert validator.stats()["fingerprints"] == 1


class TestStaticGates:
    """History-independent rejections."""

    def test_neutral_rejected(self, validator):
        result = validator.validate(TradingSignal.neutral(), "BTC/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED

    def test_inconsistent_levels_rejected(self, validator):
        signal = make_signal().model_copy(update={"stop_loss": 101.0})
        result = validator.validate(signal, "BTC/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED
        assert "inconsistent levels" in result.reason

    def test_low_confidence_rejected(self, validator):
        result = validator.validate(make_signal(confidence=0.2, patterns=[]), "BTC/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED

    def test_pattern_discount(self, validator):
        # 0.27 is below 0.3 but above 0.3 * 0.85
        assert not validator.validate(make_signal(confidence=0.27, patterns=[]), "BTC/USDT", now=NOW).accepted
        assert validator.validate(make_signal(confidence=0.27), "BTC/USDT", now=NOW).accepted

    def test_pair_threshold_override(self):
        validator = SignalValidator(ValidatorConfig(pair_min_confidence={"DOGE/USDT": 0.6}))
        assert validator.min_confidence("DOGE/USDT", SignalType.BUY, False) == pytest.approx(0.6)
        result = validator.validate(make_signal(confidence=0.5, patterns=[]), "DOGE/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED

    def test_sell_multiplier(self):
        validator = SignalValidator(ValidatorConfig(sell_confidence_multiplier=1.5))
        assert validator.min_confidence("BTC/USDT", SignalType.SELL, False) == pytest.approx(0.45)
        assert validator.min_confidence("BTC/USDT", SignalType.BUY, False) == pytest.approx(0.3)

    def test_low_risk_reward_rejected(self, validator):
        result = validator.validate(make_signal(risk_reward=0.5), "BTC/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED

    def test_high_confidence_needs_pattern(self, validator):
        result = validator.validate(make_signal(confidence=0.9, patterns=[]), "BTC/USDT", now=NOW)
        assert result.status == ValidationStatus.REJECTED
        assert "pattern" in result.reason

    def test_rejection_does_not_touch_history(self, validator):
        validator.validate(make_signal(confidence=0.1), "BTC/USDT", now=NOW)
        assert validator.validate(make_signal(), "BTC/USDT", now=NOW + 1).accepted

    @pytest.mark.parametrize("confidence", [float("nan"), float("inf"), 1.7, -0.2])
    def test_confidence_outside_unit_range_rejected(self, validator, confidence):
        # model_copy skips field validation
        signal = make_signal().model_copy(update={"confidence": confidence})
        result = validator.validate(signal, "BTC/USDT", now=NOW)

        assert result.status == ValidationStatus.REJECTED
        assert "outside [0, 1]" in result.reason
        assert validator.validate(make_signal(), "BTC/USDT", now=NOW + 1).accepted

    @pytest.mark.parametrize("confidence", [float("nan"), 1.7, -0.2])
    def test_signal_model_bounds_confidence(self, confidence):
        with pytest.raises(ValidationError):
            make_signal(confidence=confidence)


class TestSettingsDefaults:
    def test_default_config_reads_environment(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_ENGINE_COOLDOWN_SECONDS", "5")
        monkeypatch.setenv("SIGNAL_ENGINE_MIN_RISK_REWARD", "1.5")
        get_engine_settings.cache_clear()
        try:
            validator = SignalValidator()
        finally:
            get_engine_settings.cache_clear()

        assert validator.config.cooldown_seconds == 5
        assert validator.config.min_risk_reward == 1.5
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        assert validator.validate(make_signal(entry=105.0), "BTC/USDT", now=NOW + 6).accepted

    def test_explicit_config_wins(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_ENGINE_COOLDOWN_SECONDS", "5")
        get_engine_settings.cache_clear()
        try:
            validator = SignalValidator(ValidatorConfig(cooldown_seconds=300))
        finally:
            get_engine_settings.cache_clear()
        assert validator.config.cooldown_seconds == 300


class TestHousekeeping:
    def test_prune(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.validate(make_signal(), "ETH/USDT", now=NOW + 500)

        assert validator.prune(now=NOW + 1000) == 1
        stats = validator.stats()
        assert stats["fingerprints"] == 1
        assert stats["tracked_pairs"] == 1

    def test_clear_pair(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.clear("BTC/USDT")
        assert validator.validate(make_signal(), "BTC/USDT", now=NOW + 1).accepted

    def test_clear_all_resets_counts(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.clear()
        stats = validator.stats()
        assert stats["accepted"] == 0
        assert stats["tracked_pairs"] == 0

    def test_stats_counts(self, validator):
        validator.validate(make_signal(), "BTC/USDT", now=NOW)
        validator.validate(make_signal(), "BTC/USDT", now=NOW + 1)
        validator.validate(TradingSignal.neutral(), "BTC/USDT", now=NOW + 2)
        stats = validator.stats()

        assert stats["accepted"] == 1
        assert stats["cooldown"] == 1
        assert stats["rejected"] == 1
        assert stats["duplicate"] == 0

    def test_injected_clock(self):
        clock = {"now": NOW}
        validator = SignalValidator(clock=lambda: clock["now"])
        assert validator.validate(make_signal(), "BTC/USDT").accepted
        clock["now"] += 30
        assert validator.validate(make_signal(entry=120.0), "BTC/USDT").display_only

    def test_concurrent_submissions(self, validator):
        results = []
        barrier = threading.Barrier(8)

        def submit():
            barrier.wait()
            results.append(validator.validate(make_signal(), "BTC/USDT", now=NOW))

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(r.accepted for r in results) == 1


class TestFingerprint:
    def test_rounding(self, validator):
        fp = validator.fingerprint(make_signal(entry=43_217.89, confidence=0.712), "BTC/USDT", NOW)
        assert fp.rounded_confidence == pytest.approx(0.70)
        assert fp.entry_bucket == pytest.approx(43_220.0)
        assert fp.key == ("BTC/USDT", "BUY", fp.rounded_confidence, fp.entry_bucket)

    @pytest.mark.parametrize(
        "value,digits,expected",
        [
            (123456.0, 4, 123500.0),
            (0.00123456, 3, 0.00123),
            (-98.765, 2, -99.0),
            (0.0, 4, 0.0),
        ],
    )
    def test_round_significant(self, value, digits, expected):
        assert round_significant(value, digits) == pytest.approx(expected)
