"""Signal validation and duplicate suppression.

One SignalValidator instance is owned by a session or a backtest run.
It applies static gates to each signal, then two history checks per
pair:

1. Cooldown: after a signal is accepted for a pair, later signals for the
   same pair are display-only until ``cooldown_seconds`` elapse.
2. Fingerprint: a coarse key (direction, rounded confidence, bucketed
   entry) is compared against accepted fingerprints inside the retention
   window; identical or near-identical signals are duplicates.

Signals failing a static gate are rejected without touching history.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from core.models.config import ValidatorConfig
from core.models.signal import SignalFingerprint, SignalType, TradingSignal
from core.settings import get_engine_settings

logger = logging.getLogger(__name__)


class ValidationStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"  # failed a static gate
    COOLDOWN = "cooldown"  # pair in cooldown, display only
    DUPLICATE = "duplicate"


@dataclass(slots=True, frozen=True)
class ValidationResult:
    status: ValidationStatus
    reason: str = ""

    @property
    def accepted(self) -> bool:
        """True when the signal should be saved and tracked."""
        return self.status == ValidationStatus.ACCEPTED

    @property
    def display_only(self) -> bool:
        return self.status == ValidationStatus.COOLDOWN


def round_significant(value: float, digits: int) -> float:
    """Round to ``digits`` significant digits."""
    if value == 0 or not math.isfinite(value):
        return value
    magnitude = math.floor(math.log10(abs(value)))
    return round(value, digits - 1 - magnitude)


class SignalValidator:
    """Gatekeeper enforcing static quality gates, cooldown and dedup per pair."""

    def __init__(
        self,
        config: ValidatorConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or ValidatorConfig.from_settings(get_engine_settings())
        self._clock = clock
        self._lock = threading.Lock()
        self._last_accepted: dict[str, float] = {}
        self._fingerprints: dict[str, deque[SignalFingerprint]] = {}
        self._last_prune = 0.0
        self._counts = {status: 0 for status in ValidationStatus}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self, signal: TradingSignal, pair: str, now: float | None = None) -> ValidationResult:
        """Validate a signal for ``pair`` at ``now`` (unix seconds)."""
        now = self._clock() if now is None else now

        problem = self.check_static(signal, pair)
        if problem is not None:
            return self._record(ValidationResult(ValidationStatus.REJECTED, problem), pair)

        fingerprint = self.fingerprint(signal, pair, now)
        with self._lock:
            if now - self._last_prune >= self.config.prune_interval_seconds:
                self._prune_locked(now)

            last = self._last_accepted.get(pair)
            if last is not None and now - last < self.config.cooldown_seconds:
                remaining = self.config.cooldown_seconds - (now - last)
                result = ValidationResult(
                    ValidationStatus.COOLDOWN, f"cooldown active ({remaining:.0f}s remaining)"
                )
            elif self._is_duplicate_locked(fingerprint, now):
                result = ValidationResult(ValidationStatus.DUPLICATE, "duplicate of a recent signal")
            else:
                self._last_accepted[pair] = now
                self._fingerprints.setdefault(pair, deque()).append(fingerprint)
                result = ValidationResult(ValidationStatus.ACCEPTED)

        return self._record(result, pair)

    def check_static(self, signal: TradingSignal, pair: str) -> str | None:
        """Reason the signal fails a history-independent gate, or None."""
        cfg = self.config
        if signal.type == SignalType.NEUTRAL:
            return "signal is not actionable"
        if not signal.levels_consistent:
            return (
                f"inconsistent levels entry={signal.entry} "
                f"sl={signal.stop_loss} tp={signal.take_profit}"
            )
        if not math.isfinite(signal.confidence) or not 0 <= signal.confidence <= 1:
            return f"confidence {signal.confidence} outside [0, 1]"

        threshold = self.min_confidence(pair, signal.type, bool(signal.patterns))
        if signal.confidence < threshold:
            return f"confidence {signal.confidence:.2f} below {threshold:.2f}"
        if signal.risk_reward < cfg.min_risk_reward:
            return f"risk/reward {signal.risk_reward:.2f} below {cfg.min_risk_reward:.2f}"
        if signal.confidence >= cfg.high_confidence_threshold and not signal.patterns:
            return "high-confidence signal without a supporting pattern"
        return None

    def min_confidence(self, pair: str, signal_type: SignalType, has_patterns: bool) -> float:
        cfg = self.config
        threshold = cfg.pair_min_confidence.get(pair, cfg.min_confidence)
        if signal_type == SignalType.SELL:
            threshold *= cfg.sell_confidence_multiplier
        if has_patterns:
            threshold *= cfg.pattern_discount
        return threshold

    def fingerprint(self, signal: TradingSignal, pair: str, now: float) -> SignalFingerprint:
        cfg = self.config
        step = cfg.confidence_step
        return SignalFingerprint(
            pair=pair,
            type=signal.type,
            rounded_confidence=round(round(signal.confidence / step) * step, 6),
            entry_bucket=round_significant(signal.entry, cfg.entry_significant_digits),
            confidence=signal.confidence,
            entry=signal.entry,
            recorded_at=now,
        )

    def prune(self, now: float | None = None) -> int:
        """Drop history older than the retention window. Returns entries removed."""
        now = self._clock() if now is None else now
        with self._lock:
            return self._prune_locked(now)

    def clear(self, pair: str | None = None) -> None:
        """Forget history for one pair, or for all pairs."""
        with self._lock:
            if pair is None:
                self._last_accepted.clear()
                self._fingerprints.clear()
                self._counts = {status: 0 for status in ValidationStatus}
            else:
                self._last_accepted.pop(pair, None)
                self._fingerprints.pop(pair, None)

    def stats(self) -> dict:
        with self._lock:
            return {
                "tracked_pairs": len(self._last_accepted),
                "fingerprints": sum(len(q) for q in self._fingerprints.values()),
                "cooldown_seconds": self.config.cooldown_seconds,
                "retention_seconds": self.config.retention_seconds,
                **{status.value: count for status, count in self._counts.items()},
            }

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _is_duplicate_locked(self, fingerprint: SignalFingerprint, now: float) -> bool:
        cfg = self.config
        for previous in self._fingerprints.get(fingerprint.pair, ()):
            if now - previous.recorded_at >= cfg.retention_seconds:
                continue
            if previous.is_near(
                fingerprint, cfg.duplicate_confidence_delta, cfg.duplicate_price_delta_pct
            ):
                return True
        return False

    def _prune_locked(self, now: float) -> int:
        retention = self.config.retention_seconds
        removed = 0
        for pair in list(self._fingerprints):
            queue = self._fingerprints[pair]
            while queue and now - queue[0].recorded_at >= retention:
                queue.popleft()
                removed += 1
            if not queue:
                del self._fingerprints[pair]
        horizon = max(retention, self.config.cooldown_seconds)
        for pair, last in list(self._last_accepted.items()):
            if now - last >= horizon:
                del self._last_accepted[pair]
        self._last_prune = now
        if removed:
            logger.debug(f"Pruned {removed} expired fingerprints")
        return removed

    def _record(self, result: ValidationResult, pair: str) -> ValidationResult:
        with self._lock:
            self._counts[result.status] += 1
        if result.accepted:
            logger.info(f"Signal accepted for {pair}")
        else:
            logger.debug(f"Signal {result.status.value} for {pair}: {result.reason}")
        return result
