from __future__ import annotations

import threading
from collections.abc import Iterable

from .models import EngineStats


class StatsTracker:
    """Running totals for one engine. A call counts as failed if it had any
    node error or ran out of time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_processed = 0
        self._failed = 0
        self._average_ms = 0.0
        self._rules_usage: dict[str, int] = {}

    def record(self, processing_ms: float, rules_applied: Iterable[str], failed: bool) -> None:
        # sub-millisecond calls still count as 1ms so the mean never reads as zero
        elapsed = max(processing_ms, 1.0)
        with self._lock:
            self._total_processed += 1
            self._average_ms += (elapsed - self._average_ms) / self._total_processed
            for rule in rules_applied:
                self._rules_usage[rule] = self._rules_usage.get(rule, 0) + 1
            if failed:
                self._failed += 1

    def snapshot(self, total_pseudonyms: int) -> EngineStats:
        with self._lock:
            processed = self._total_processed
            return EngineStats(
                total_processed=processed,
                total_pseudonyms=total_pseudonyms,
                average_processing_time=self._average_ms,
                error_rate=self._failed / processed if processed else 0.0,
                rules_usage=dict(self._rules_usage),
            )

    def reset(self) -> None:
        with self._lock:
            self._total_processed = 0
            self._failed = 0
            self._average_ms = 0.0
            self._rules_usage = {}
