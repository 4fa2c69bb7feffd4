"""
Metrics Collection for the Acumatica Sync Service

Collects in-process counters for:
- Sync runs per entity type (started, completed, failed)
- Row outcomes (created, updated, failed)
- ERP session usage (logins, cache hits, re-auth retries, logouts)
- Processing times (average, p95)

Exposed through ``GET /metrics``.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class SyncRunMetrics:
    """Sync run counters."""
    started: int = 0
    completed: int = 0
    failed: int = 0
    by_entity: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"started": 0, "completed": 0, "failed": 0})
    )


@dataclass
class RowMetrics:
    """Per-record outcomes across all runs."""
    created: int = 0
    updated: int = 0
    failed: int = 0


@dataclass
class SessionMetrics:
    """ERP session usage."""
    logins: int = 0
    login_failures: int = 0
    cache_hits: int = 0
    reauth_retries: int = 0
    logouts: int = 0


@dataclass
class TimingMetrics:
    """Processing time samples."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_sync_started("invoice")
        metrics.record_sync_completed("invoice", created=3, updated=1, failed=0, duration_ms=820)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.runs = SyncRunMetrics()
        self.rows = RowMetrics()
        self.sessions = SessionMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Sync Runs
    # =========================================================================

    def record_sync_started(self, entity_type: str):
        with self._lock:
            self.runs.started += 1
            self.runs.by_entity[entity_type]["started"] += 1

    def record_sync_completed(
        self,
        entity_type: str,
        created: int = 0,
        updated: int = 0,
        failed: int = 0,
        duration_ms: float = None,
    ):
        with self._lock:
            self.runs.completed += 1
            self.runs.by_entity[entity_type]["completed"] += 1
            self.rows.created += created
            self.rows.updated += updated
            self.rows.failed += failed
            if duration_ms:
                self.timings.add_sample(duration_ms, f"sync.{entity_type}")

    def record_sync_failed(self, entity_type: str):
        with self._lock:
            self.runs.failed += 1
            self.runs.by_entity[entity_type]["failed"] += 1

    # =========================================================================
    # Sessions
    # =========================================================================

    def record_login(self, success: bool = True):
        with self._lock:
            if success:
                self.sessions.logins += 1
            else:
                self.sessions.login_failures += 1

    def record_session_reuse(self):
        with self._lock:
            self.sessions.cache_hits += 1

    def record_reauth_retry(self):
        with self._lock:
            self.sessions.reauth_retries += 1

    def record_logout(self):
        with self._lock:
            self.sessions.logouts += 1

    # =========================================================================
    # Timing
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "sync_runs": {
                    "started": self.runs.started,
                    "completed": self.runs.completed,
                    "failed": self.runs.failed,
                    "by_entity": {k: dict(v) for k, v in self.runs.by_entity.items()},
                },
                "rows": {
                    "created": self.rows.created,
                    "updated": self.rows.updated,
                    "failed": self.rows.failed,
                },
                "sessions": {
                    "logins": self.sessions.logins,
                    "login_failures": self.sessions.login_failures,
                    "cache_hits": self.sessions.cache_hits,
                    "reauth_retries": self.sessions.reauth_retries,
                    "logouts": self.sessions.logouts,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }

    def reset(self):
        """Zero all counters."""
        with self._lock:
            self.runs = SyncRunMetrics()
            self.rows = RowMetrics()
            self.sessions = SessionMetrics()
            self.timings = TimingMetrics()


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()
