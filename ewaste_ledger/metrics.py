"""
Metrics collection for ledger operations.

Tracks per-operation latency and outcome (anchoring, history lookups,
vendor verification). Summaries are served at GET /metrics.
"""
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass
class OperationMetric:
    ts: str
    operation: str
    subject_id: str
    latency_ms: float
    success: bool
    outcome: Optional[str] = None


@dataclass
class OperationSummary:
    operation: str
    total: int
    success: int
    failed: int
    avg_latency_ms: float
    p95_latency_ms: float


class MetricsCollector:
    """Thread-safe, bounded collector of ledger operation metrics."""

    def __init__(self, max_records: int = 10_000):
        self._lock = threading.Lock()
        self._records: deque[OperationMetric] = deque(maxlen=max_records)
        self._started_at = datetime.now(timezone.utc).isoformat(timespec="seconds")

    def record(self, operation: str, subject_id: str, latency_ms: float,
               success: bool, outcome: Optional[str] = None):
        metric = OperationMetric(
            ts=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            operation=operation, subject_id=subject_id,
            latency_ms=round(latency_ms, 2), success=success, outcome=outcome,
        )
        with self._lock:
            self._records.append(metric)

    def summary(self) -> dict:
        with self._lock:
            records = list(self._records)

        by_op: dict[str, list[OperationMetric]] = {}
        for r in records:
            by_op.setdefault(r.operation, []).append(r)

        ops = []
        for name in sorted(by_op):
            rows = by_op[name]
            latencies = sorted(r.latency_ms for r in rows)
            ok = sum(1 for r in rows if r.success)
            ops.append(OperationSummary(
                operation=name,
                total=len(rows),
                success=ok,
                failed=len(rows) - ok,
                avg_latency_ms=round(sum(latencies) / len(latencies), 2),
                p95_latency_ms=latencies[min(int(len(latencies) * 0.95), len(latencies) - 1)],
            ))
        return {"started_at": self._started_at, "operations": ops}

    def recent(self, n: int = 50) -> list[OperationMetric]:
        with self._lock:
            return list(self._records)[-n:]
