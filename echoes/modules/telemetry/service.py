from __future__ import annotations

from collections import Counter
from statistics import mean
from threading import Lock

_MAX_LATENCY_SAMPLES = 1000


def _p95(latencies: list[float]) -> float:
    if not latencies:
        return 0.0
    ordered = sorted(latencies)
    idx = max(0, min(len(ordered) - 1, round(0.95 * (len(ordered) - 1))))
    return float(ordered[idx])


class _SessionTelemetryStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._latencies_ms: dict[str, list[float]] = {}
        self.total_requests: Counter[str] = Counter()
        self.successes: Counter[str] = Counter()
        self.failures: Counter[str] = Counter()
        self.failures_by_code: Counter[str] = Counter()
        self.concurrency_conflicts: int = 0
        self.badges_unlocked: int = 0

    def reset(self) -> None:
        with self._lock:
            self._latencies_ms = {}
            self.total_requests = Counter()
            self.successes = Counter()
            self.failures = Counter()
            self.failures_by_code = Counter()
            self.concurrency_conflicts = 0
            self.badges_unlocked = 0

    def record_success(
        self,
        *,
        operation: str,
        latency_ms: float,
        badges_unlocked: int = 0,
    ) -> None:
        with self._lock:
            self.total_requests[operation] += 1
            self.successes[operation] += 1
            samples = self._latencies_ms.setdefault(operation, [])
            samples.append(float(latency_ms))
            if len(samples) > _MAX_LATENCY_SAMPLES:
                self._latencies_ms[operation] = samples[-_MAX_LATENCY_SAMPLES:]
            self.badges_unlocked += int(badges_unlocked)

    def record_failure(self, *, operation: str, error_code: str) -> None:
        with self._lock:
            self.total_requests[operation] += 1
            self.failures[operation] += 1
            self.failures_by_code[str(error_code)] += 1
            if str(error_code) == "CONCURRENCY_CONFLICT":
                self.concurrency_conflicts += 1

    def summary(self) -> dict:
        with self._lock:
            operations: dict[str, dict] = {}
            for operation in sorted(self.total_requests):
                latencies = list(self._latencies_ms.get(operation, []))
                operations[operation] = {
                    "total_requests": int(self.total_requests[operation]),
                    "successes": int(self.successes[operation]),
                    "failures": int(self.failures[operation]),
                    "avg_latency_ms": round(float(mean(latencies)) if latencies else 0.0, 3),
                    "p95_latency_ms": round(_p95(latencies), 3),
                }
            total = int(sum(self.total_requests.values()))
            conflict_ratio = 0.0 if total <= 0 else float(self.concurrency_conflicts) / float(total)
            return {
                "total_requests": total,
                "operations": operations,
                "failures_by_code": dict(self.failures_by_code),
                "concurrency_conflicts": int(self.concurrency_conflicts),
                "concurrency_conflict_ratio": round(conflict_ratio, 4),
                "badges_unlocked": int(self.badges_unlocked),
            }


_session_telemetry = _SessionTelemetryStore()


def reset_session_telemetry() -> None:
    _session_telemetry.reset()


def record_operation_success(
    *,
    operation: str,
    latency_ms: float,
    badges_unlocked: int = 0,
) -> None:
    _session_telemetry.record_success(
        operation=operation,
        latency_ms=latency_ms,
        badges_unlocked=badges_unlocked,
    )


def record_operation_failure(*, operation: str, error_code: str) -> None:
    _session_telemetry.record_failure(operation=operation, error_code=error_code)


def get_session_telemetry_summary() -> dict:
    return _session_telemetry.summary()
