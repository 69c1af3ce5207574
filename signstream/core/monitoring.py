"""
In-process service metrics for the health / status endpoints.

Tracks request outcomes per endpoint, a rolling window of processing
latencies (transcription and mapping), error counts by type, and reports
memory pressure of the current process via psutil. Consumed only for
operational visibility; the streaming core never reads it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Optional

import psutil

from signstream.core.logger import get_logger

log = get_logger(__name__)

SLOW_REQUEST_MS = 5000.0
MIN_SUCCESS_RATE = 95.0
MAX_AVG_LATENCY_MS = 3000.0
MAX_MEMORY_PERCENT = 85.0


@dataclass
class EndpointStats:
    count: int = 0
    avg_latency_ms: float = 0.0


def _memory_usage() -> Dict[str, float]:
    proc = psutil.Process()
    rss = proc.memory_info().rss
    return {
        "percent": float(proc.memory_percent()),
        "rss_mb": round(rss / (1024 * 1024), 1),
        "system_percent": float(psutil.virtual_memory().percent),
    }


class ServiceMetrics:
    def __init__(
        self,
        history_size: int = 100,
        clock: Callable[[], float] = time.time,
        memory_probe: Callable[[], Dict[str, float]] = _memory_usage,
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._memory_probe = memory_probe
        self._history_size = history_size
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.started_at = self._clock()
            self.requests_total = 0
            self.requests_successful = 0
            self.requests_failed = 0
            self.endpoints: Dict[str, EndpointStats] = {}
            self.transcriptions = 0
            self.mappings = 0
            self._latencies: Deque[float] = deque(maxlen=self._history_size)
            self.errors_total = 0
            self.errors_by_type: Dict[str, int] = {}

    def record_request(self, endpoint: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self.requests_total += 1
            if status_code < 400:
                self.requests_successful += 1
            else:
                self.requests_failed += 1
            stats = self.endpoints.setdefault(endpoint, EndpointStats())
            stats.count += 1
            stats.avg_latency_ms += (latency_ms - stats.avg_latency_ms) / stats.count
        if latency_ms > SLOW_REQUEST_MS:
            log.warning("Slow request detected: endpoint=%s latency=%.0fms status=%s", endpoint, latency_ms, status_code)

    def record_processing(self, kind: str, duration_ms: float) -> None:
        with self._lock:
            if kind == "transcription":
                self.transcriptions += 1
            elif kind == "mapping":
                self.mappings += 1
            self._latencies.append(duration_ms)

    def record_error(self, error_type: str) -> None:
        with self._lock:
            self.errors_total += 1
            self.errors_by_type[error_type] = self.errors_by_type.get(error_type, 0) + 1

    @property
    def avg_latency_ms(self) -> float:
        if not self._latencies:
            return 0.0
        return sum(self._latencies) / len(self._latencies)

    @property
    def success_rate(self) -> float:
        if self.requests_total == 0:
            return 100.0
        return self.requests_successful / self.requests_total * 100.0

    def health(self) -> Dict[str, Any]:
        """Return status (healthy / degraded / unhealthy), issues and raw metrics."""
        with self._lock:
            success_rate = self.success_rate
            avg_latency = self.avg_latency_ms
            errors_total = self.errors_total
            successful = self.requests_successful
            snapshot = {
                "requests": {
                    "total": self.requests_total,
                    "successful": successful,
                    "failed": self.requests_failed,
                    "successRate": f"{success_rate:.1f}%",
                    "byEndpoint": {
                        path: {"count": s.count, "avgLatency": round(s.avg_latency_ms, 1)}
                        for path, s in self.endpoints.items()
                    },
                },
                "processing": {
                    "totalTranscriptions": self.transcriptions,
                    "totalMappings": self.mappings,
                    "avgLatency": f"{avg_latency:.0f}ms",
                },
                "errors": {"total": errors_total, "byType": dict(self.errors_by_type)},
            }
            uptime = self._clock() - self.started_at

        memory: Optional[Dict[str, float]]
        try:
            memory = self._memory_probe()
        except psutil.Error:
            log.exception("Failed to read process memory usage")
            memory = None

        status = "healthy"
        issues = []
        if success_rate < MIN_SUCCESS_RATE:
            status = "degraded"
            issues.append(f"Low success rate: {success_rate:.1f}%")
        if avg_latency > MAX_AVG_LATENCY_MS:
            status = "degraded"
            issues.append(f"High latency: {avg_latency:.0f}ms")
        if memory is not None and memory["percent"] > MAX_MEMORY_PERCENT:
            status = "degraded"
            issues.append(f"High memory usage: {memory['percent']:.1f}%")
        if errors_total > successful * 0.05:
            status = "unhealthy"
            issues.append("High error rate")

        snapshot["system"] = {
            "memoryUsage": f"{memory['percent']:.1f}%" if memory else None,
            "rssMB": memory["rss_mb"] if memory else None,
            "systemMemoryUsage": f"{memory['system_percent']:.1f}%" if memory else None,
        }
        return {
            "status": status,
            "uptime": int(uptime),
            "issues": issues,
            "metrics": snapshot,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


_metrics: Optional[ServiceMetrics] = None


def get_metrics() -> ServiceMetrics:
    global _metrics
    if _metrics is None:
        _metrics = ServiceMetrics()
    return _metrics
