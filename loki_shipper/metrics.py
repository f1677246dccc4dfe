"""Delivery metrics — thread-safe counters and latency percentiles."""

import threading
import time

from loki_shipper.models import DeliveryOutcome, Rejected, Success, TransportFailure


class DeliveryMetrics:
    """Collects counters about remote deliveries, backups and dropped events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._delivered: int = 0
        self._rejected: int = 0
        self._transport_failures: int = 0
        self._backups_written: int = 0
        self._backup_failures: int = 0
        self._events_dropped: int = 0
        self._latencies: list[float] = []
        self._start_time = time.monotonic()

    def record(self, outcome: DeliveryOutcome, latency_ms: float) -> None:
        """Record one classified delivery attempt."""
        with self._lock:
            if isinstance(outcome, Success):
                self._delivered += 1
            elif isinstance(outcome, Rejected):
                self._rejected += 1
            elif isinstance(outcome, TransportFailure):
                self._transport_failures += 1
            self._latencies.append(latency_ms)

    def record_backup(self, written: bool) -> None:
        with self._lock:
            if written:
                self._backups_written += 1
            else:
                self._backup_failures += 1

    def record_dropped(self, count: int = 1) -> None:
        with self._lock:
            self._events_dropped += count

    def snapshot(self) -> dict:
        """Return a point-in-time snapshot of all counters."""
        with self._lock:
            latencies = list(self._latencies)
            return {
                "delivered": self._delivered,
                "rejected": self._rejected,
                "transport_failures": self._transport_failures,
                "backups_written": self._backups_written,
                "backup_failures": self._backup_failures,
                "events_dropped": self._events_dropped,
                "p50_latency_ms": self._percentile(latencies, 50),
                "p95_latency_ms": self._percentile(latencies, 95),
                "uptime_seconds": time.monotonic() - self._start_time,
            }

    @staticmethod
    def _percentile(data: list, pct: float) -> float:
        """Interpolated percentile, or 0.0 for an empty list."""
        if not data:
            return 0.0

        sorted_data = sorted(data)
        n = len(sorted_data)
        if n == 1:
            return float(sorted_data[0])

        idx = (pct / 100) * (n - 1)
        lower = int(idx)
        upper = lower + 1
        fraction = idx - lower

        if upper >= n:
            return float(sorted_data[-1])

        return float(sorted_data[lower] + fraction * (sorted_data[upper] - sorted_data[lower]))
