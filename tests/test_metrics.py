"""Tests for delivery metrics."""

import threading

from loki_shipper.metrics import DeliveryMetrics
from loki_shipper.models import Rejected, Success, TransportFailure


class TestCounters:
    def test_initial_snapshot(self):
        snap = DeliveryMetrics().snapshot()
        assert snap["delivered"] == 0
        assert snap["rejected"] == 0
        assert snap["transport_failures"] == 0
        assert snap["events_dropped"] == 0
        assert snap["p95_latency_ms"] == 0.0

    def test_record_outcomes(self):
        metrics = DeliveryMetrics()
        metrics.record(Success(204), 10.0)
        metrics.record(Rejected(500, "err"), 20.0)
        metrics.record(TransportFailure("ConnectError"), 30.0)
        metrics.record_backup(True)
        metrics.record_backup(False)
        metrics.record_dropped(3)

        snap = metrics.snapshot()
        assert snap["delivered"] == 1
        assert snap["rejected"] == 1
        assert snap["transport_failures"] == 1
        assert snap["backups_written"] == 1
        assert snap["backup_failures"] == 1
        assert snap["events_dropped"] == 3
        assert snap["p50_latency_ms"] == 20.0

    def test_thread_safety(self):
        metrics = DeliveryMetrics()

        def worker():
            for _ in range(1000):
                metrics.record(Success(200), 1.0)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert metrics.snapshot()["delivered"] == 4000


class TestPercentile:
    def test_interpolates(self):
        assert DeliveryMetrics._percentile([1, 2, 3, 4], 50) == 2.5

    def test_single_value(self):
        assert DeliveryMetrics._percentile([7], 95) == 7.0
