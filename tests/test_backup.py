"""Tests for the batch backup store."""

import os
import re
import threading
from datetime import datetime, timezone

from loki_shipper.backup import BackupStore, read_records
from loki_shipper.fallback import FallbackChannel

LINE_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?\+00:00: (?P<payload>.+)$"
)


def _lines(path):
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


class TestCapture:
    def test_appends_timestamped_line(self, backup, backup_path):
        assert backup.capture('{"streams":[]}') is True

        lines = _lines(backup_path)
        assert len(lines) == 1
        match = LINE_PATTERN.match(lines[0])
        assert match is not None
        assert match.group("payload") == '{"streams":[]}'

    def test_bytes_payload_decoded(self, backup, backup_path):
        backup.capture("héllo".encode("utf-8"))
        assert _lines(backup_path)[0].endswith(": héllo")

    def test_appends_in_order(self, backup, backup_path):
        for i in range(3):
            backup.capture(f"batch-{i}")
        payloads = [r.payload for r in read_records(backup_path)]
        assert payloads == ["batch-0", "batch-1", "batch-2"]

    def test_uses_injected_clock(self, backup_path, fallback):
        fixed = datetime(2025, 1, 15, 12, 0, 0, 250000, tzinfo=timezone.utc)
        store = BackupStore(backup_path, fallback, time_func=lambda: fixed)
        store.capture("payload")
        assert _lines(backup_path) == ["2025-01-15T12:00:00.250000+00:00: payload"]

    def test_newlines_escaped_to_keep_one_record_per_line(self, backup, backup_path):
        backup.capture("first\nsecond\r\nthird")
        lines = _lines(backup_path)
        assert len(lines) == 1
        assert lines[0].endswith(": first\\nsecond\\r\\nthird")

    def test_payloads_recovered_exactly(self, backup, backup_path):
        payloads = [
            '{"a":\n1}',
            '{"a":"x\\ny"}',
            "C:\\logs\\new\r\n",
            "trailing backslash \\",
        ]
        for payload in payloads:
            backup.capture(payload)

        assert len(_lines(backup_path)) == len(payloads)
        assert [r.payload for r in read_records(backup_path)] == payloads

    def test_real_and_literal_newline_stored_differently(self, backup, backup_path):
        backup.capture("a\nb")
        backup.capture("a\\nb")
        first, second = _lines(backup_path)
        assert first.split(": ", 1)[1] == "a\\nb"
        assert second.split(": ", 1)[1] == "a\\\\nb"

    def test_creates_parent_directory(self, tmp_path, fallback):
        path = tmp_path / "nested" / "dir" / "backup.log"
        store = BackupStore(str(path), fallback)
        assert store.capture("x") is True
        assert path.exists()

    def test_counts_captures(self, backup):
        backup.capture("a")
        backup.capture("b")
        assert backup.captured == 2
        assert backup.failed == 0


class TestEmptyPayload:
    def test_none_is_noop(self, backup, backup_path, fallback):
        assert backup.capture(None) is False
        assert not os.path.exists(backup_path)
        assert fallback.count == 0

    def test_empty_string_is_noop(self, backup, backup_path):
        assert backup.capture("") is False
        assert backup.capture(b"") is False
        assert not os.path.exists(backup_path)
        assert backup.captured == 0


class TestWriteFailure:
    def test_unwritable_path_reported_not_raised(self, tmp_path, fallback):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = BackupStore(str(blocker / "backup.log"), fallback)

        assert store.capture("payload") is False
        assert store.failed == 1
        assert any("Failed to save batch" in m for m in fallback.recent())

    def test_fallback_line_written_to_stream(self, tmp_path, fallback_stream):
        channel = FallbackChannel(stream=fallback_stream)
        store = BackupStore(str(tmp_path), channel)  # a directory, not a file
        store.capture("payload")
        assert "Failed to save batch to backup file" in fallback_stream.getvalue()

    def test_unsized_payload_reported_not_raised(self, backup, backup_path, fallback):
        assert backup.capture(12345) is False
        assert backup.failed == 1
        assert not os.path.exists(backup_path)
        assert any("Failed to save batch" in m for m in fallback.recent())


class TestConcurrentCapture:
    def test_fifty_concurrent_captures_are_well_formed(self, backup, backup_path):
        n = 50
        payload = '{"streams":[{"stream":{"app":"my-app"},"values":[["1","%s"]]}]}'
        barrier = threading.Barrier(n)

        def worker(i):
            barrier.wait()
            backup.capture(payload % ("x" * 2000 + str(i)))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        lines = _lines(backup_path)
        assert len(lines) == n
        assert all(LINE_PATTERN.match(line) for line in lines)
        seen = {line.rsplit('x', 1)[1] for line in lines}
        assert len(seen) == n

    def test_two_stores_same_file_share_lock(self, backup_path, fallback):
        stores = [BackupStore(backup_path, fallback) for _ in range(2)]

        def worker(store):
            for i in range(25):
                store.capture("y" * 5000 + str(i))

        threads = [threading.Thread(target=worker, args=(s,)) for s in stores]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = list(read_records(backup_path))
        assert len(records) == 50
        assert len(_lines(backup_path)) == 50


class TestReadRecords:
    def test_skips_malformed_lines(self, backup, backup_path):
        backup.capture("good")
        with open(backup_path, "a", encoding="utf-8") as f:
            f.write("garbage without timestamp\n")
            f.write("2025-01-15T12:00:00: naive timestamp\n")
        backup.capture("also good")

        payloads = [r.payload for r in read_records(backup_path)]
        assert payloads == ["good", "also good"]

    def test_record_timestamps_are_utc(self, backup, backup_path):
        backup.capture("payload")
        record = next(read_records(backup_path))
        assert record.captured_at.utcoffset().total_seconds() == 0
