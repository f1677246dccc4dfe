"""Tests for the rolling file sink."""

import os
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from loki_shipper.file_sink import (
    RollingFileSink,
    enforce_retention,
    get_rolled_files,
    rolled_filename,
)
from loki_shipper.models import LogEvent, make_batch

DAY = datetime(2024, 10, 19, 23, 59, 0, tzinfo=timezone.utc)


def _batch(*messages):
    return make_batch([LogEvent(timestamp=DAY, message=m) for m in messages])


def _read(path):
    with open(path, encoding="utf-8") as f:
        return f.read()


class TestNaming:
    def test_rolled_filename(self):
        assert rolled_filename("log.txt", DAY) == "log20241019.txt"
        assert rolled_filename("app", DAY) == "app20241019"

    def test_get_rolled_files_sorted(self, tmp_path):
        for name in ("log20241019.txt", "log20241017.txt", "other.txt", "log2024.txt"):
            (tmp_path / name).write_text("")
        assert get_rolled_files(str(tmp_path), "log.txt") == [
            "log20241017.txt", "log20241019.txt",
        ]


class TestRetention:
    def test_keeps_newest_including_current(self, tmp_path):
        for day in range(10, 20):
            (tmp_path / f"log202410{day}.txt").write_text("")
        deleted = enforce_retention(str(tmp_path), "log.txt", 3, keep="log20241019.txt")

        assert len(deleted) == 7
        assert get_rolled_files(str(tmp_path), "log.txt") == [
            "log20241017.txt", "log20241018.txt", "log20241019.txt",
        ]


class TestBufferedWrites:
    def test_not_on_disk_until_flush(self, tmp_path):
        sink = RollingFileSink(str(tmp_path), flush_interval=60.0, time_func=lambda: DAY)
        sink.emit(_batch("one", "two"))
        path = sink.current_path

        assert _read(path) == ""
        sink.flush()
        lines = _read(path).splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("[INF] one")
        sink.close()

    def test_background_flush_interval(self, tmp_path):
        sink = RollingFileSink(str(tmp_path), flush_interval=0.1, time_func=lambda: DAY)
        sink.emit(_batch("tick"))
        path = sink.current_path

        deadline = time.monotonic() + 3
        while time.monotonic() < deadline and "tick" not in _read(path):
            time.sleep(0.05)
        assert "tick" in _read(path)
        sink.close()

    def test_close_flushes_and_is_idempotent(self, tmp_path):
        sink = RollingFileSink(str(tmp_path), flush_interval=60.0, time_func=lambda: DAY)
        sink.emit(_batch("last words"))
        sink.close()
        sink.close()

        assert "last words" in _read(os.path.join(str(tmp_path), "log20241019.txt"))

    def test_emit_after_close_raises(self, tmp_path):
        sink = RollingFileSink(str(tmp_path), time_func=lambda: DAY)
        sink.close()
        with pytest.raises(ValueError):
            sink.emit(_batch("late"))


class TestDailyRoll:
    def test_rolls_at_midnight_and_applies_retention(self, tmp_path):
        (tmp_path / "log20241001.txt").write_text("old\n")
        clock = [DAY]
        sink = RollingFileSink(
            str(tmp_path), retained_file_count=2, flush_interval=60.0,
            time_func=lambda: clock[0],
        )
        sink.emit(_batch("before midnight"))

        clock[0] = DAY + timedelta(minutes=2)
        sink.emit(_batch("after midnight"))
        sink.close()

        assert get_rolled_files(str(tmp_path), "log.txt") == [
            "log20241019.txt", "log20241020.txt",
        ]
        assert "before midnight" in _read(tmp_path / "log20241019.txt")
        assert "after midnight" in _read(tmp_path / "log20241020.txt")


class TestConcurrentEmit:
    def test_lines_never_interleave(self, tmp_path):
        sink = RollingFileSink(str(tmp_path), flush_interval=0.05, time_func=lambda: DAY)

        def worker(t):
            for i in range(100):
                sink.emit(_batch(f"thread-{t}-line-{i}-" + "p" * 200))

        threads = [threading.Thread(target=worker, args=(t,)) for t in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        sink.close()

        lines = _read(tmp_path / "log20241019.txt").splitlines()
        assert len(lines) == 500
        assert all(line.endswith("p" * 200) for line in lines)
