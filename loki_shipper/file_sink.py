"""Rolling file sink — buffered, daily-rolled text log with count-based retention."""

import os
import re
import threading
from datetime import datetime, timezone

from loki_shipper.formatter import render_text
from loki_shipper.models import LogBatch


def rolled_filename(filename: str, day: datetime) -> str:
    """``log.txt`` on 2024-10-19 becomes ``log20241019.txt``."""
    stem, ext = os.path.splitext(filename)
    return f"{stem}{day.strftime('%Y%m%d')}{ext}"


def get_rolled_files(log_dir: str, filename: str) -> list[str]:
    """List rolled files for *filename*, oldest first (the date suffix sorts lexically)."""
    stem, ext = os.path.splitext(filename)
    pattern = re.compile(rf"^{re.escape(stem)}\d{{8}}{re.escape(ext)}$")
    rolled = [name for name in os.listdir(log_dir) if pattern.match(name)]
    rolled.sort()
    return rolled


def enforce_retention(log_dir: str, filename: str, retained_file_count: int,
                      keep: str | None = None) -> list[str]:
    """Delete the oldest rolled files beyond *retained_file_count*. Returns deleted names.

    The count includes the file currently being written (*keep*), which is
    never deleted.
    """
    survivors = [name for name in get_rolled_files(log_dir, filename) if name != keep]
    allowed = retained_file_count - 1 if keep else retained_file_count
    deleted = []
    while len(survivors) > max(allowed, 0):
        name = survivors.pop(0)
        os.remove(os.path.join(log_dir, name))
        deleted.append(name)
    return deleted


class RollingFileSink:
    """Appends rendered events to a file that rolls over at UTC midnight.

    Writes are buffered; a background thread flushes every
    ``flush_interval`` seconds so at most one interval of output is lost if
    the process dies. ``close`` performs the final flush.
    """

    name = "file"

    def __init__(
        self,
        log_dir: str,
        filename: str = "log.txt",
        retained_file_count: int = 7,
        flush_interval: float = 2.0,
        time_func=None,
        renderer=render_text,
    ):
        self._log_dir = log_dir
        self._filename = filename
        self._retained_file_count = retained_file_count
        self._flush_interval = flush_interval
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._renderer = renderer
        self._lock = threading.Lock()
        self._file = None
        self._current_name: str | None = None
        self._dirty = False
        self._closed = False
        self._stop = threading.Event()

        os.makedirs(log_dir, exist_ok=True)
        with self._lock:
            self._roll_if_needed()

        self._flusher = threading.Thread(
            target=self._flush_loop, name="file-sink-flusher", daemon=True
        )
        self._flusher.start()

    @property
    def current_path(self) -> str | None:
        with self._lock:
            if self._current_name is None:
                return None
            return os.path.join(self._log_dir, self._current_name)

    def emit(self, batch: LogBatch):
        """Buffer every event of *batch*, one line (or block) per event."""
        lines = [self._renderer(event) for event in batch.events]
        with self._lock:
            if self._closed:
                raise ValueError("file sink is closed")
            self._roll_if_needed()
            for line in lines:
                self._file.write(line if line.endswith("\n") else line + "\n")
            self._dirty = True

    def flush(self):
        with self._lock:
            self._flush_locked()

    def close(self):
        """Final flush-and-close. Safe to call more than once."""
        self._stop.set()
        self._flusher.join(timeout=5)
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._file is not None and not self._file.closed:
                self._flush_locked()
                self._file.close()

    # Internal helpers

    def _flush_locked(self):
        if self._dirty and self._file is not None and not self._file.closed:
            self._file.flush()
            self._dirty = False

    def _flush_loop(self):
        while not self._stop.wait(timeout=self._flush_interval):
            self.flush()

    def _roll_if_needed(self):
        name = rolled_filename(self._filename, self._time_func())
        if name == self._current_name:
            return
        if self._file is not None and not self._file.closed:
            self._file.flush()
            self._file.close()
        self._file = open(os.path.join(self._log_dir, name), "a", encoding="utf-8")
        self._current_name = name
        enforce_retention(self._log_dir, self._filename, self._retained_file_count, keep=name)
