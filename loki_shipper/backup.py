"""Batch backup store — append-only local persistence for undelivered batches."""

import os
import threading
from datetime import datetime, timezone
from typing import Iterator

from loki_shipper.fallback import FallbackChannel
from loki_shipper.models import BackupRecord

# One lock per backup file so every store in this process that points at the
# same path serialises its appends.
_path_locks: dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    key = os.path.abspath(path)
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _path_locks[key] = lock
        return lock


def _payload_text(payload) -> str:
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode("utf-8", errors="backslashreplace")
    return str(payload)


class BackupStore:
    """Appends one timestamped line per failed batch to a dedicated file."""

    def __init__(self, path: str, fallback: FallbackChannel, time_func=None):
        self._path = path
        self._fallback = fallback
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._lock = _lock_for(path)
        self._counter_lock = threading.Lock()
        self._captured = 0
        self._failed = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def captured(self) -> int:
        with self._counter_lock:
            return self._captured

    @property
    def failed(self) -> int:
        with self._counter_lock:
            return self._failed

    def capture(self, payload) -> bool:
        """Append *payload* as one record. Returns True if a record was written.

        Empty or missing payloads are ignored. Write failures are reported to
        the fallback channel and never raised.
        """
        try:
            if payload is None or len(payload) == 0:
                return False
            record = BackupRecord(
                captured_at=self._time_func(), payload=_payload_text(payload)
            )
            line = record.to_line() + "\n"
            directory = os.path.dirname(self._path)
            with self._lock:
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self._path, "a", encoding="utf-8",
                          errors="backslashreplace") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
        except Exception as exc:
            with self._counter_lock:
                self._failed += 1
            self._fallback.write(
                f"Failed to save batch to backup file {self._path}: {exc}"
            )
            return False

        with self._counter_lock:
            self._captured += 1
        self._fallback.write(f"Saved undelivered batch to backup file {self._path}")
        return True


def read_records(path: str) -> Iterator[BackupRecord]:
    """Yield every well-formed record in a backup file, skipping anything else."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            record = BackupRecord.parse(line)
            if record is not None:
                yield record
