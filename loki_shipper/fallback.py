"""Fallback diagnostic channel — best-effort stderr lines about the pipeline itself."""

import sys
import threading
from datetime import datetime, timezone


class FallbackChannel:
    """Writes self-diagnostic lines straight to a stream, outside ``logging``.

    A diagnostic about a failed delivery must never become another delivery.
    """

    def __init__(self, stream=None, max_recent: int = 100, time_func=None):
        self._stream = stream
        self._max_recent = max_recent
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._recent: list[str] = []
        self._lock = threading.Lock()

    def write(self, message: str):
        """Emit one diagnostic line. Never raises."""
        timestamp = self._time_func().strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        line = f"{timestamp} [loki-shipper] {message}"
        stream = self._stream if self._stream is not None else sys.stderr

        with self._lock:
            self._recent.append(message)
            if len(self._recent) > self._max_recent:
                self._recent.pop(0)
            try:
                stream.write(line + "\n")
                stream.flush()
            except (OSError, ValueError):
                # Closed or broken stream: there is nowhere left to report to
                pass

    def recent(self, n: int = 10) -> list[str]:
        """Return the N most recent messages (without timestamps)."""
        with self._lock:
            return list(self._recent[-n:])

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._recent)
