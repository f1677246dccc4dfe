"""Batching queue — decouples log producers from sink I/O.

Producers call ``put`` which never blocks. A single consumer thread groups
events into batches of at most ``batch_size`` and hands each batch to
``on_batch``; a partial batch is emitted once ``flush_interval`` seconds have
passed since its first event.
"""

import logging
import queue
import threading
import time

from loki_shipper.fallback import FallbackChannel

logger = logging.getLogger(__name__)

_STOP = object()


class BatchingQueue:
    def __init__(
        self,
        batch_size: int,
        queue_limit: int,
        flush_interval: float,
        on_batch,
        fallback: FallbackChannel,
        name: str = "pipeline",
    ):
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._on_batch = on_batch
        self._fallback = fallback
        self._queue: queue.Queue = queue.Queue(maxsize=queue_limit)
        self._lock = threading.Lock()
        self._closed = False
        self._dropped = 0
        self._batches = 0

        self._consumer = threading.Thread(
            target=self._consumer_loop, name=f"{name}-batcher", daemon=True
        )
        self._consumer.start()

    # Public API

    def put(self, item) -> bool:
        """Enqueue an item. Returns False if it was dropped."""
        # close() cannot enqueue the stop sentinel while a put is in flight
        with self._lock:
            if self._closed:
                return False
            try:
                self._queue.put_nowait(item)
                return True
            except queue.Full:
                self._dropped += 1
                dropped = self._dropped
        if dropped == 1 or dropped % 100 == 0:
            self._fallback.write(
                f"Queue limit reached, dropped {dropped} event(s) so far"
            )
        return False

    def close(self, timeout: float = 10.0):
        """Stop accepting items, deliver everything queued, and join the consumer."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # Blocking put: the sentinel must not be lost to a full queue
        self._queue.put(_STOP)
        self._consumer.join(timeout=timeout)
        if self._consumer.is_alive():
            self._fallback.write("Batching consumer did not finish within the close timeout")

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def batches(self) -> int:
        with self._lock:
            return self._batches

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    # Internal helpers

    def _consumer_loop(self):
        while True:
            first = self._queue.get()
            if first is _STOP:
                self._drain()
                return

            batch = [first]
            deadline = time.monotonic() + self._flush_interval
            stop = False
            while len(batch) < self._batch_size:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    item = self._queue.get(timeout=remaining)
                except queue.Empty:
                    break
                if item is _STOP:
                    stop = True
                    break
                batch.append(item)

            self._safe_emit(batch)
            if stop:
                self._drain()
                return

    def _drain(self):
        """Emit whatever is still queued after the stop sentinel, in batches."""
        batch = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is _STOP:
                continue
            batch.append(item)
            if len(batch) >= self._batch_size:
                self._safe_emit(batch)
                batch = []
        if batch:
            self._safe_emit(batch)

    def _safe_emit(self, batch: list):
        """Hand a batch to on_batch; a failing callback never kills the consumer."""
        with self._lock:
            self._batches += 1
        try:
            self._on_batch(batch)
            logger.debug("Emitted batch of %d events", len(batch))
        except Exception as exc:
            self._fallback.write(
                f"Batch of {len(batch)} event(s) could not be dispatched: {exc}"
            )
