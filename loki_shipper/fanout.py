"""Sink fan-out — dispatches each batch to every sink concurrently."""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Optional

from loki_shipper.classifier import describe_error
from loki_shipper.fallback import FallbackChannel
from loki_shipper.models import LogBatch
from loki_shipper.sinks import Sink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    sink: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


class SinkFanOut:
    """Sends a batch to all sinks in parallel; sink failures are independent."""

    def __init__(self, sinks: list[Sink], fallback: FallbackChannel, max_workers: int | None = None):
        if not sinks:
            raise ValueError("at least one sink is required")
        names = [sink.name for sink in sinks]
        if len(set(names)) != len(names):
            raise ValueError(f"sink names must be unique: {names}")
        self._sinks = list(sinks)
        self._fallback = fallback
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or len(self._sinks),
            thread_name_prefix="sink",
        )
        self._closed = False

    @property
    def sinks(self) -> list[Sink]:
        return list(self._sinks)

    def dispatch(self, batch: LogBatch) -> dict[str, DispatchResult]:
        """Emit *batch* to every sink and wait for all of them."""
        futures = {
            sink.name: self._executor.submit(sink.emit, batch) for sink in self._sinks
        }

        results = {}
        for name, future in futures.items():
            try:
                results[name] = DispatchResult(sink=name, ok=True, value=future.result())
            except Exception as exc:
                self._fallback.write(
                    f"Sink '{name}' failed for batch of {len(batch)} event(s): "
                    f"{describe_error(exc)}"
                )
                results[name] = DispatchResult(sink=name, ok=False, error=exc)
        return results

    def close(self):
        """Stop the worker pool, then close every sink (each close isolated)."""
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        for sink in self._sinks:
            try:
                sink.close()
            except Exception as exc:
                self._fallback.write(f"Sink '{sink.name}' failed to close: {describe_error(exc)}")
        logger.debug("Closed %d sinks", len(self._sinks))
