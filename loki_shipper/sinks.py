"""Console and Grafana Loki sinks."""

import logging
import sys
import threading
from typing import Protocol

import httpx

from loki_shipper.formatter import build_push_payload, render_text
from loki_shipper.models import LogBatch

logger = logging.getLogger(__name__)


class Sink(Protocol):
    name: str

    def emit(self, batch: LogBatch): ...

    def close(self): ...


class ConsoleSink:
    """Writes rendered events to a text stream (stdout by default)."""

    name = "console"

    def __init__(self, stream=None, renderer=render_text):
        self._stream = stream
        self._renderer = renderer
        self._lock = threading.Lock()

    def emit(self, batch: LogBatch):
        text = "".join(self._renderer(event) + "\n" for event in batch.events)
        stream = self._stream if self._stream is not None else sys.stdout
        with self._lock:
            stream.write(text)
            stream.flush()

    def close(self):
        stream = self._stream if self._stream is not None else sys.stdout
        with self._lock:
            stream.flush()


class LokiSink:
    """POSTs each batch to the Loki push API.

    *client* is expected to carry an intercepting transport, so rejected or
    failed pushes are already backed up by the time ``emit`` returns or
    raises.
    """

    name = "loki"

    def __init__(self, client: httpx.Client, push_path: str = "/loki/api/v1/push"):
        self._client = client
        self._push_path = push_path

    def emit(self, batch: LogBatch) -> httpx.Response:
        payload = build_push_payload(batch)
        response = self._client.post(
            self._push_path,
            content=payload,
            headers={"Content-Type": "application/json"},
        )
        logger.debug("Loki push of %d events returned %d", len(batch), response.status_code)
        return response

    def close(self):
        self._client.close()
