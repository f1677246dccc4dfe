"""Delivery interceptor — observes remote deliveries and backs up failed batches.

The interceptor wraps any "send a request, get a response or a fault"
callable. It never changes what the caller sees: the wrapped call returns
the same response object, or raises the same exception object, that the
underlying send produced. Classification and backup happen on the side.
"""

import functools
import inspect
import logging
import time

from loki_shipper.backup import BackupStore
from loki_shipper.classifier import classify, describe_error, is_success_status
from loki_shipper.fallback import FallbackChannel
from loki_shipper.metrics import DeliveryMetrics
from loki_shipper.models import DeliveryResult, Rejected, Success, TransportFailure

logger = logging.getLogger(__name__)


def extract_payload(request):
    """Return the body of *request* as bytes or text."""
    if request is None or isinstance(request, (bytes, bytearray, str)):
        return request
    read = getattr(request, "read", None)
    if callable(read):
        return read()
    return getattr(request, "content", None)


async def aextract_payload(request):
    """Async counterpart of :func:`extract_payload` (uses ``aread`` when present)."""
    aread = getattr(request, "aread", None)
    if callable(aread):
        return await aread()
    return extract_payload(request)


def _body_text(content) -> str:
    if isinstance(content, (bytes, bytearray)):
        return bytes(content).decode("utf-8", errors="replace")
    return "" if content is None else str(content)


class _InterceptorBase:
    def __init__(
        self,
        send,
        backup: BackupStore,
        fallback: FallbackChannel,
        payload_of=None,
        metrics: DeliveryMetrics | None = None,
    ):
        self._send = send
        self._backup = backup
        self._fallback = fallback
        self._payload_of = payload_of
        self._metrics = metrics

    def _report(self, outcome, latency_ms: float) -> bool:
        """Log the outcome. Returns True when the batch must be backed up."""
        if self._metrics is not None:
            self._metrics.record(outcome, latency_ms)

        if isinstance(outcome, Success):
            logger.debug("Delivered batch (%d) in %.1fms", outcome.status_code, latency_ms)
            return False
        if isinstance(outcome, Rejected):
            self._fallback.write(
                f"Loki delivery error: {outcome.status_code} {outcome.response_body}"
            )
        elif isinstance(outcome, TransportFailure):
            self._fallback.write(f"Loki delivery exception: {outcome.error_description}")
        return True

    def _capture(self, payload):
        written = self._backup.capture(payload)
        if self._metrics is not None and (written or payload):
            self._metrics.record_backup(written)

    def _capture_failed(self, exc: Exception):
        if self._metrics is not None:
            self._metrics.record_backup(False)
        self._fallback.write(f"Failed to save batch to backup: {describe_error(exc)}")


class DeliveryInterceptor(_InterceptorBase):
    """Synchronous interceptor: ``deliver(request)`` behaves exactly like ``send(request)``."""

    def __init__(self, send, backup, fallback, payload_of=None, metrics=None):
        super().__init__(send, backup, fallback, payload_of or extract_payload, metrics)

    def deliver(self, request):
        start = time.monotonic()
        result = self._call(request)
        latency_ms = (time.monotonic() - start) * 1000

        try:
            if self._report(classify(result), latency_ms):
                try:
                    payload = self._payload_of(request)
                except Exception as exc:
                    self._capture_failed(exc)
                else:
                    self._capture(payload)
        except Exception as exc:
            self._fallback.write(f"Delivery observer failed: {describe_error(exc)}")

        return result.unwrap()

    __call__ = deliver

    def _call(self, request) -> DeliveryResult:
        try:
            response = self._send(request)
        except BaseException as exc:
            return DeliveryResult.failed(exc)

        body = None
        if not is_success_status(response.status_code):
            body = self._read_body(response)
        return DeliveryResult.completed(response, body)

    def _read_body(self, response) -> str:
        try:
            read = getattr(response, "read", None)
            content = read() if callable(read) else getattr(response, "content", b"")
            return _body_text(content)
        except Exception as exc:
            self._fallback.write(f"Could not read Loki response body: {describe_error(exc)}")
            return ""


class AsyncDeliveryInterceptor(_InterceptorBase):
    """Async interceptor for coroutine-based transports."""

    def __init__(self, send, backup, fallback, payload_of=None, metrics=None):
        super().__init__(send, backup, fallback, payload_of or aextract_payload, metrics)

    async def deliver(self, request):
        start = time.monotonic()
        result = await self._call(request)
        latency_ms = (time.monotonic() - start) * 1000

        try:
            if self._report(classify(result), latency_ms):
                try:
                    payload = self._payload_of(request)
                    if inspect.isawaitable(payload):
                        payload = await payload
                except Exception as exc:
                    self._capture_failed(exc)
                else:
                    self._capture(payload)
        except Exception as exc:
            self._fallback.write(f"Delivery observer failed: {describe_error(exc)}")

        return result.unwrap()

    __call__ = deliver

    async def _call(self, request) -> DeliveryResult:
        try:
            response = await self._send(request)
        except BaseException as exc:
            return DeliveryResult.failed(exc)

        body = None
        if not is_success_status(response.status_code):
            body = await self._read_body(response)
        return DeliveryResult.completed(response, body)

    async def _read_body(self, response) -> str:
        try:
            aread = getattr(response, "aread", None)
            if callable(aread):
                content = await aread()
            else:
                content = getattr(response, "content", b"")
            return _body_text(content)
        except Exception as exc:
            self._fallback.write(f"Could not read Loki response body: {describe_error(exc)}")
            return ""


def intercept(send, backup: BackupStore, fallback: FallbackChannel, payload_of=None,
              metrics: DeliveryMetrics | None = None):
    """Wrap *send* so failed deliveries are backed up. Keeps the signature of *send*.

    Coroutine functions get an async wrapper, plain callables a sync one.
    """
    if inspect.iscoroutinefunction(send):
        interceptor = AsyncDeliveryInterceptor(send, backup, fallback, payload_of, metrics)

        @functools.wraps(send)
        async def async_wrapper(request):
            return await interceptor.deliver(request)

        return async_wrapper

    interceptor = DeliveryInterceptor(send, backup, fallback, payload_of, metrics)

    @functools.wraps(send)
    def wrapper(request):
        return interceptor.deliver(request)

    return wrapper
