"""httpx transports that route every request through a delivery interceptor."""

import httpx

from loki_shipper.backup import BackupStore
from loki_shipper.fallback import FallbackChannel
from loki_shipper.interceptor import AsyncDeliveryInterceptor, DeliveryInterceptor
from loki_shipper.metrics import DeliveryMetrics


class InterceptingTransport(httpx.BaseTransport):
    """Wraps a real transport; failed requests are backed up, results pass through.

    Composes the inner transport rather than extending it, so any
    ``httpx.BaseTransport`` (``HTTPTransport``, ``MockTransport``...) can be
    wrapped.
    """

    def __init__(
        self,
        inner: httpx.BaseTransport,
        backup: BackupStore,
        fallback: FallbackChannel,
        metrics: DeliveryMetrics | None = None,
    ):
        self._inner = inner
        self._interceptor = DeliveryInterceptor(
            inner.handle_request, backup, fallback, metrics=metrics
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._interceptor.deliver(request)

    def close(self) -> None:
        self._inner.close()


class AsyncInterceptingTransport(httpx.AsyncBaseTransport):
    """Async counterpart of :class:`InterceptingTransport` for ``httpx.AsyncClient``."""

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        backup: BackupStore,
        fallback: FallbackChannel,
        metrics: DeliveryMetrics | None = None,
    ):
        self._inner = inner
        self._interceptor = AsyncDeliveryInterceptor(
            inner.handle_async_request, backup, fallback, metrics=metrics
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._interceptor.deliver(request)

    async def aclose(self) -> None:
        await self._inner.aclose()
