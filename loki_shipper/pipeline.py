"""Log pipeline — the object producers log through.

Built once from a Config after configuration is loaded, passed to whatever
needs to log, and closed exactly once at shutdown.
"""

import logging
import threading
import traceback

import httpx

from loki_shipper.backup import BackupStore
from loki_shipper.batching import BatchingQueue
from loki_shipper.config import Config
from loki_shipper.fallback import FallbackChannel
from loki_shipper.fanout import SinkFanOut
from loki_shipper.file_sink import RollingFileSink
from loki_shipper.metrics import DeliveryMetrics
from loki_shipper.models import LEVELS, LogEvent, create_log_event, make_batch
from loki_shipper.sinks import ConsoleSink, LokiSink
from loki_shipper.transport import InterceptingTransport

logger = logging.getLogger(__name__)

_LEVEL_RANK = {level: rank for rank, level in enumerate(LEVELS)}


class LogPipeline:
    """Accepts events from any thread and ships them to every sink in batches.

    Logging calls never raise because of sink or delivery trouble; at most a
    line shows up on the fallback channel.
    """

    def __init__(
        self,
        fanout: SinkFanOut,
        fallback: FallbackChannel,
        labels: dict | None = None,
        batch_size: int = 50,
        queue_limit: int = 1000,
        batch_interval: float = 2.0,
        min_level: str = "INFO",
        metrics: DeliveryMetrics | None = None,
    ):
        self._fanout = fanout
        self._fallback = fallback
        self._labels = dict(labels or {})
        self._min_rank = _LEVEL_RANK[min_level.upper()]
        self._metrics = metrics or DeliveryMetrics()
        self._queue = BatchingQueue(
            batch_size=batch_size,
            queue_limit=queue_limit,
            flush_interval=batch_interval,
            on_batch=self._dispatch,
            fallback=fallback,
        )
        self._close_lock = threading.Lock()
        self._closed = False

    # Producer API

    def emit(self, event: LogEvent) -> bool:
        """Queue an event. Returns False if it was filtered or dropped."""
        if _LEVEL_RANK.get(event.level, _LEVEL_RANK["INFO"]) < self._min_rank:
            return False
        queued = self._queue.put(event)
        if not queued:
            self._metrics.record_dropped()
        return queued

    def log(self, level: str, message: str, exc_info: BaseException | None = None,
            **properties) -> bool:
        exception = None
        if exc_info is not None:
            exception = "".join(
                traceback.format_exception(type(exc_info), exc_info, exc_info.__traceback__)
            )
        return self.emit(create_log_event(level, message, exception=exception, **properties))

    def debug(self, message: str, **properties) -> bool:
        return self.log("DEBUG", message, **properties)

    def info(self, message: str, **properties) -> bool:
        return self.log("INFO", message, **properties)

    def warning(self, message: str, **properties) -> bool:
        return self.log("WARNING", message, **properties)

    def error(self, message: str, **properties) -> bool:
        return self.log("ERROR", message, **properties)

    def critical(self, message: str, **properties) -> bool:
        return self.log("CRITICAL", message, **properties)

    # Lifecycle

    def close(self):
        """Deliver queued events, then flush and close every sink. Runs once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._queue.close()
        self._fanout.close()
        logger.info("Log pipeline closed: %s", self.metrics())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def metrics(self) -> dict:
        return self._metrics.snapshot()

    # Internal helpers

    def _dispatch(self, events: list):
        self._fanout.dispatch(make_batch(events, self._labels))


class PipelineHandler(logging.Handler):
    """Feeds stdlib ``logging`` records into a LogPipeline.

    Records from this package's own loggers, and from the HTTP client that
    talks to Loki, are skipped so shipping a batch can never produce another
    event.
    """

    IGNORED_LOGGERS = ("loki_shipper", "httpx", "httpcore")

    def __init__(self, pipeline: LogPipeline, level=logging.NOTSET):
        super().__init__(level)
        self._pipeline = pipeline

    def emit(self, record: logging.LogRecord):
        if self._ignored(record.name):
            return
        try:
            level = self._level_for(record.levelno)
            exception = None
            if record.exc_info:
                exception = (self.formatter or logging.Formatter()).formatException(record.exc_info)
            event = LogEvent(
                level=level,
                message=record.getMessage(),
                message_template=str(record.msg),
                properties={"logger": record.name, "thread": record.threadName},
                exception=exception,
            )
            self._pipeline.emit(event)
        except Exception:
            self.handleError(record)

    @classmethod
    def _ignored(cls, name: str) -> bool:
        return any(name == prefix or name.startswith(prefix + ".") for prefix in cls.IGNORED_LOGGERS)

    @classmethod
    def _level_for(cls, levelno: int) -> str:
        if levelno >= logging.CRITICAL:
            return "CRITICAL"
        if levelno >= logging.ERROR:
            return "ERROR"
        if levelno >= logging.WARNING:
            return "WARNING"
        if levelno >= logging.INFO:
            return "INFO"
        return "DEBUG"


def build_pipeline(
    config: Config,
    console_stream=None,
    fallback: FallbackChannel | None = None,
    http_transport: httpx.BaseTransport | None = None,
    time_func=None,
) -> LogPipeline:
    """Assemble console, rolling file and Loki sinks into a LogPipeline.

    The Loki client's transport is wrapped so every push that is rejected or
    fails is saved to the backup file. *http_transport* replaces the real
    network transport (tests use ``httpx.MockTransport``).
    """
    fallback = fallback or FallbackChannel()
    metrics = DeliveryMetrics()
    backup = BackupStore(config.backup_path, fallback, time_func=time_func)

    transport = InterceptingTransport(
        http_transport or httpx.HTTPTransport(),
        backup,
        fallback,
        metrics=metrics,
    )
    client = httpx.Client(
        base_url=config.loki_url,
        transport=transport,
        timeout=config.request_timeout,
    )

    sinks = []
    if config.console:
        sinks.append(ConsoleSink(stream=console_stream))
    sinks.append(RollingFileSink(
        log_dir=config.log_dir,
        filename=config.log_filename,
        retained_file_count=config.retained_file_count,
        flush_interval=config.flush_interval,
        time_func=time_func,
    ))
    sinks.append(LokiSink(client, push_path=config.push_path))

    logger.info(
        "Log pipeline: loki=%s, labels=%s, batch_size=%d, queue_limit=%d, backup=%s",
        config.loki_url, config.labels, config.batch_size, config.queue_limit,
        config.backup_path,
    )
    return LogPipeline(
        SinkFanOut(sinks, fallback),
        fallback,
        labels=config.labels,
        batch_size=config.batch_size,
        queue_limit=config.queue_limit,
        batch_interval=config.batch_interval,
        min_level=config.min_level,
        metrics=metrics,
    )
