"""Entry point — ships a few demo events to console, rolling file and Loki."""

import logging
import signal
import sys
import threading

from loki_shipper.config import ConfigError, load_config
from loki_shipper.pipeline import PipelineHandler, build_pipeline

logger = logging.getLogger("app")


def make_signal_handler(shutting_down: threading.Event):
    """Turn SIGINT/SIGTERM into KeyboardInterrupt, unless shutdown already began.

    Closing is left to main()'s ``finally`` so a second signal can never cut
    a flush short.
    """

    def signal_handler(signum, frame):
        if shutting_down.is_set():
            logger.info("Received signal %d, already flushing logs", signum)
            return
        logger.info("Received signal %d, flushing logs...", signum)
        raise KeyboardInterrupt

    return signal_handler


def main(argv=None):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_config(argv)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    pipeline = build_pipeline(config)

    shutting_down = threading.Event()
    handler = make_signal_handler(shutting_down)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    # Application loggers below "app" also reach Loki
    logger.addHandler(PipelineHandler(pipeline))

    try:
        pipeline.info("Shipping logs to Loki while recording them to a file")
        pipeline.warning("This is a warning log")
        pipeline.error("Error message delivery", component="demo")
        logger.info("stdlib logging records flow through the same pipeline")
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        shutting_down.set()
        pipeline.close()

    logger.info("Delivery metrics: %s", pipeline.metrics())
    return 0


if __name__ == "__main__":
    sys.exit(main())
