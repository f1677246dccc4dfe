"""Render log events as text lines, compact JSON, and Loki push payloads."""

import json

from loki_shipper.models import LogBatch, LogEvent

LEVEL_CODES = {
    "DEBUG": "DBG",
    "INFO": "INF",
    "WARNING": "WRN",
    "ERROR": "ERR",
    "CRITICAL": "FTL",
}


def render_text(event: LogEvent) -> str:
    """Render as ``2024-01-15 08:23:45.123 +00:00 [INF] message``."""
    ts = event.timestamp
    timestamp = ts.strftime("%Y-%m-%d %H:%M:%S.") + f"{ts.microsecond // 1000:03d}"
    offset = ts.strftime("%z") or "+0000"
    offset = f"{offset[:3]}:{offset[3:]}"
    code = LEVEL_CODES.get(event.level, event.level[:3].upper())
    line = f"{timestamp} {offset} [{code}] {event.message}"
    if event.exception:
        line += "\n" + event.exception.rstrip("\n")
    return line


def render_compact_json(event: LogEvent) -> str:
    """Compact JSON rendering: ``@t``, ``@mt``, ``@m``, ``@l``, ``@x`` then properties.

    ``@l`` is omitted for INFO events.
    """
    doc = {
        "@t": event.timestamp.isoformat(),
        "@mt": event.message_template or event.message,
    }
    if event.message_template and event.message != event.message_template:
        doc["@m"] = event.message
    if event.level != "INFO":
        doc["@l"] = event.level
    if event.exception:
        doc["@x"] = event.exception
    for key, value in event.properties.items():
        # Properties never shadow the reserved fields
        name = f"@@{key[1:]}" if key.startswith("@") else key
        doc[name] = value
    return json.dumps(doc, separators=(",", ":"), default=str, ensure_ascii=False)


def _nanoseconds(event: LogEvent) -> str:
    ts = event.timestamp
    seconds = int(ts.timestamp())
    return str(seconds * 1_000_000_000 + ts.microsecond * 1000)


def build_push_payload(batch: LogBatch) -> bytes:
    """Serialize a batch as a Loki push request body.

    Events are grouped into one stream per level, each stream carrying the
    batch labels plus ``level``; values are ordered by timestamp.
    """
    streams: dict[str, list[LogEvent]] = {}
    for event in batch.events:
        streams.setdefault(event.level.lower(), []).append(event)

    labels = batch.labels_dict()
    body = {"streams": []}
    for level, events in streams.items():
        events.sort(key=lambda e: e.timestamp)
        body["streams"].append({
            "stream": {**labels, "level": level},
            "values": [[_nanoseconds(e), render_compact_json(e)] for e in events],
        })
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
