"""Data model — log events, batches, delivery outcomes and backup records."""

import datetime
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True)
class LogEvent:
    timestamp: datetime.datetime = field(default_factory=_utc_now)
    level: str = "INFO"
    message: str = ""
    message_template: str = ""
    properties: Mapping[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def __post_init__(self):
        # Read-only view so a frozen event stays immutable all the way down
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))


def create_log_event(
    level: str,
    message: str,
    exception: Optional[str] = None,
    **properties,
) -> LogEvent:
    """Factory that renders ``{name}`` placeholders from *properties*.

    The raw *message* is kept as the template; a template that references a
    missing property is left unrendered rather than raising.
    """
    try:
        rendered = message.format(**properties) if properties else message
    except (KeyError, IndexError, ValueError, AttributeError):
        rendered = message
    return LogEvent(
        level=level.upper(),
        message=rendered,
        message_template=message,
        properties=properties,
        exception=exception,
    )


@dataclass(frozen=True)
class LogBatch:
    """Immutable group of events bound for the same set of sinks."""

    events: tuple[LogEvent, ...]
    labels: tuple[tuple[str, str], ...] = ()

    def __len__(self) -> int:
        return len(self.events)

    def labels_dict(self) -> dict[str, str]:
        return dict(self.labels)


def make_batch(events, labels: Optional[Mapping[str, str]] = None) -> LogBatch:
    """Freeze a list of events and a label mapping into a LogBatch."""
    label_items = tuple(sorted((labels or {}).items()))
    return LogBatch(events=tuple(events), labels=label_items)


# ------------------------------------------------------------------
# Delivery outcomes
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Success:
    status_code: int


@dataclass(frozen=True)
class Rejected:
    status_code: int
    response_body: str = ""


@dataclass(frozen=True)
class TransportFailure:
    error_description: str


DeliveryOutcome = Union[Success, Rejected, TransportFailure]


@dataclass(frozen=True)
class DeliveryResult:
    """Either the response of a completed call or the fault it raised.

    ``body`` is only populated for responses whose body was read for
    diagnostics (non-2xx).
    """

    response: Any = None
    error: Optional[BaseException] = None
    body: Optional[str] = None

    @classmethod
    def completed(cls, response, body: Optional[str] = None) -> "DeliveryResult":
        return cls(response=response, body=body)

    @classmethod
    def failed(cls, error: BaseException) -> "DeliveryResult":
        return cls(error=error)

    @property
    def is_fault(self) -> bool:
        return self.error is not None

    def unwrap(self):
        """Return the response, or re-raise the original fault object."""
        if self.error is not None:
            raise self.error
        return self.response


# ------------------------------------------------------------------
# Backup records
# ------------------------------------------------------------------

_RECORD_SEPARATOR = ": "
_ESCAPES = {"\\": "\\\\", "\r": "\\r", "\n": "\\n"}
_UNESCAPES = {"\\": "\\", "r": "\r", "n": "\n"}


def escape_payload(text: str) -> str:
    """Escape backslashes, CR and LF so a payload fits on one line."""
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def unescape_payload(text: str) -> str:
    """Reverse ``escape_payload``. Unknown escapes are kept as written."""
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in _UNESCAPES:
            out.append(_UNESCAPES[text[i + 1]])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


@dataclass(frozen=True)
class BackupRecord:
    captured_at: datetime.datetime
    payload: str

    def to_line(self) -> str:
        """Render as ``<ISO-8601 UTC>: <escaped payload>`` without a trailing newline."""
        return f"{self.captured_at.isoformat()}{_RECORD_SEPARATOR}{escape_payload(self.payload)}"

    @classmethod
    def parse(cls, line: str) -> Optional["BackupRecord"]:
        """Parse a backup line. Returns None if the line is not a record."""
        stripped = line.rstrip("\r\n")
        # The timestamp itself contains ':' so split on the first ': '
        stamp, sep, payload = stripped.partition(_RECORD_SEPARATOR)
        if not sep or not payload:
            return None
        try:
            captured_at = datetime.datetime.fromisoformat(stamp)
        except ValueError:
            return None
        if captured_at.tzinfo is None:
            return None
        return cls(captured_at=captured_at, payload=unescape_payload(payload))
