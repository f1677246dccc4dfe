"""Configuration — frozen dataclass built from defaults, YAML, env vars and CLI args."""

import argparse
import logging
import os
from dataclasses import dataclass, field, fields

import yaml

from loki_shipper.models import LEVELS

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a configuration option has an invalid value."""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def parse_labels(value: str) -> dict[str, str]:
    """Parse ``app=my-app,env=production`` into a dict."""
    labels = {}
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        key, sep, val = part.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"invalid label '{part}', expected key=value")
        labels[key.strip()] = val.strip()
    return labels


def _check_type(name: str, value, expected: type):
    # bool is an int subclass, so it is never accepted for numeric options
    if expected is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif expected is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, expected)
    if not ok:
        raise ConfigError(f"{name} must be {expected.__name__}, got {value!r}")


@dataclass(frozen=True)
class Config:
    loki_url: str = "http://localhost:3100"
    push_path: str = "/loki/api/v1/push"
    labels: dict = field(default_factory=lambda: {"app": "my-app"})
    batch_size: int = 50
    queue_limit: int = 1000
    batch_interval: float = 2.0
    flush_interval: float = 2.0
    log_dir: str = "logs"
    log_filename: str = "log.txt"
    retained_file_count: int = 7
    backup_filename: str = "loki_backup.log"
    request_timeout: float = 5.0
    console: bool = True
    min_level: str = "INFO"

    @property
    def backup_path(self) -> str:
        return os.path.join(self.log_dir, self.backup_filename)

    def validate(self) -> "Config":
        """Raise ConfigError naming the first invalid option. Returns self."""
        for f in fields(self):
            _check_type(f.name, getattr(self, f.name), f.type)
        if not self.loki_url.startswith(("http://", "https://")):
            raise ConfigError(f"loki_url must be an http(s) URL, got {self.loki_url!r}")
        if not self.push_path.startswith("/"):
            raise ConfigError(f"push_path must start with '/', got {self.push_path!r}")
        for name in ("batch_size", "queue_limit", "retained_file_count"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        for name in ("batch_interval", "flush_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.queue_limit < self.batch_size:
            raise ConfigError("queue_limit must be >= batch_size")
        if not self.log_filename or not self.backup_filename:
            raise ConfigError("log_filename and backup_filename must not be empty")
        if self.log_filename == self.backup_filename:
            raise ConfigError("backup_filename must differ from log_filename")
        if self.min_level.upper() not in LEVELS:
            raise ConfigError(f"min_level must be one of {', '.join(LEVELS)}")
        for key in self.labels:
            if not str(key):
                raise ConfigError("label names must not be empty")
        return self


# YAML section -> {yaml key: Config field}
_YAML_KEYS = {
    "loki": {
        "url": "loki_url",
        "push_path": "push_path",
        "labels": "labels",
        "batch_size": "batch_size",
        "queue_limit": "queue_limit",
        "batch_interval": "batch_interval",
        "request_timeout": "request_timeout",
    },
    "file": {
        "log_dir": "log_dir",
        "filename": "log_filename",
        "retained_file_count": "retained_file_count",
        "flush_interval": "flush_interval",
    },
    "backup": {
        "filename": "backup_filename",
    },
    "pipeline": {
        "console": "console",
        "min_level": "min_level",
    },
}

_ENV_KEYS = {
    "LOKI_URL": ("loki_url", str),
    "LOKI_PUSH_PATH": ("push_path", str),
    "LOKI_LABELS": ("labels", parse_labels),
    "BATCH_SIZE": ("batch_size", int),
    "QUEUE_LIMIT": ("queue_limit", int),
    "BATCH_INTERVAL": ("batch_interval", float),
    "FLUSH_INTERVAL": ("flush_interval", float),
    "LOG_DIR": ("log_dir", str),
    "LOG_FILENAME": ("log_filename", str),
    "RETAINED_FILE_COUNT": ("retained_file_count", int),
    "BACKUP_FILENAME": ("backup_filename", str),
    "REQUEST_TIMEOUT": ("request_timeout", float),
    "CONSOLE": ("console", _parse_bool),
    "MIN_LOG_LEVEL": ("min_level", str),
}


def load_yaml_config(path: str | None) -> dict:
    """Flatten a YAML config file into Config keyword arguments.

    Returns an empty dict if no path is given or the file does not exist.
    """
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    kwargs = {}
    for section, keys in _YAML_KEYS.items():
        values = data.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"{path}: section '{section}' must be a mapping")
        for yaml_key, field_name in keys.items():
            if yaml_key in values:
                kwargs[field_name] = values[yaml_key]
    if "labels" in kwargs:
        if not isinstance(kwargs["labels"], dict):
            raise ConfigError(f"{path}: loki.labels must be a mapping of name: value")
        kwargs["labels"] = {str(k): str(v) for k, v in kwargs["labels"].items()}
    logger.info("Loaded YAML config from %s", path)
    return kwargs


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Loki log shipper")
    parser.add_argument("--config", type=str, default=None, help="YAML config file")
    parser.add_argument("--loki-url", type=str, default=None)
    parser.add_argument("--labels", type=str, default=None, help="key=value,key=value")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--queue-limit", type=int, default=None)
    parser.add_argument("--batch-interval", type=float, default=None)
    parser.add_argument("--flush-interval", type=float, default=None)
    parser.add_argument("--log-dir", type=str, default=None)
    parser.add_argument("--retained-file-count", type=int, default=None)
    parser.add_argument("--backup-filename", type=str, default=None)
    parser.add_argument("--min-level", type=str, default=None)
    parser.add_argument("--no-console", action="store_true", default=False)
    return parser


def load_config(argv=None) -> Config:
    """Build a validated Config: defaults <- YAML <- env vars <- CLI args.

    Pass argv for testability; when None, argparse reads sys.argv.
    """
    args = _build_parser().parse_args(argv)

    kwargs = load_yaml_config(args.config or os.environ.get("CONFIG_PATH"))

    for env_name, (field_name, convert) in _ENV_KEYS.items():
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        try:
            kwargs[field_name] = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"{env_name}: {exc}") from exc

    cli_values = {
        "loki_url": args.loki_url,
        "labels": parse_labels(args.labels) if args.labels is not None else None,
        "batch_size": args.batch_size,
        "queue_limit": args.queue_limit,
        "batch_interval": args.batch_interval,
        "flush_interval": args.flush_interval,
        "log_dir": args.log_dir,
        "retained_file_count": args.retained_file_count,
        "backup_filename": args.backup_filename,
        "min_level": args.min_level,
    }
    kwargs.update({k: v for k, v in cli_values.items() if v is not None})
    if args.no_console:
        kwargs["console"] = False

    if "min_level" in kwargs:
        kwargs["min_level"] = str(kwargs["min_level"]).upper()

    return Config(**kwargs).validate()
