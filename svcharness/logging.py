"""
SvcHarness Structured Logging

Every record carries the run it belongs to: run id, service pid, bind
address and boot state, taken from a contextvars-backed context that the
orchestrator and the readiness poller narrow as the run progresses.
Both output formats mask secrets: values of sensitive keys, credentials
embedded in URLs, and any literal registered with ``register_secret``
(the provisioned password ends up on the admin command line).
"""

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Optional, Set
from urllib.parse import urlsplit, urlunsplit


STANDARD_FIELDS = ("run_id", "service_pid", "address", "state")

_RESERVED_LOG_RECORD_ATTRS = set(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys()
)
_RESERVED_LOG_RECORD_ATTRS.update({"asctime", "message"})

_REDACTED = "[REDACTED]"
_SECRET_KEY_MARKERS = ("password", "passwd", "secret", "token", "credential", "api_key")

_RUN_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("svcharness_run_context", default={})
_SECRET_VALUES: Set[str] = set()


def register_secret(value: Optional[str]) -> None:
    """Mask every later occurrence of ``value`` in formatted log output."""
    if value:
        _SECRET_VALUES.add(value)


def _mask(text: str) -> str:
    for secret in _SECRET_VALUES:
        text = text.replace(secret, _REDACTED)
    return text


def _strip_url_credentials(value: str) -> str:
    if "@" not in value:
        return value
    try:
        parts = urlsplit(value)
    except ValueError:
        return value
    if not parts.scheme or "@" not in parts.netloc:
        return value
    host = parts.netloc.rsplit("@", 1)[-1]
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


def _scrub(key: str, value: Any) -> Any:
    lower = key.lower()
    if any(marker in lower for marker in _SECRET_KEY_MARKERS):
        return _REDACTED
    if isinstance(value, str):
        return _strip_url_credentials(value)
    if isinstance(value, dict):
        return {k: _scrub(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(key, v) for v in value]
    return value


@contextmanager
def log_context(**fields: Any) -> Generator[None, None, None]:
    """Add run fields to every record logged inside the block."""
    current = _RUN_CONTEXT.get()
    token = _RUN_CONTEXT.set({**current, **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _RUN_CONTEXT.reset(token)


class RunContextFilter(logging.Filter):
    """Stamp the run context onto records; missing standard fields become ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _RUN_CONTEXT.get().items():
            if key not in _RESERVED_LOG_RECORD_ATTRS and not hasattr(record, key):
                setattr(record, key, value)
        for field in STANDARD_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


class TextFormatter(logging.Formatter):
    """One line per record: event, extras as key=value, then the run fields."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [
            f"{key}={_scrub(key, value)}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS and key not in STANDARD_FIELDS
        ]
        run_fields = " ".join(f"{field}={getattr(record, field, '-')}" for field in STANDARD_FIELDS)
        return _mask(" ".join([line, *extras, run_fields]))


class JsonFormatter(logging.Formatter):
    """One JSON object per record with run fields and every ``extra`` key."""

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STANDARD_FIELDS:
            data[field] = getattr(record, field, "-")
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_RECORD_ATTRS and key not in data:
                data[key] = value
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        scrubbed = {k: _scrub(k, v) for k, v in data.items()}
        return _mask(json.dumps(scrubbed, default=str))


def json_logging_from_env() -> bool:
    """True when SVCHARNESS_LOG_JSON asks for JSON output."""
    return os.environ.get("SVCHARNESS_LOG_JSON", "").lower() in ("1", "true", "yes", "on")


def setup_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """
    Route all logging to one stderr handler.

    Args:
        level: log level name (default: SVCHARNESS_LOG_LEVEL or INFO)
        json_output: emit JSON objects instead of text lines

    Returns:
        The svcharness logger
    """
    resolved_level = level or os.environ.get("SVCHARNESS_LOG_LEVEL") or "INFO"

    handler = logging.StreamHandler()
    handler.addFilter(RunContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else TextFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(resolved_level).upper(), logging.INFO))
    return logging.getLogger("svcharness")


def init_cli_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """CLI entry: JSON output when asked for by argument or by the environment."""
    return setup_logging(level, json_output=json_output or json_logging_from_env())


def get_logger(name: str = "svcharness") -> logging.Logger:
    return logging.getLogger(name)


def log_extra(
    *,
    run_id: Optional[str] = None,
    service_pid: Optional[int] = None,
    address: Optional[str] = None,
    state: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build an ``extra`` dict, dropping None values so the run context still applies.

    Example:
        logger.info("service_started", extra=log_extra(service_pid=1234))
    """
    fields = dict(run_id=run_id, service_pid=service_pid, address=address, state=state, **extra)
    return {k: v for k, v in fields.items() if v is not None}


# Process exit codes
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_BOOT_FAILURE = 100
EXIT_DEP_MISSING = 101
EXIT_SETUP_ERROR = 102
EXIT_SIGNAL_BASE = 128
