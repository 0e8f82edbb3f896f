from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from typing import Any, Dict, Iterator


_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "created",
    "taskName",
}

# Fields stamped onto every record emitted inside log_context(); each asyncio
# task sees its own copy, so concurrent channels do not mix.
_CONTEXT: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("discord_radio_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Tag log records emitted in this block, e.g. ``log_context(channel_id=...)``."""
    token = _CONTEXT.set({**_CONTEXT.get(), **fields})
    try:
        yield
    finally:
        _CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for k, v in _CONTEXT.get().items():
            # Explicit extra= fields win
            if k not in _RESERVED and not hasattr(record, k):
                setattr(record, k, v)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        # Include any custom attributes set via logging `extra={...}` or log_context()
        for k, v in record.__dict__.items():
            if k not in _RESERVED and k not in payload and not k.startswith("_"):
                try:
                    json.dumps(v)
                    payload[k] = v
                except (TypeError, ValueError):
                    payload[k] = str(v)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(lvl)
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ContextFilter())
    root.handlers.clear()
    root.addHandler(handler)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(lvl, logging.WARNING))


def _escape_annotation(message: str) -> str:
    # Workflow commands end at the first newline unless it is percent-encoded
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def gha_notice(level: str, message: str) -> None:
    # Emit GitHub Actions annotations for quick visibility
    prefix = {
        "ERROR": "::error::",
        "WARNING": "::warning::",
        "NOTICE": "::notice::",
    }.get(level.upper())
    if prefix:
        print(f"{prefix}{_escape_annotation(message)}")
