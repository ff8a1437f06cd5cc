"""
Structured logging with automatic run context propagation.

Architecture:
    GraphExecutor.execute() → sets run_id, graph_id (and session_id) once
        ↓ (ContextVar copies into every node task)
    node dispatch → adds node_id inside its own task
        ↓
    handler code → logger.info("message") → record carries the whole context

Because asyncio tasks copy the current context when they are created, a
node_id set inside one node's task never leaks into its siblings.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Optional ``extra=`` fields copied into JSON records
_EXTRA_FIELDS = ("event", "latency_ms", "tokens_used", "node_id", "model", "attempt")

_LIBRARY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "mcp")

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


def _plain(value: Any) -> Any:
    return _ANSI.sub("", value) if isinstance(value, str) else value


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Carries timestamp, level, logger and message, the current run context
    (run_id, graph_id, node_id, ...) and whichever known ``extra`` fields the
    call site passed. Colour codes are stripped.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": _plain(record.getMessage()),
            **(trace_context.get() or {}),
        }
        entry.update(
            (name, _plain(getattr(record, name)))
            for name in _EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = _plain(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colourised single-line formatter with a short run/node prefix."""

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        node_id = getattr(record, "node_id", None) or context.get("node_id")
        tags = [
            f"{label}:{value}"
            for label, value in (
                ("run", (context.get("run_id") or "")[:8]),
                ("graph", context.get("graph_id")),
                ("node", node_id),
            )
            if value
        ]

        parts = [f"{_LEVEL_COLORS.get(record.levelno, '')}[{record.levelname:<8}]{_RESET}"]
        if tags:
            parts.append(f"[{' | '.join(tags)}]")
        parts.append(record.getMessage())
        event = getattr(record, "event", None)
        if event is not None:
            parts.append(f"[{event}]")

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _auto_format() -> str:
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    if os.getenv("ENV", "development").lower() == "production":
        return "json"
    return "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler. Call once at startup (CLI entry point,
    server bootstrap or a test fixture).

    Args:
        level: Log level name, case-insensitive
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production)
    """
    if format == "auto":
        format = _auto_format()

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if format == "json" else HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    if format != "json":
        return

    # JSON lines must not carry library colour codes or private handlers
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"
    import litellm

    litellm.suppress_debug_info = True
    for name in _LIBRARY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.propagate = True


def set_trace_context(**fields: Any) -> None:
    """
    Merge fields into the run context of the current task.

    GraphExecutor sets run_id/graph_id/session_id at run start; node dispatch
    adds node_id.
    """
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    """Return a copy of the current run context."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
