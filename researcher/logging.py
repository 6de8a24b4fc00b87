"""structlog setup for the research pipeline.

Records are JSON lines, or one line per record on a terminal. The pipeline
binds the current ``run_id`` and ``stage`` with ``bind_run`` and
``bind_stage``; they are emitted as top-level fields, every other keyword
lands under ``extra``.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

PACKAGE_PREFIX = "researcher."
RUN_KEYS = ("run_id", "stage")
MAX_VALUE_LENGTH = 60
SHORT_RUN_ID = 8

_RECORD_KEYS = frozenset({"timestamp", "level", "logger", "message", *RUN_KEYS})


def bind_run(run_id: str) -> None:
    structlog.contextvars.bind_contextvars(run_id=run_id)


def bind_stage(stage: str) -> None:
    structlog.contextvars.bind_contextvars(stage=stage)


def clear_run() -> None:
    """Drop the run and stage bound by the current pipeline run."""
    structlog.contextvars.unbind_contextvars(*RUN_KEYS)


def _group_extra(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict["message"] = event_dict.pop("event", "")
    extra = {key: event_dict.pop(key) for key in list(event_dict) if key not in _RECORD_KEYS}
    if extra:
        event_dict["extra"] = extra
    return event_dict


def _clip(value: Any) -> str:
    text = str(value)
    return text if len(text) <= MAX_VALUE_LENGTH else f"{text[: MAX_VALUE_LENGTH - 3]}..."


def _clock(timestamp: str) -> str:
    try:
        return datetime.fromisoformat(timestamp.replace("Z", "+00:00")).strftime("%H:%M:%S")
    except ValueError:
        return ""


def short_logger_name(name: str) -> str:
    """``researcher.stages.searcher`` -> ``stages.searcher``; foreign loggers unchanged."""
    if not name.startswith(PACKAGE_PREFIX):
        return name
    return ".".join(name[len(PACKAGE_PREFIX) :].split(".")[-2:])


def render_console_line(_: WrappedLogger, __: str, event_dict: EventDict) -> str:
    """``HH:MM:SS [LEVEL] <run>/<stage> logger: message key=value ...``"""
    where = event_dict.get("run_id", "")[:SHORT_RUN_ID]
    if event_dict.get("stage"):
        where = f"{where}/{event_dict['stage']}"
    fields = " ".join(f"{key}={_clip(value)}" for key, value in event_dict.get("extra", {}).items())

    line = f"{_clock(event_dict.get('timestamp', ''))} [{event_dict.get('level', 'info').upper()}]"
    if where:
        line += f" {where}"
    line += f" {short_logger_name(event_dict.get('logger', ''))}: {event_dict.get('message', '')}"
    return f"{line} {fields}" if fields else line


def configure_structlog(testing: bool = False) -> None:
    """JSON output, or console lines when ``testing``; level from ``LOGGING_LEVEL``."""
    level = getattr(logging, os.environ.get("LOGGING_LEVEL", "INFO").upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=level, stream=sys.stdout)
    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.contextvars.merge_contextvars,
            _group_extra,
            structlog.processors.TimeStamper(fmt="iso"),
            render_console_line if testing else structlog.processors.JSONRenderer(default=str),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or __name__)  # type: ignore
