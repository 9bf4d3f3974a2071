"""Structured logging for PhotoWright.

Every module logs through ``logging.getLogger(__name__)``, so all records
end up below the ``photowright`` logger that ``configure_logging`` sets up:

- ``text`` format for the terminal, ``json`` lines for log collectors
- per-component levels (``{"engine.sampler": "DEBUG"}``)
- optional rotating log file

Keyword arguments passed to a ``PhotowrightLogger`` become structured
fields of the record::

    >>> configure_logging(LogConfig(log_level="DEBUG", log_format="json"))
    >>> get_logger("cli").info("Saved result", path="out.png")
"""

import argparse
import copy
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Literal, Optional

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

ROOT_LOGGER = "photowright"
VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_FORMATS = ("text", "json")

# LogRecord keyword arguments that are not structured fields
_RESERVED_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})


def _check_level(level: str, what: str) -> None:
    if level.upper() not in VALID_LEVELS:
        raise ValueError(f"Invalid {what} '{level}'. Must be one of: {', '.join(VALID_LEVELS)}")


@dataclass
class LogConfig:
    """Logging settings.

    Attributes:
        log_level: Level of the ``photowright`` logger and its handlers
        log_format: ``"text"`` or ``"json"``
        log_file: Also write to this file (rotated)
        component_levels: Levels keyed by module path below ``photowright``
        max_file_size_mb: Rotate the log file at this size
        backup_count: Rotated files to keep
        include_timestamp: Prefix text lines with the time
        include_source: Add file/line of the call site
    """

    log_level: LogLevel = "INFO"
    log_format: LogFormat = "text"
    log_file: Optional[str] = None
    component_levels: Dict[str, LogLevel] = field(default_factory=dict)
    max_file_size_mb: int = 10
    backup_count: int = 5
    include_timestamp: bool = True
    include_source: bool = False

    def __post_init__(self) -> None:
        _check_level(self.log_level, "log_level")
        if self.log_format not in VALID_FORMATS:
            raise ValueError(f"Invalid log_format '{self.log_format}'. Must be 'text' or 'json'")
        for component, level in self.component_levels.items():
            _check_level(level, f"level for component '{component}'")


def _component_name(logger_name: str) -> str:
    prefix = ROOT_LOGGER + "."
    return logger_name[len(prefix):] if logger_name.startswith(prefix) else logger_name


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    ``{"timestamp": "...Z", "level": "INFO", "component": "engine.sampler",
    "message": "Step 12/100", "step": 12, "total": 100}``
    """

    def __init__(self, include_source: bool = False) -> None:
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "component": _component_name(record.name),
            "message": record.getMessage(),
        }
        if self.include_source:
            entry["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }
        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Terminal format.

    ``2025-03-14 10:30:45 | INFO     | engine.sampler | Step 12/100 [step_time_ms=85.3]``
    """

    def __init__(self, include_timestamp: bool = True, include_source: bool = False) -> None:
        fmt = "%(levelname)-8s | %(component)s | %(message)s"
        if include_timestamp:
            fmt = "%(asctime)s | " + fmt
        super().__init__(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        # other handlers must still see the original message
        record = copy.copy(record)
        record.component = _component_name(record.name)

        message = record.getMessage()
        fields = getattr(record, "extra_fields", None)
        if fields:
            message += " [" + ", ".join(f"{key}={value}" for key, value in fields.items()) + "]"
        if self.include_source:
            message += f" ({record.filename}:{record.lineno})"

        record.msg, record.args = message, None
        return super().format(record)


class PhotowrightLogger(logging.LoggerAdapter):
    """LoggerAdapter turning keyword arguments into structured fields."""

    def __init__(self, logger: logging.Logger, component: str, extra: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(logger, extra or {})
        self.component = component

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _RESERVED_KWARGS}
        fields.update(self.extra or {})
        kwargs.setdefault("extra", {})["extra_fields"] = fields
        return msg, kwargs

    def processing_start(self, operation: str, **fields: Any) -> None:
        self.info(f"Starting {operation}", operation=operation, **fields)

    def processing_complete(
        self, operation: str, duration_seconds: Optional[float] = None, **fields: Any
    ) -> None:
        if duration_seconds is not None:
            fields["duration_seconds"] = round(duration_seconds, 2)
        self.info(f"Completed {operation}", operation=operation, **fields)

    def step_completed(
        self, step: int, total_steps: int, step_time_ms: Optional[float] = None, **fields: Any
    ) -> None:
        """Log one finished sampling step at DEBUG."""
        step_fields: Dict[str, Any] = {"step": step, "total": total_steps}
        if step_time_ms is not None:
            step_fields["step_time_ms"] = round(step_time_ms, 1)
        step_fields.update(fields)
        self.debug(f"Step {step}/{total_steps}", **step_fields)


_log_config: Optional[LogConfig] = None
_configured_loggers: Dict[str, PhotowrightLogger] = {}


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Install handlers on the ``photowright`` logger.

    Replaces handlers from a previous call, so it is safe to call again
    (e.g. after parsing CLI flags).
    """
    global _log_config

    config = config or LogConfig()
    _log_config = config
    level = getattr(logging, config.log_level.upper())

    if config.log_format == "json":
        formatter: logging.Formatter = JSONFormatter(include_source=config.include_source)
    else:
        formatter = TextFormatter(config.include_timestamp, config.include_source)

    handlers: list = [logging.StreamHandler(sys.stderr)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        ))

    root = logging.getLogger(ROOT_LOGGER)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        root.addHandler(handler)
    root.propagate = False

    for component, component_level in config.component_levels.items():
        set_level(component_level, component)


def get_logger(component: str) -> PhotowrightLogger:
    """Cached structured logger for ``photowright.<component>``.

    Configures logging with defaults on first use.
    """
    if _log_config is None:
        configure_logging()

    logger = _configured_loggers.get(component)
    if logger is None:
        logger = PhotowrightLogger(logging.getLogger(f"{ROOT_LOGGER}.{component}"), component)
        _configured_loggers[component] = logger
    return logger


def set_level(level: LogLevel, component: Optional[str] = None) -> None:
    """Change the level of the root logger or one component at runtime."""
    name = f"{ROOT_LOGGER}.{component}" if component else ROOT_LOGGER
    logging.getLogger(name).setLevel(getattr(logging, level.upper()))


def add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    """Add ``--log-level``, ``--log-format`` and ``--log-file`` to ``parser``."""
    parser.add_argument(
        "--log-level", type=str.upper, choices=VALID_LEVELS, default="INFO",
        help="Set logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format", choices=VALID_FORMATS, default="text",
        help="Set logging format (default: text)",
    )
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")


def configure_from_cli(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
) -> LogConfig:
    """Apply logging flags; unknown formats fall back to text."""
    config = LogConfig(
        log_level=(log_level or "INFO").upper(),
        log_format=log_format if log_format in VALID_FORMATS else "text",
        log_file=log_file,
    )
    configure_logging(config)
    return config
