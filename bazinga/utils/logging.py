"""Logging configuration."""

import json
import logging
import sys
import time
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TEXT_FORMAT_WITH_SOURCE = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"

_handlers: list[logging.Handler] = []


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = "info"
    format: Literal["text", "json"] = "text"
    output: Literal["file", "console", "stdout", "stderr", "both"] = "file"
    file_path: str | None = None
    max_size: int = 10  # megabytes
    max_backups: int = 5
    max_age: int = 30  # days
    add_source: bool = True
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Accept slog-style level names."""
        level = v.strip().lower()
        if level == "warn":
            level = "warning"
        if level not in ("debug", "info", "warning", "error", "critical"):
            return "info"
        return level


class JsonFormatter(logging.Formatter):
    """Render one JSON object per log record."""

    def __init__(self, add_source: bool = True):
        super().__init__()
        self.add_source = add_source

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.add_source:
            payload["source"] = f"{record.pathname}:{record.lineno}"
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def default_log_path() -> Path:
    """Default log file location inside the config directory."""
    from bazinga.utils.config import get_config_dir

    return get_config_dir() / "logs" / "bazinga.log"


def prune_old_backups(log_path: Path, max_age_days: int) -> int:
    """Delete rotated log files older than max_age_days.

    Returns:
        Number of files removed
    """
    if max_age_days <= 0 or not log_path.parent.exists():
        return 0

    cutoff = time.time() - max_age_days * 86400
    removed = 0
    for backup in log_path.parent.glob(f"{log_path.name}.*"):
        try:
            if backup.stat().st_mtime < cutoff:
                backup.unlink()
                removed += 1
        except OSError:
            continue
    return removed


def _build_formatter(config: LogConfig) -> logging.Formatter:
    if config.format == "json":
        return JsonFormatter(add_source=config.add_source)
    fmt = TEXT_FORMAT_WITH_SOURCE if config.add_source else TEXT_FORMAT
    return logging.Formatter(fmt=fmt, datefmt=config.date_format)


def _build_handlers(config: LogConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if config.output in ("file", "both"):
        log_path = Path(config.file_path) if config.file_path else default_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        prune_old_backups(log_path, config.max_age)
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=config.max_size * 1024 * 1024,
                backupCount=config.max_backups,
                encoding="utf-8",
            )
        )

    if config.output in ("console", "stdout"):
        handlers.append(logging.StreamHandler(sys.stdout))
    elif config.output in ("stderr", "both"):
        handlers.append(logging.StreamHandler(sys.stderr))

    return handlers


def setup_logging(config: LogConfig | None = None) -> None:
    """Set up logging configuration for the application."""
    global _handlers
    if config is None:
        config = LogConfig()

    handlers = _build_handlers(config)
    formatter = _build_formatter(config)
    for handler in handlers:
        handler.setFormatter(formatter)

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, config.level.upper()),
        handlers=handlers,
        force=True,  # Override any existing configuration
    )
    _handlers = handlers

    logging.getLogger("bazinga").setLevel(getattr(logging, config.level.upper()))

    # Set specific log levels for third-party libraries
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def close_logging() -> None:
    """Flush and detach the handlers installed by setup_logging."""
    global _handlers
    root = logging.getLogger()
    for handler in _handlers:
        handler.flush()
        root.removeHandler(handler)
        handler.close()
    _handlers = []


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (typically __name__)
        level: Optional level pinned on this logger; otherwise the level set by
            setup_logging applies

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(level.upper())
    return logger
