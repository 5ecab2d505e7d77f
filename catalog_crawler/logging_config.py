"""Structured logging configuration."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger


# Crawl context promoted to top-level JSON fields and the console prefix
CONTEXT_FIELDS = ("category", "page")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with timestamp, source location and crawl context fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"

        if record.funcName:
            log_record['function'] = record.funcName

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_record[name] = value


class CrawlContextFilter(logging.Filter):
    """Sets `record.context` to a short `[category p.N] ` prefix for console output."""

    def filter(self, record):
        parts = []
        category = getattr(record, "category", None)
        page = getattr(record, "page", None)
        if category:
            parts.append(str(category))
        if page is not None:
            parts.append(f"p.{page}")
        record.context = f"[{' '.join(parts)}] " if parts else ""
        return True


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = "logs",
    json_logs: bool = True,
):
    """Configure logging for the crawler.

    Args:
        level: Root log level name
        log_dir: Directory for the JSON log files
        json_logs: Whether to write JSON log files next to console output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    # Console handler (human-readable)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"
    )
    console_handler.setFormatter(console_formatter)
    console_handler.addFilter(CrawlContextFilter())
    root_logger.addHandler(console_handler)

    if json_logs and log_dir:
        logs_dir = Path(log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        json_formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s"
        )

        json_handler = logging.FileHandler(logs_dir / "crawl.log", encoding="utf-8")
        json_handler.setLevel(logging.DEBUG)
        json_handler.setFormatter(json_formatter)
        root_logger.addHandler(json_handler)

        # Errors only
        error_handler = logging.FileHandler(logs_dir / "error.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(json_formatter)
        root_logger.addHandler(error_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context fields to log records."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with optional context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Additional context fields (e.g., category='Móveis')

    Returns:
        LoggerAdapter with context
    """
    logger = logging.getLogger(name)
    return LoggerAdapter(logger, context)
