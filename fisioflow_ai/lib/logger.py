"""Structured logging for the AI engine."""

import json
import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class LogCategory(str, Enum):
    """Functional area a log line belongs to."""

    SYSTEM = "system"
    QUERY = "query"
    CACHE = "cache"
    KNOWLEDGE_BASE = "knowledge_base"
    PROVIDER = "provider"
    ANALYTICS = "analytics"
    SECURITY = "security"
    PERFORMANCE = "performance"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "category": getattr(record, "category", LogCategory.SYSTEM.value),
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Console formatter with colors and category tag."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        category = getattr(record, "category", None)
        tag = f" ({category})" if category else ""

        formatted = (
            f"{color}[{record.levelname}]{self.RESET} {record.name}{tag}: {record.getMessage()}"
        )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


class CategoryLogger(logging.LoggerAdapter):
    """Logger adapter that stamps every record with a category and extra fields.

    Example:
        log = get_logger(__name__, LogCategory.CACHE)
        log.info("Cache hit", extra_fields={"tier": "memory"})
    """

    def __init__(self, logger: logging.Logger, category: LogCategory):
        super().__init__(logger, {"category": category.value})

    def process(self, msg: Any, kwargs: dict[str, Any]) -> tuple[Any, dict[str, Any]]:
        extra = dict(kwargs.pop("extra", None) or {})
        extra["category"] = self.extra["category"]
        fields = kwargs.pop("extra_fields", None)
        if fields:
            extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    structured: bool = False,
    quiet: bool = False,
) -> None:
    """Set up application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for JSON file logging
        structured: Use structured JSON logging on the console
        quiet: If True, only warnings and errors from the engine are shown
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(StructuredFormatter() if structured else SimpleFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter())  # Always use JSON for files
        root_logger.addHandler(file_handler)

    # Quiet down client libraries
    for noisy in ("httpx", "httpcore", "openai", "urllib3", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    if quiet:
        logging.getLogger("fisioflow_ai").setLevel(logging.WARNING)
    else:
        root_logger.info(f"Logging initialized at {log_level} level")


def get_logger(name: str, category: LogCategory | None = None) -> logging.Logger | CategoryLogger:
    """Get a logger instance, optionally bound to a category.

    Args:
        name: Logger name (typically __name__)
        category: Category stamped on every record

    Returns:
        Logger or category adapter
    """
    logger = logging.getLogger(name)
    if category is None:
        return logger
    return CategoryLogger(logger, category)
