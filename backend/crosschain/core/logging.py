"""
Centralized logging system with structured JSON output.
"""
from __future__ import annotations

import json
import logging
import logging.handlers
import queue
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs with correlation IDs.
    """

    # Context fields for synchronization operations
    context_fields = (
        "token_id",
        "chain",
        "source_chain",
        "target_chain",
        "request_id",
        "tx_hash",
        "bridge_mode",
        "job",
    )

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as structured JSON.

        Args:
            record: Log record to format

        Returns:
            JSON formatted log string
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": getattr(record, "module", record.name),
        }

        trace_id = getattr(record, "trace_id", None)
        if trace_id is not None:
            log_data["trace_id"] = trace_id

        for field in self.context_fields:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields with sensitive data filtered out
        extra_data = getattr(record, "extra_data", None)
        if extra_data is not None and isinstance(extra_data, dict):
            log_data.update(
                {k: self._redact_sensitive(k, v) for k, v in extra_data.items()}
            )

        return json.dumps(log_data, default=str, separators=(",", ":"))

    def _redact_sensitive(self, key: str, value: Any) -> Any:
        """
        Redact sensitive information from log values.

        Args:
            key: Field name
            value: Field value

        Returns:
            Redacted value if sensitive, original value otherwise
        """
        sensitive_patterns = [
            "key", "secret", "password", "passphrase",
            "private", "mnemonic", "seed", "signer",
        ]

        if any(pattern in key.lower() for pattern in sensitive_patterns):
            return "[REDACTED]"

        return value


class SafeRotatingFileHandler(logging.handlers.TimedRotatingFileHandler):
    """Daily rotating file handler that creates its directory on demand."""

    def __init__(self, filename: str, **kwargs):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, **kwargs)


# Global variable to store the queue listener
_queue_listener: Optional[logging.handlers.QueueListener] = None


def setup_logging(
    log_level: str = "INFO",
    debug: bool = False,
    environment: str = "development",
    log_dir: Path = Path("data/logs"),
    retention_days: int = 90,
) -> None:
    """
    Set up centralized logging system with structured JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        debug: Enable console output
        environment: Environment name for logging context
        log_dir: Directory for the rotating log files
        retention_days: Number of daily files to keep

    Creates two log files:
    - engine.jsonl: All log levels
    - errors.jsonl: ERROR and above only
    """
    global _queue_listener

    cleanup_logging()
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    formatter = StructuredFormatter()
    log_queue: queue.Queue = queue.Queue(-1)

    app_handler = SafeRotatingFileHandler(
        filename=str(log_dir / "engine.jsonl"),
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    app_handler.setFormatter(formatter)
    app_handler.setLevel(logging.DEBUG)

    error_handler = SafeRotatingFileHandler(
        filename=str(log_dir / "errors.jsonl"),
        when="midnight",
        interval=1,
        backupCount=retention_days,
        encoding="utf-8",
        utc=True,
    )
    error_handler.setFormatter(formatter)
    error_handler.setLevel(logging.ERROR)

    # Queue handler keeps file IO off the event loop
    root_logger.addHandler(logging.handlers.QueueHandler(log_queue))
    _queue_listener = logging.handlers.QueueListener(
        log_queue, app_handler, error_handler, respect_handler_level=True
    )
    _queue_listener.start()

    if debug:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        console_handler.setLevel(logging.INFO)
        root_logger.addHandler(console_handler)

    logging.info("Logging system initialized", extra={
        "extra_data": {
            "log_level": log_level,
            "debug": debug,
            "environment": environment,
        }
    })


def cleanup_logging() -> None:
    """
    Clean up logging system on shutdown.
    """
    global _queue_listener

    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def new_trace_id() -> str:
    """Generate a trace ID for correlating the log lines of one tick."""
    return str(uuid.uuid4())
