import logging
import logging.handlers
import os
import re
import sys
import uuid
from typing import Any, Dict, List, Optional

import structlog

# Payload keys never written to logs: raw image bytes and generated documents
# can be megabytes long and may carry user content.
PAYLOAD_KEYS = {
    "content",
    "document",
    "image_data",
    "svg",
    "data_uri",
    "base64",
}

PRIVATE_KEYS = {
    "file_path",
    "path",
    "directory",
    "output_dir",
}

_DATA_URI_RE = re.compile(r"data:[\w/+.-]+;base64,")
_ABS_PATH_RE = re.compile(r"^(/|[A-Za-z]:\\|\\\\)")
MAX_LOGGED_VALUE_LENGTH = 512


def filter_sensitive_data(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Drop image payloads and mask local paths in log entries."""

    def _filter(obj: Any, depth: int = 0) -> Any:
        if depth > 10:
            return "***DEPTH_LIMIT***"

        if isinstance(obj, dict):
            filtered = {}
            for key, value in obj.items():
                key_lower = str(key).lower()
                if key_lower in PAYLOAD_KEYS:
                    filtered[key] = "***PAYLOAD_OMITTED***"
                elif key_lower in PRIVATE_KEYS:
                    filtered[key] = "***PATH_REDACTED***"
                else:
                    filtered[key] = _filter(value, depth + 1)
            return filtered
        elif isinstance(obj, (list, tuple)):
            return [_filter(item, depth + 1) for item in obj]
        elif isinstance(obj, (bytes, bytearray)):
            return f"<{len(obj)} bytes>"
        elif isinstance(obj, str):
            if _DATA_URI_RE.search(obj):
                return "***PAYLOAD_OMITTED***"
            if _ABS_PATH_RE.match(obj):
                return "***PATH_REDACTED***"
            if len(obj) > MAX_LOGGED_VALUE_LENGTH:
                return obj[:MAX_LOGGED_VALUE_LENGTH] + "...(truncated)"
        return obj

    return _filter(event_dict)


def add_correlation_id(_, __, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation ID to log entries."""
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = structlog.contextvars.get_contextvars().get(
            "correlation_id", str(uuid.uuid4())
        )
    return event_dict


LOG_FILE_NAME = "svgwrap.log"


def _build_handlers(
    level: int,
    enable_file_logging: bool,
    log_dir: str,
    max_log_size_mb: int,
    backup_count: int,
) -> List[logging.Handler]:
    """stderr always; a size-rotated file in ``log_dir`` when enabled."""
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    if not enable_file_logging:
        return [stderr_handler]

    os.makedirs(log_dir, exist_ok=True)
    rotating = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=max_log_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    rotating.setLevel(level)
    return [stderr_handler, rotating]


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    enable_file_logging: bool = False,
    log_dir: str = "./logs",
    max_log_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Route structlog through stdlib logging for the library and CLI.

    Args:
        log_level: Name of the minimum level to emit
        json_logs: Render one JSON object per line instead of console output
        enable_file_logging: Also write logs to a rotating file in ``log_dir``
        log_dir: Where the rotating log file lives
        max_log_size_mb: Rotate the file once it reaches this size
        backup_count: Rotated files kept besides the active one
    """
    level = logging.getLevelName(log_level.upper())
    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_correlation_id,
            filter_sensitive_data,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=_build_handlers(
            level, enable_file_logging, log_dir, max_log_size_mb, backup_count
        ),
        force=True,
    )

    # Pillow logs every plugin it tries at DEBUG
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class LoggingContext:
    """Context manager binding key/value pairs to every log entry inside it."""

    def __init__(self, **kwargs) -> None:
        self.context = kwargs
        self._tokens = None

    def __enter__(self) -> "LoggingContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._tokens:
            structlog.contextvars.reset_contextvars(**self._tokens)
