"""
Structured Logging for Codebox

Every component logs key/value events through structlog. Output goes through
the stdlib root logger: one line of JSON per event in production, a readable
console line in development, and optionally a JSON log file as well.
"""

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

import structlog


# LogRecord attributes that are not caller-supplied context
_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}

_CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a stdlib record, plus any ``extra`` context, as one JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_FIELDS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _handlers(json_format: bool, log_file: Optional[str]) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(JSONFormatter() if json_format else logging.Formatter(_CONSOLE_FORMAT))
    handlers: List[logging.Handler] = [console]
    if log_file:
        # The file is always machine-readable
        to_file = logging.FileHandler(log_file, encoding="utf-8")
        to_file.setFormatter(JSONFormatter())
        handlers.append(to_file)
    return handlers


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Route structlog events through the root logger.

    Args:
        level: Minimum level name, e.g. "DEBUG" or "WARNING"
        json_format: JSON lines on stdout instead of console rendering
        log_file: Also append JSON lines to this file
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    for handler in _handlers(json_format, log_file):
        handler.setLevel(log_level)
        root.addHandler(handler)

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Per-request access lines and SQL echo are too chatty at INFO
    for name in ("uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> Any:
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


class RequestLogger:
    """Context manager for logging request details."""

    def __init__(
        self,
        logger: Any,
        method: str,
        path: str,
        request_id: Optional[str] = None,
    ):
        self.logger = logger
        self.method = method
        self.path = path
        self.request_id = request_id
        self.start_time = 0.0
        self.status_code: Optional[int] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug(
            "request_started",
            method=self.method,
            path=self.path,
            request_id=self.request_id,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000

        if exc_type:
            self.logger.error(
                "request_failed",
                method=self.method,
                path=self.path,
                request_id=self.request_id,
                duration_ms=duration_ms,
                error=str(exc_val),
            )
        else:
            self.logger.info(
                "request_completed",
                method=self.method,
                path=self.path,
                request_id=self.request_id,
                status_code=self.status_code,
                duration_ms=duration_ms,
            )

        return False


class SandboxEventLogger:
    """Specialized logger for sandbox lifecycle events."""

    def __init__(self, name: str = "codebox.events"):
        self.logger = get_logger(name)

    def log_session_created(
        self,
        session_id: str,
        user_id: int,
        language: str,
        isolation: str,
        container_id: Optional[str] = None,
        **kwargs
    ) -> None:
        """Log a session that reached the running state."""
        self.logger.info(
            "session_created",
            event_type="session",
            session_id=session_id,
            user_id=user_id,
            language=language,
            isolation=isolation,
            container_id=container_id,
            **kwargs
        )

    def log_session_failed(self, session_id: str, error: str, **kwargs) -> None:
        """Log a session whose isolation could not be provisioned."""
        self.logger.error(
            "session_failed",
            event_type="session",
            session_id=session_id,
            error=error,
            **kwargs
        )

    def log_execution(
        self,
        session_id: str,
        language: str,
        success: bool,
        timed_out: bool,
        exit_code: Optional[int],
        duration_ms: int,
        artifact_count: int,
        **kwargs
    ) -> None:
        """Log a finished execution."""
        level = "info" if success else "warning"
        getattr(self.logger, level)(
            "execution_finished",
            event_type="execution",
            session_id=session_id,
            language=language,
            success=success,
            timed_out=timed_out,
            exit_code=exit_code,
            duration_ms=duration_ms,
            artifact_count=artifact_count,
            **kwargs
        )

    def log_cleanup(self, session_id: str, reason: str, **kwargs) -> None:
        """Log a session teardown."""
        self.logger.info(
            "session_cleaned",
            event_type="cleanup",
            session_id=session_id,
            reason=reason,
            **kwargs
        )

    def log_sweep(self, scanned: int, reclaimed: int, failed: int, **kwargs) -> None:
        """Log the outcome of an expiry sweep."""
        level = "warning" if failed else "info"
        getattr(self.logger, level)(
            "sweep_finished",
            event_type="sweep",
            scanned=scanned,
            reclaimed=reclaimed,
            failed=failed,
            **kwargs
        )
