"""
Monitoring for Codebox

Provides:
- Structured logging (structlog on top of stdlib logging)
- Request and sandbox lifecycle event loggers
"""

from codebox.monitoring.logging import (
    JSONFormatter,
    RequestLogger,
    SandboxEventLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "JSONFormatter",
    "RequestLogger",
    "SandboxEventLogger",
    "configure_logging",
    "get_logger",
]
