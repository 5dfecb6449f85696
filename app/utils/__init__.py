"""
Utility modules for the Screen Pilot Agent.

This package contains:
    - logger: Structured logging with structlog
"""

from app.utils.logger import LogContext, get_logger, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
]
