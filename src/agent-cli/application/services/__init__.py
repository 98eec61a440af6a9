"""Application services for the Agent CLI."""

from application.services.logger import configure_logging

__all__ = [
    "configure_logging",
]
