"""
Structured Logger
Key/value structured logging on top of structlog
"""
import logging
from typing import Any, Optional, TextIO

import structlog


class StructuredLogger:
    """Structured logger taking a message plus arbitrary key/value fields"""

    def __init__(self, service_name: str = "prefsync", environment: str = "development",
                 log_level: str = "INFO", stream: Optional[TextIO] = None):
        self.service_name = service_name
        self.environment = str(getattr(environment, "value", environment))
        self.log_level = str(getattr(log_level, "value", log_level)).upper()

        level = getattr(logging, self.log_level, logging.INFO)

        if self.environment == "production":
            renderer = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)

        self._logger = structlog.wrap_logger(
            structlog.PrintLogger(file=stream),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                renderer,
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
        ).bind(service=service_name, environment=self.environment)

    def debug(self, message: str, **kwargs: Any):
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any):
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any):
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any):
        self._logger.error(message, **kwargs)

    def bind(self, **kwargs: Any) -> "StructuredLogger":
        """Return a logger carrying extra context on every event"""
        bound = StructuredLogger.__new__(StructuredLogger)
        bound.service_name = self.service_name
        bound.environment = self.environment
        bound.log_level = self.log_level
        bound._logger = self._logger.bind(**kwargs)
        return bound


def get_logger(service_name: str = "prefsync", environment: str = "development",
               log_level: str = "INFO") -> StructuredLogger:
    """Get a logger instance"""
    return StructuredLogger(service_name, environment, log_level)
