"""
Logging configuration for Visitor Service.

Provides structured logging with service name context.
"""

import logging
import sys


class ServiceContextFilter(logging.Filter):
    """Add service context to log records."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        return True


def setup_logging(service_name: str, debug: bool = False) -> None:
    """
    Configure logging for the service.

    Args:
        service_name: Service identifier for log context
        debug: Enable debug level logging
    """
    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '[%(levelname)s] [service=%(service)s] %(message)s'
    )
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ServiceContextFilter(service_name))

    root_logger.addHandler(console_handler)

    # urllib3 is chatty at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
