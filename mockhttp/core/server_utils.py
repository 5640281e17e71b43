"""
Utility functions for mock server configuration and operation.

This module provides core functionality for:
- Logging setup with structured JSON output
- Event loop creation with uvloop where available
- Server kwargs for asyncio.start_server
- Argument validation shared by the server and the CLI
"""

import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = "mockhttp"
PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level=logging.INFO, log_file=None, json_format=True):
    """Configure logging for the mock server.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path to log file
        json_format: Emit JSON records (default) or plain text lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if json_format:
        formatter = JsonFormatter(JSON_FORMAT)
    else:
        formatter = logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


# Default logger instance
default_logger = logging.getLogger(LOGGER_NAME)
if not default_logger.handlers:
    configure_logging()

# Try to import uvloop for better performance on Linux/macOS
try:
    import uvloop

    UVLOOP_AVAILABLE = True
except ImportError:
    UVLOOP_AVAILABLE = False
    default_logger.debug("uvloop not available, using the default event loop")


class ServerConfigError(ValueError):
    """Invalid server configuration"""
    pass


def new_event_loop(use_uvloop: bool = True) -> asyncio.AbstractEventLoop:
    """Create a fresh event loop for one server thread.

    Uses uvloop when it is installed, requested, and the platform is not
    Windows. The global event loop policy is left untouched so embedding
    applications keep their own loop setup.
    """
    if use_uvloop and UVLOOP_AVAILABLE and sys.platform != "win32":
        return uvloop.new_event_loop()
    return asyncio.new_event_loop()


def get_server_kwargs() -> Dict[str, Any]:
    """Get asyncio.start_server kwargs.

    SO_REUSEADDR lets a stopped server rebind its port immediately.
    SO_REUSEPORT stays off: two listeners on one port must fail to bind.
    """
    return {
        "reuse_address": True,
        "backlog": 2048,
        "start_serving": True,
    }


def validate_port(port: Any) -> int:
    if isinstance(port, bool) or not isinstance(port, int):
        raise ServerConfigError("Port must be an integer")
    if port < 0 or port > 65535:
        raise ServerConfigError("Port number must be between 0 and 65535")
    return port


def validate_positive(name: str, value: Any, kind: Optional[type] = None) -> Any:
    if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
        raise ServerConfigError(f"{name} must be an integer")
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ServerConfigError(f"{name} must be a number")
    if value <= 0:
        raise ServerConfigError(f"{name} must be positive")
    return value
