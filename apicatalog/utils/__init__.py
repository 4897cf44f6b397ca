"""
Utils Module

Shared utilities, helpers, and common functionality.

Components:
    - logger: Logging with daily rotation and colorized output
    - exceptions: Error hierarchy and HTTP status mapping
"""

from apicatalog.utils.logger import (
    LoggerConfig,
    configure_package_logging,
    get_logger,
    setup_logger,
)

__all__ = [
    "LoggerConfig",
    "setup_logger",
    "get_logger",
    "configure_package_logging",
]
