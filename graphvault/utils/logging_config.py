"""
Centralized logging configuration for GraphVault.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _resolve_level(config: Optional[AppConfig]) -> int:
    if config is None:
        from .config import config as default_config
        config = default_config
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses the global configuration if None
    """
    logging.basicConfig(level=_resolve_level(config), format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    # httpx logs every request at INFO, which drowns out candidate failures
    logging.getLogger('httpx').setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a logger with proper configuration.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses the global configuration if None

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(config))
    return logger
