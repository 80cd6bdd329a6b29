"""
Centralized logging configuration for the memory pipeline.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# AWS client libraries log every request at DEBUG
QUIET_LOGGERS = ('botocore', 'boto3', 'urllib3')


def _level(config: AppConfig) -> int:
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    level = _level(config)
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.INFO, level))


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Get a logger with proper configuration.

    Args:
        name: Logger name (usually __name__)
        config: AppConfig instance, uses default if None

    Returns:
        Configured logger instance
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logger = logging.getLogger(name)
    logger.setLevel(_level(config))
    return logger


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Prefixes records with the conversation they belong to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f'[session {self.extra["session_id"]}] {msg}', kwargs


def session_logger(logger: logging.Logger, session_id: str) -> SessionLoggerAdapter:
    return SessionLoggerAdapter(logger, {'session_id': session_id})
