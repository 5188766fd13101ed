"""
Centralized logging configuration for the metabolism pipeline.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class AgentLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the agent scope it concerns."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f'[{self.extra["agent_id"]}] {msg}', kwargs


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Setup centralized logging configuration.

    Args:
        config: AppConfig instance, uses default if None
    """
    if config is None:
        from .config import config as default_config
        config = default_config

    logging.basicConfig(level=getattr(logging, config.log_level.upper()),
                        format=LOG_FORMAT,
                        handlers=[logging.StreamHandler(sys.stdout)])


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
    logger.setLevel(getattr(logging, config.log_level.upper()))
    return logger


def get_agent_logger(logger: logging.Logger, agent_id: str) -> AgentLoggerAdapter:
    """Wrap a module logger so its messages carry the agent scope."""
    return AgentLoggerAdapter(logger, {'agent_id': agent_id})
