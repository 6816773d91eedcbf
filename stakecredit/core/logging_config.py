"""Central logging configuration for the credit service."""

import logging
from typing import Union


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _resolve_level(level: Union[int, str]) -> int:
    """Accept numeric levels or names such as ``"debug"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure the root logger once for consistent application logs."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(level=_resolve_level(level), format=LOG_FORMAT)


def get_logger(name: str) -> logging.Logger:
    """Create or retrieve a module logger."""
    return logging.getLogger(name)
