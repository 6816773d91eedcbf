"""Core utilities for configuration, logging, and time."""

from .clock import Clock, FixedClock, SystemClock, utc_now
from .config import AppSettings, BenefitTierSettings, ProtocolPolicy, load_settings
from .logging_config import get_logger, setup_logging

__all__ = [
    "AppSettings",
    "BenefitTierSettings",
    "ProtocolPolicy",
    "load_settings",
    "Clock",
    "FixedClock",
    "SystemClock",
    "utc_now",
    "get_logger",
    "setup_logging",
]
