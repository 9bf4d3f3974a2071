"""
PhotoWright Utilities Package
Logging and power management helpers.
"""

from .logging import (
    LogConfig,
    PhotowrightLogger,
    configure_logging,
    get_logger,
    set_level,
)

from .power_manager import (
    KeepAwake,
    PowerManager,
    PowerState,
    get_power_state,
)

__all__ = [
    "LogConfig",
    "PhotowrightLogger",
    "configure_logging",
    "get_logger",
    "set_level",
    "KeepAwake",
    "PowerManager",
    "PowerState",
    "get_power_state",
]
