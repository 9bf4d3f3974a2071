"""
Power Management - Keep the system awake while a restoration runs.

Sampling is long-running and must not be interrupted by system sleep.
Platform backends:
    - Windows: SetThreadExecutionState
    - macOS: ``caffeinate -i``
    - Linux: ``systemd-inhibit`` when available
    - anything else: logged no-op
"""

import ctypes
import logging
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import psutil

logger = logging.getLogger(__name__)


@dataclass
class PowerState:
    """Current power state information."""
    on_battery: bool
    battery_percent: Optional[float]
    is_charging: bool


def get_power_state() -> PowerState:
    """Get current power state."""
    state = PowerState(on_battery=False, battery_percent=None, is_charging=False)
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError):
        battery = None
    if battery:
        state.on_battery = not battery.power_plugged
        state.battery_percent = battery.percent
        state.is_charging = bool(battery.power_plugged)
    return state


class PowerManager:
    """
    Prevent system sleep while active.

    Calling ``start`` twice or ``stop`` without ``start`` is harmless; the
    inhibitor is released exactly once.
    """

    # Windows constants
    ES_CONTINUOUS = 0x80000000
    ES_SYSTEM_REQUIRED = 0x00000001
    ES_DISPLAY_REQUIRED = 0x00000002

    def __init__(
        self,
        keep_display_on: bool = False,
        reason: str = "Photo restoration in progress",
        platform: Optional[str] = None,
    ):
        """
        Initialize power manager.

        Args:
            keep_display_on: Also prevent display sleep (Windows only)
            reason: Description shown by the platform inhibitor
            platform: Override ``sys.platform`` (testing)
        """
        self.keep_display_on = keep_display_on
        self.reason = reason
        self.platform = platform or sys.platform

        self._lock = threading.Lock()
        self._active = False
        self._process: Optional[subprocess.Popen] = None

    @property
    def active(self) -> bool:
        return self._active

    def _set_thread_execution_state(self, flags: int) -> bool:
        """Set Windows thread execution state."""
        try:
            return bool(ctypes.windll.kernel32.SetThreadExecutionState(flags))
        except (AttributeError, OSError) as e:
            logger.debug(f"SetThreadExecutionState failed: {e}")
            return False

    def _inhibitor_command(self) -> Optional[List[str]]:
        if self.platform == "darwin":
            caffeinate = shutil.which("caffeinate")
            if caffeinate:
                return [caffeinate, "-i", "-w", str(os.getpid())]
        elif self.platform.startswith("linux"):
            inhibit = shutil.which("systemd-inhibit")
            if inhibit:
                return [
                    inhibit,
                    "--what=idle:sleep",
                    "--who=PhotoWright",
                    f"--why={self.reason}",
                    "--mode=block",
                    "sleep",
                    "infinity",
                ]
        return None

    def start(self) -> bool:
        """
        Start preventing sleep.

        Returns True if a platform inhibitor is active.
        """
        with self._lock:
            if self._active:
                return True

            if self.platform == "win32":
                flags = self.ES_CONTINUOUS | self.ES_SYSTEM_REQUIRED
                if self.keep_display_on:
                    flags |= self.ES_DISPLAY_REQUIRED
                self._active = self._set_thread_execution_state(flags)
            else:
                command = self._inhibitor_command()
                if command is not None:
                    try:
                        self._process = subprocess.Popen(
                            command,
                            stdout=subprocess.DEVNULL,
                            stderr=subprocess.DEVNULL,
                        )
                        self._active = True
                    except OSError as e:
                        logger.warning(f"Could not start sleep inhibitor: {e}")

            if self._active:
                logger.debug(f"Sleep prevention active ({self.platform})")
            else:
                logger.info(f"Sleep prevention not available on {self.platform}")

        state = get_power_state()
        if state.on_battery:
            logger.warning(f"Running on battery ({state.battery_percent}%)")
        return self._active

    def stop(self) -> None:
        """Allow sleep again."""
        with self._lock:
            if not self._active:
                return
            self._active = False

            if self.platform == "win32":
                self._set_thread_execution_state(self.ES_CONTINUOUS)
            elif self._process is not None:
                process, self._process = self._process, None
                process.terminate()
                try:
                    process.wait(timeout=5.0)
                except subprocess.TimeoutExpired:
                    process.kill()
            logger.debug("Sleep prevention released")

    def __enter__(self):
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.stop()
        return False


class KeepAwake:
    """
    Simple context manager to keep system awake.

    Usage:
        with KeepAwake():
            # Long processing here
            pass
    """

    def __init__(self, keep_display_on: bool = False):
        self.manager = PowerManager(keep_display_on=keep_display_on)

    def __enter__(self):
        self.manager.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.manager.stop()
        return False


def prevent_sleep_during(func: Callable) -> Callable:
    """
    Decorator to prevent sleep during function execution.

    Usage:
        @prevent_sleep_during
        def long_processing():
            # Processing here
            pass
    """
    def wrapper(*args, **kwargs):
        with KeepAwake():
            return func(*args, **kwargs)
    return wrapper
