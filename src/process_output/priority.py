"""Process scheduling priority classes.

Windows priority classes are set directly with GetPriorityClass /
SetPriorityClass. On POSIX each class maps to a nice value; reading a
nice value returns the nearest class.
"""

from __future__ import annotations

import logging
import os
import sys
from enum import Enum

__all__ = [
    "PriorityClass",
    "get_priority",
    "set_priority",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class PriorityClass(str, Enum):
    """OS scheduling priority bucket.

    - IDLE: lowest, runs only when the system is idle
    - BELOW_NORMAL / NORMAL / ABOVE_NORMAL: the usual range
    - HIGH: time-critical work
    - REALTIME: highest; usually needs elevated privileges
    """

    IDLE = "idle"
    BELOW_NORMAL = "below_normal"
    NORMAL = "normal"
    ABOVE_NORMAL = "above_normal"
    HIGH = "high"
    REALTIME = "realtime"

    @classmethod
    def from_string(cls, value: str) -> "PriorityClass":
        """Parse a class name such as "above-normal" or "HIGH".

        Raises:
            ValueError: If the name is unknown
        """
        normalized = value.strip().lower().replace("-", "_")
        for priority in cls:
            if priority.value == normalized:
                return priority
        raise ValueError(f"Unknown priority class: {value!r}")


# PriorityClass -> Windows priority class constant
WINDOWS_PRIORITY_MAP: dict[PriorityClass, int] = {
    PriorityClass.IDLE: 0x00000040,
    PriorityClass.BELOW_NORMAL: 0x00004000,
    PriorityClass.NORMAL: 0x00000020,
    PriorityClass.ABOVE_NORMAL: 0x00008000,
    PriorityClass.HIGH: 0x00000080,
    PriorityClass.REALTIME: 0x00000100,
}

# PriorityClass -> POSIX nice value
POSIX_NICE_MAP: dict[PriorityClass, int] = {
    PriorityClass.IDLE: 19,
    PriorityClass.BELOW_NORMAL: 10,
    PriorityClass.NORMAL: 0,
    PriorityClass.ABOVE_NORMAL: -5,
    PriorityClass.HIGH: -10,
    PriorityClass.REALTIME: -20,
}

_PROCESS_SET_INFORMATION = 0x0200
_PROCESS_QUERY_LIMITED_INFORMATION = 0x1000


def nearest_priority(nice: int) -> PriorityClass:
    """Map a POSIX nice value to the closest priority class."""
    return min(POSIX_NICE_MAP, key=lambda p: abs(POSIX_NICE_MAP[p] - nice))


def _windows_call(pid: int, access: int, func_name: str, *args: int) -> int:
    """Open ``pid`` and call a kernel32 priority function on its handle."""
    import ctypes

    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    handle = kernel32.OpenProcess(access, False, pid)
    if not handle:
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        result = getattr(kernel32, func_name)(handle, *args)
        if not result:
            raise ctypes.WinError(ctypes.get_last_error())
        return result
    finally:
        kernel32.CloseHandle(handle)


def get_priority(pid: int) -> PriorityClass:
    """Return the priority class of a running process.

    Raises:
        OSError: If the process does not exist or cannot be queried
    """
    if IS_WINDOWS:
        value = _windows_call(
            pid, _PROCESS_QUERY_LIMITED_INFORMATION, "GetPriorityClass"
        )
        for priority, constant in WINDOWS_PRIORITY_MAP.items():
            if constant == value:
                return priority
        return PriorityClass.NORMAL
    return nearest_priority(os.getpriority(os.PRIO_PROCESS, pid))


def set_priority(pid: int, priority: PriorityClass) -> None:
    """Assign a priority class to a running process.

    Raises:
        OSError: If the process does not exist or the OS refuses the
            change (e.g. raising priority without privileges)
    """
    if IS_WINDOWS:
        _windows_call(
            pid,
            _PROCESS_SET_INFORMATION,
            "SetPriorityClass",
            WINDOWS_PRIORITY_MAP[priority],
        )
    else:
        os.setpriority(os.PRIO_PROCESS, pid, POSIX_NICE_MAP[priority])
    logger.debug(f"Set priority pid={pid} priority={priority.value}")
