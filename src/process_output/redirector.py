"""Consumers of live process output.

A Redirector receives each captured line as soon as it is read. If it
also has a ``dispose()`` (or ``close()``) method, the owning
ProcessOutput calls it exactly once when it is disposed.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, TextIO

__all__ = [
    "Redirector",
    "LoggingRedirector",
    "ConsoleRedirector",
    "dispose_redirector",
]

logger = logging.getLogger(__name__)


class Redirector(ABC):
    """Receives output lines from a running process."""

    @abstractmethod
    def write_line(self, line: str) -> None:
        """Called for each line written to standard output.

        Args:
            line: The line without its terminator, never None
        """

    @abstractmethod
    def write_error_line(self, line: str) -> None:
        """Called for each line written to standard error.

        Args:
            line: The line without its terminator, never None
        """

    def show(self) -> None:
        """Bring the output to the user's attention. Does nothing by default."""


def dispose_redirector(redirector: Any) -> bool:
    """Dispose ``redirector`` if it supports disposal.

    Returns:
        True if a dispose()/close() method was found and called
    """
    for name in ("dispose", "close"):
        method = getattr(redirector, name, None)
        if callable(method):
            method()
            return True
    return False


class LoggingRedirector(Redirector):
    """Forwards lines to a logger.

    Args:
        target: Logger receiving the lines (defaults to this module's logger)
        stdout_level: Level for standard output lines
        stderr_level: Level for standard error lines
    """

    def __init__(
        self,
        target: logging.Logger | None = None,
        stdout_level: int = logging.INFO,
        stderr_level: int = logging.WARNING,
    ) -> None:
        self.target = target or logger
        self.stdout_level = stdout_level
        self.stderr_level = stderr_level

    def write_line(self, line: str) -> None:
        self.target.log(self.stdout_level, "%s", line)

    def write_error_line(self, line: str) -> None:
        self.target.log(self.stderr_level, "%s", line)


class ConsoleRedirector(Redirector):
    """Writes lines to text streams, flushing after each line.

    The streams are resolved when a line is written, so the defaults
    follow later reassignment of sys.stdout / sys.stderr.
    """

    def __init__(
        self,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
        prefix: str = "",
    ) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self.prefix = prefix

    def _write(self, stream: TextIO, line: str) -> None:
        stream.write(f"{self.prefix}{line}\n")
        stream.flush()

    def write_line(self, line: str) -> None:
        self._write(self._stdout or sys.stdout, line)

    def write_error_line(self, line: str) -> None:
        self._write(self._stderr or sys.stderr, line)
