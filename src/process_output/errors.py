"""Exception types for process-output.

process-output v0.1.0
"""

from __future__ import annotations

__all__ = [
    "ProcessOutputError",
    "LaunchError",
    "StreamReadError",
]


class ProcessOutputError(Exception):
    """Base exception for process-output."""
    pass


class LaunchError(ProcessOutputError):
    """The OS process could not be started.

    Raised by ProcessHandle.start() and recovered by the ProcessOutput
    facade, which records it as a single stderr line.

    Attributes:
        executable: The executable that was being started
        cause: The underlying exception (usually an OSError)
    """

    def __init__(self, executable: str, cause: BaseException) -> None:
        self.executable = executable
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class StreamReadError(ProcessOutputError):
    """Reading from a child's output stream failed.

    Attributes:
        stream: "stdout" or "stderr"
        pid: Process id of the child
        cause: The underlying exception
    """

    def __init__(self, stream: str, pid: int, cause: BaseException) -> None:
        self.stream = stream
        self.pid = pid
        self.cause = cause
        super().__init__(f"Failed reading {stream} of pid={pid}: {cause}")
