"""Ownership of one live OS process and its output readers.

process-output runtime module v0.1.0

This module provides:
- Process start with an exact command line (string on Windows, argv
  rebuilt with the Windows parsing rules on POSIX)
- One reader thread per redirected stream, delivering decoded lines in
  the order the OS produced them
- An exit watcher that drains the readers and reports the exit code once
- Immediate termination (SIGKILL to the process group / TerminateProcess)

Key design points:
- POSIX: hidden processes run in a new session so kill() reaches the
  whole process group
- Windows: hidden processes get CREATE_NO_WINDOW
- Each reader owns its pipe and closes it at end of stream
"""

from __future__ import annotations

import codecs
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Mapping
from typing import IO, Any

from .config import Config, get_config
from .errors import LaunchError, StreamReadError
from .lines import LineBuffer
from .priority import PriorityClass, get_priority, set_priority
from .quoting import quote_argument, split_command_line

__all__ = [
    "ProcessHandle",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

LineCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]

# Failures of the start attempt that are reported as LaunchError
_START_ERRORS = (OSError, ValueError, TypeError, LookupError, subprocess.SubprocessError)


class ProcessHandle:
    """A started OS process with asynchronous line capture.

    Example:
        handle = ProcessHandle("python", '-c "print(1)"')
        handle.start(on_stdout=print, on_stderr=print, on_exit=on_exit)
        ...
        handle.release()

    Args:
        executable: Program to run
        arguments: The argument part of the command line, already quoted
            (or joined verbatim)
        cwd: Working directory (None = inherit)
        env: Sparse overlay on top of the inherited environment
        hidden: Hidden/detached rather than attached to the console
        redirect: Capture stdout/stderr through pipes
        encoding: Codec for decoding output (None = configured default)
        config: Configuration (None = global configuration)

    Attributes:
        read_errors: Failures of the output readers, logged and absorbed
    """

    def __init__(
        self,
        executable: str | os.PathLike[str],
        arguments: str = "",
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        hidden: bool = True,
        redirect: bool = True,
        encoding: str | None = None,
        config: Config | None = None,
    ) -> None:
        if isinstance(executable, os.PathLike):
            executable = os.fspath(executable)
        self.executable = executable
        self.arguments = arguments
        self.cwd = cwd
        self.env = env
        self.hidden = hidden
        self.redirect = redirect
        self.config = config or get_config()
        self.encoding = encoding or self.config.encoding

        self._process: subprocess.Popen[bytes] | None = None
        self._pid: int | None = None
        self._new_session = False
        self._readers: list[threading.Thread] = []
        self._watcher: threading.Thread | None = None
        self._decoder_factory: Callable[..., codecs.IncrementalDecoder] | None = None
        self._returncode: int | None = None
        self._released = False
        self.read_errors: list[StreamReadError] = []
        self._lock = threading.Lock()

    @property
    def command_line(self) -> str:
        """The full command line handed to the OS."""
        return f"{quote_argument(self.executable)} {self.arguments}"

    @property
    def pid(self) -> int | None:
        """Process id, or None if the process never started."""
        return self._pid

    @property
    def started(self) -> bool:
        return self._pid is not None

    @property
    def returncode(self) -> int | None:
        """Exit code, set once the process has exited and output is drained."""
        return self._returncode

    @property
    def released(self) -> bool:
        return self._released

    def start(
        self,
        on_stdout: LineCallback,
        on_stderr: LineCallback,
        on_exit: ExitCallback,
    ) -> None:
        """Start the process, its output readers and its exit watcher.

        Args:
            on_stdout: Called with each stdout line, on the stdout reader thread
            on_stderr: Called with each stderr line, on the stderr reader thread
            on_exit: Called once with the exit code, on the watcher thread

        Raises:
            LaunchError: If the OS process could not be started
        """
        if self._pid is not None:
            raise RuntimeError("Process already started")

        try:
            self._decoder_factory = codecs.getincrementaldecoder(self.encoding)
            if IS_WINDOWS:
                args: str | list[str] = self.command_line
            else:
                args = [self.executable, *split_command_line(self.arguments)]
            process = subprocess.Popen(args, **self._build_subprocess_kwargs())
        except _START_ERRORS as e:
            raise LaunchError(self.executable, e) from e

        self._process = process
        self._pid = process.pid
        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"executable={self.executable} cwd={self.cwd}"
        )

        if process.stdout is not None:
            self._readers.append(
                self._start_reader("stdout", process.stdout, on_stdout)
            )
        if process.stderr is not None:
            self._readers.append(
                self._start_reader("stderr", process.stderr, on_stderr)
            )

        self._watcher = threading.Thread(
            target=self._watch,
            args=(process, on_exit),
            name=f"process-output-exit-{process.pid}",
            daemon=True,
        )
        self._watcher.start()

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific Popen kwargs."""
        kwargs: dict[str, Any] = {}

        if self.cwd is not None:
            kwargs["cwd"] = self.cwd

        # Environment overlay
        if self.env:
            merged = dict(os.environ)
            merged.update(self.env)
            kwargs["env"] = merged

        if self.redirect:
            kwargs["stdin"] = subprocess.DEVNULL
            kwargs["stdout"] = subprocess.PIPE
            kwargs["stderr"] = subprocess.PIPE

        if self.hidden:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW
            else:
                # POSIX: start_new_session (equivalent to setsid)
                kwargs["start_new_session"] = True
                self._new_session = True

        return kwargs

    def _start_reader(
        self,
        name: str,
        stream: IO[bytes],
        deliver: LineCallback,
    ) -> threading.Thread:
        thread = threading.Thread(
            target=self._read_stream,
            args=(name, stream, deliver),
            name=f"process-output-{name}-{self._pid}",
            daemon=True,
        )
        thread.start()
        return thread

    def _read_stream(
        self,
        name: str,
        stream: IO[bytes],
        deliver: LineCallback,
    ) -> None:
        """Read chunks until end of stream and deliver complete lines."""
        decoder = self._decoder_factory(errors="replace")
        buffer = LineBuffer(chunk_local=self.config.chunk_local_lines)
        read = getattr(stream, "read1", stream.read)

        try:
            while True:
                chunk = read(self.config.read_size)
                if not chunk:
                    break
                for line in buffer.feed(decoder.decode(chunk)):
                    self._deliver(name, deliver, line)

            for line in buffer.feed(decoder.decode(b"", final=True)):
                self._deliver(name, deliver, line)
            for line in buffer.flush():
                self._deliver(name, deliver, line)
        except (OSError, ValueError) as e:
            error = StreamReadError(name, self._pid or -1, e)
            self.read_errors.append(error)
            logger.warning(str(error))
        finally:
            stream.close()

    def _deliver(self, name: str, deliver: LineCallback, line: str) -> None:
        try:
            deliver(line)
        except Exception:
            logger.exception(f"Output consumer failed on {name} line pid={self._pid}")

    def _watch(self, process: subprocess.Popen[bytes], on_exit: ExitCallback) -> None:
        """Wait for exit, drain the readers, then report the exit code once."""
        returncode = process.wait()

        for reader in self._readers:
            reader.join(self.config.drain_timeout)
            if reader.is_alive():
                logger.warning(
                    f"Output reader {reader.name} still running "
                    f"{self.config.drain_timeout}s after exit pid={process.pid}"
                )

        self._returncode = returncode
        logger.debug(
            f"Subprocess completed pid={process.pid} returncode={returncode}"
        )
        try:
            on_exit(returncode)
        except Exception:
            logger.exception(f"Exit handler failed pid={process.pid}")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until exit has been reported or ``timeout`` elapses.

        Returns:
            True if the process exited (or never started) in time
        """
        watcher = self._watcher
        if watcher is None:
            return True
        watcher.join(timeout)
        return not watcher.is_alive()

    def kill(self) -> None:
        """Terminate the process immediately. No-op if not running."""
        process = self._process
        if process is None or process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Killing subprocess pid={pid}")
        if IS_WINDOWS:
            self._windows_kill(process)
        elif self._new_session:
            self._posix_kill(process)
        else:
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _posix_kill(self, process: subprocess.Popen[bytes]) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            # Process group id equals pid because of start_new_session
            os.killpg(process.pid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={process.pid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_kill(self, process: subprocess.Popen[bytes]) -> None:
        """Force kill on Windows."""
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass

    def get_priority(self) -> PriorityClass:
        """Priority class of the running process; NORMAL when not running."""
        process = self._process
        if process is None or process.returncode is not None:
            return PriorityClass.NORMAL
        try:
            return get_priority(process.pid)
        except ProcessLookupError:
            return PriorityClass.NORMAL

    def set_priority(self, priority: PriorityClass) -> None:
        """Assign a priority class. No-op when the process is not running.

        Raises:
            OSError: If the OS refuses the change
        """
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            set_priority(process.pid, priority)
        except ProcessLookupError:
            logger.debug(f"Process exited before priority change pid={process.pid}")

    def release(self) -> None:
        """Drop ownership of the OS process. Idempotent.

        A process that is still running keeps running; its readers keep
        draining output and the exit watcher still reports its exit.
        """
        with self._lock:
            if self._released:
                return
            self._released = True
            process, self._process = self._process, None

        if process is None:
            return
        if process.returncode is None:
            logger.debug(f"Released handle of running subprocess pid={process.pid}")
        else:
            logger.debug(f"Released handle pid={process.pid}")
