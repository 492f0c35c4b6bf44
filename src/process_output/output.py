"""Run a process and capture its output as lines.

process-output v0.1.0

A ProcessOutput starts its process as part of construction. Output is
either buffered into two line lists (stdout, stderr) or forwarded live to
a Redirector; which one is fixed when the instance is created. A launch
failure never raises: it is recorded as one stderr line and the instance
behaves as a process that never started.

Example:
    with run_hidden_and_capture("python", "-c", "print('hi')") as output:
        output.wait()
        assert output.exit_code == 0
        assert output.stdout_lines == ["hi"]
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

import anyio

from .config import Config, get_config
from .errors import LaunchError, StreamReadError
from .handle import ProcessHandle
from .lines import split_lines
from .priority import PriorityClass
from .quoting import join_arguments
from .redirector import Redirector, dispose_redirector

__all__ = [
    "LaunchSpec",
    "ProcessState",
    "BufferedSink",
    "LiveSink",
    "OutputSink",
    "ProcessOutput",
    "launch",
    "run",
    "run_visible",
    "run_hidden_and_capture",
]

logger = logging.getLogger(__name__)

ExitHandler = Callable[["ProcessOutput"], None]


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to start a process.

    Attributes:
        executable: Program to run
        arguments: Ordered arguments; None entries are skipped
        working_directory: Starting directory (None = inherit)
        env: Variables to set on top of the inherited environment
        visible: Attach to the console instead of running hidden; output
            is only captured when hidden or when a redirector is given
        redirector: Receives lines live instead of buffering them
        quote_args: Quote each argument; when False they are joined verbatim
        encoding: Codec for child output (None = configured default)
    """

    executable: str | os.PathLike[str]
    arguments: Sequence[str | os.PathLike[str] | None] = ()
    working_directory: str | os.PathLike[str] | None = None
    env: Mapping[str, str] | None = None
    visible: bool = False
    redirector: Redirector | None = None
    quote_args: bool = True
    encoding: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(self.arguments))
        if self.env is not None:
            object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def redirects_output(self) -> bool:
        """Whether stdout/stderr are captured through pipes."""
        return not self.visible or self.redirector is not None


class ProcessState(str, Enum):
    """Lifecycle of a ProcessOutput.

    EXITED and FAILED_TO_START are terminal.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    FAILED_TO_START = "failed_to_start"


@dataclass
class BufferedSink:
    """Collects lines into per-stream lists.

    Each list is appended to by its own reader thread and has its own
    lock, so the two streams never wait on each other.
    """

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    _stdout_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _stderr_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def write_stdout(self, line: str) -> None:
        with self._stdout_lock:
            self.stdout.append(line)

    def write_stderr(self, line: str) -> None:
        with self._stderr_lock:
            self.stderr.append(line)

    def stdout_snapshot(self) -> list[str]:
        with self._stdout_lock:
            return list(self.stdout)

    def stderr_snapshot(self) -> list[str]:
        with self._stderr_lock:
            return list(self.stderr)


@dataclass
class LiveSink:
    """Forwards lines to a redirector, one call at a time."""

    redirector: Redirector
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def write_stdout(self, line: str) -> None:
        with self._lock:
            self.redirector.write_line(line)

    def write_stderr(self, line: str) -> None:
        with self._lock:
            self.redirector.write_error_line(line)


OutputSink = BufferedSink | LiveSink


class ProcessOutput:
    """A process and its captured output.

    The process is started by the constructor. Use launch(), run(),
    run_visible() or run_hidden_and_capture() rather than constructing
    directly.

    Args:
        spec: What to run
        config: Configuration (None = global configuration)
    """

    def __init__(self, spec: LaunchSpec, config: Config | None = None) -> None:
        self._spec = spec
        self._config = config or get_config()
        self._redirector = spec.redirector
        self._sink: OutputSink = (
            LiveSink(spec.redirector) if spec.redirector is not None else BufferedSink()
        )

        # Failure lines when the sink is live; never sent to the redirector
        self._launch_lines: list[str] = []
        self._launch_error: LaunchError | None = None

        self._exit_code: int | None = None
        self._exited = threading.Event()
        self._exit_handlers: list[ExitHandler] = []
        self._exit_fired = False
        self._exit_lock = threading.Lock()

        self._disposed = False
        self._dispose_lock = threading.Lock()

        self._handle = ProcessHandle(
            spec.executable,
            cwd=spec.working_directory,
            env=spec.env,
            hidden=not spec.visible,
            redirect=spec.redirects_output,
            encoding=spec.encoding,
            config=self._config,
        )
        self._command_line = str(self._handle.executable)

        try:
            self._handle.arguments = join_arguments(spec.arguments, spec.quote_args)
            self._command_line = self._handle.command_line
            self._handle.start(
                on_stdout=self._sink.write_stdout,
                on_stderr=self._sink.write_stderr,
                on_exit=self._on_exit,
            )
        except LaunchError as e:
            self._record_launch_failure(e)
        except (TypeError, ValueError) as e:
            # Arguments that cannot be put on a command line
            self._record_launch_failure(LaunchError(self._handle.executable, e))

    def __repr__(self) -> str:
        return (
            f"ProcessOutput(command_line={self._command_line!r}, "
            f"state={self.state.value}, exit_code={self._exit_code})"
        )

    def __enter__(self) -> "ProcessOutput":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def _record_launch_failure(self, error: LaunchError) -> None:
        self._launch_error = error
        line = " ".join(split_lines(str(error)))
        if isinstance(self._sink, BufferedSink):
            self._sink.write_stderr(line)
        else:
            self._launch_lines.append(line)
        self._exited.set()
        logger.warning(f"Failed to start {self._command_line}: {error}")

    def _on_exit(self, returncode: int) -> None:
        """Runs once on the exit watcher thread."""
        self._exit_code = returncode

        # Handlers added once the event is set must run immediately
        with self._exit_lock:
            handlers = list(self._exit_handlers)
            self._exit_handlers.clear()
            self._exit_fired = True
        self._exited.set()

        for handler in handlers:
            self._call_exit_handler(handler)

    def _call_exit_handler(self, handler: ExitHandler) -> None:
        try:
            handler(self)
        except Exception:
            logger.exception(f"Exit handler {handler!r} failed")

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def spec(self) -> LaunchSpec:
        return self._spec

    @property
    def command_line(self) -> str:
        """The quoted executable and arguments, for diagnostics."""
        return self._command_line

    @property
    def exit_code(self) -> int | None:
        """The exit code, or None if the process never started or has not exited."""
        return self._exit_code

    @property
    def state(self) -> ProcessState:
        if self._launch_error is not None:
            return ProcessState.FAILED_TO_START
        if self._exit_code is not None:
            return ProcessState.EXITED
        if self._handle.started:
            return ProcessState.RUNNING
        return ProcessState.NOT_STARTED

    @property
    def started(self) -> bool:
        return self._handle.started

    @property
    def pid(self) -> int | None:
        return self._handle.pid

    @property
    def launch_error(self) -> LaunchError | None:
        """Why the process could not be started, if it could not."""
        return self._launch_error

    @property
    def redirector(self) -> Redirector | None:
        """The redirector that was originally passed."""
        return self._redirector

    @property
    def sink(self) -> OutputSink:
        return self._sink

    @property
    def stdout_lines(self) -> list[str]:
        """Snapshot of the lines written to standard output.

        Always empty when output goes to a redirector.
        """
        if isinstance(self._sink, BufferedSink):
            return self._sink.stdout_snapshot()
        return []

    @property
    def stderr_lines(self) -> list[str]:
        """Snapshot of the lines written to standard error.

        When output goes to a redirector this only ever holds a launch
        failure.
        """
        if isinstance(self._sink, BufferedSink):
            return self._sink.stderr_snapshot()
        return list(self._launch_lines)

    @property
    def read_errors(self) -> list[StreamReadError]:
        """Output read failures; the affected stream stopped early."""
        return list(self._handle.read_errors)

    @property
    def exited_event(self) -> threading.Event:
        """Set when the process exits (already set if it never started)."""
        return self._exited

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def priority(self) -> PriorityClass:
        """Priority class of the process; NORMAL if it is not running."""
        return self._handle.get_priority()

    @priority.setter
    def priority(self, value: PriorityClass) -> None:
        self._handle.set_priority(PriorityClass(value))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def add_exit_callback(self, handler: ExitHandler) -> None:
        """Call ``handler(self)`` once when the process exits.

        A handler added after exit is called immediately. Handlers are
        never called for a process that failed to start.
        """
        with self._exit_lock:
            if not self._exit_fired:
                self._exit_handlers.append(handler)
                return
        self._call_exit_handler(handler)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the process exits and its output has been read.

        Args:
            timeout: Maximum seconds to wait (None = no limit)

        Returns:
            True if the process exited in time, or never started
        """
        return self._exited.wait(timeout)

    async def wait_async(self, timeout: float | None = None) -> bool:
        """Awaitable wait() that runs in a worker thread.

        Cancelling the awaiting task abandons the wait; the process is
        not affected.
        """
        return await anyio.to_thread.run_sync(
            self._exited.wait, timeout, abandon_on_cancel=True
        )

    def kill(self) -> None:
        """Immediately stop the process. No-op if it is not running."""
        self._handle.kill()

    def dispose(self) -> None:
        """Release the process handle and dispose the redirector. Idempotent."""
        with self._dispose_lock:
            if self._disposed:
                return
            self._disposed = True

        self._handle.release()
        if self._redirector is not None and dispose_redirector(self._redirector):
            logger.debug(f"Disposed redirector {self._redirector!r}")


def launch(spec: LaunchSpec, config: Config | None = None) -> ProcessOutput:
    """Start the process described by ``spec``."""
    return ProcessOutput(spec, config)


def run(
    executable: str | os.PathLike[str],
    arguments: Sequence[str | os.PathLike[str] | None] = (),
    *,
    working_directory: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    visible: bool = False,
    redirector: Redirector | None = None,
    quote_args: bool = True,
) -> ProcessOutput:
    """Run ``executable`` with the given settings.

    Args:
        executable: Program to run
        arguments: Arguments to pass
        working_directory: Starting directory
        env: Environment variables to set
        visible: False to hide the process and capture its output into
            stdout_lines / stderr_lines
        redirector: Receives output lines instead of the buffers
        quote_args: Quote arguments for the command line

    Returns:
        A ProcessOutput for the started (or failed) process
    """
    return launch(
        LaunchSpec(
            executable=executable,
            arguments=arguments,
            working_directory=working_directory,
            env=env,
            visible=visible,
            redirector=redirector,
            quote_args=quote_args,
        )
    )


def run_visible(executable: str, *arguments: str) -> ProcessOutput:
    """Run ``executable`` attached to the console, without capturing output."""
    return run(executable, arguments, visible=True)


def run_hidden_and_capture(executable: str, *arguments: str) -> ProcessOutput:
    """Run ``executable`` hidden and capture its output lines."""
    return run(executable, arguments, visible=False)
