"""process-output - run external executables and capture their output as lines.

Environment variables:
    PROCOUT_ENCODING: Output encoding (default utf-8)
    PROCOUT_READ_SIZE: Bytes per pipe read (default 4096)
    PROCOUT_DRAIN_TIMEOUT: Seconds to drain output after exit (default 5.0)
    PROCOUT_CHUNK_LOCAL_LINES: Split each read chunk on its own (default false)

Usage:
    python -m process_output [options] executable [arguments ...]
"""

__version__ = "0.1.0"

from .config import Config, get_config, load_config, reload_config
from .errors import LaunchError, ProcessOutputError, StreamReadError
from .handle import ProcessHandle
from .lines import LineBuffer, split_lines
from .output import (
    BufferedSink,
    LaunchSpec,
    LiveSink,
    OutputSink,
    ProcessOutput,
    ProcessState,
    launch,
    run,
    run_hidden_and_capture,
    run_visible,
)
from .priority import PriorityClass
from .quoting import build_command_line, join_arguments, quote_argument, split_command_line
from .redirector import ConsoleRedirector, LoggingRedirector, Redirector

__all__ = [
    "__version__",
    "BufferedSink",
    "Config",
    "ConsoleRedirector",
    "LaunchError",
    "LaunchSpec",
    "LineBuffer",
    "LiveSink",
    "LoggingRedirector",
    "OutputSink",
    "PriorityClass",
    "ProcessHandle",
    "ProcessOutput",
    "ProcessOutputError",
    "ProcessState",
    "Redirector",
    "StreamReadError",
    "build_command_line",
    "get_config",
    "join_arguments",
    "launch",
    "load_config",
    "quote_argument",
    "reload_config",
    "run",
    "run_hidden_and_capture",
    "run_visible",
    "split_command_line",
    "split_lines",
]
