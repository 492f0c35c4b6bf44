"""Environment configuration for process-output.

Environment variables:
    PROCOUT_ENCODING: Encoding used to decode child output
        - default "utf-8"; undecodable bytes are replaced

    PROCOUT_READ_SIZE: Bytes requested per read from a child's pipe
        - default 4096, clamped to 1..1048576

    PROCOUT_DRAIN_TIMEOUT: Seconds to wait for output readers after exit
        - default 5.0, clamped to 0.1..300

    PROCOUT_CHUNK_LOCAL_LINES: Split every read chunk on its own
        - true/1/yes = a line spanning two chunks is reported as two lines
        - false/0/no = partial lines are carried to the next chunk (default)

    PROCOUT_LOG_DEBUG: Debug logging for ``python -m process_output``
        - true/1/yes = log at DEBUG to a file in the temp directory
        - false/0/no = log to stderr (default)
"""

from __future__ import annotations

import codecs
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_ENCODING = "utf-8"
DEFAULT_READ_SIZE = 4096
DEFAULT_DRAIN_TIMEOUT = 5.0

MAX_READ_SIZE = 1024 * 1024


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_encoding(value: str | None) -> str:
    """Return a known codec name, falling back to utf-8."""
    if not value or not value.strip():
        return DEFAULT_ENCODING
    try:
        return codecs.lookup(value.strip()).name
    except LookupError:
        return DEFAULT_ENCODING


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return max(1, min(size, MAX_READ_SIZE))


def _parse_drain_timeout(value: str | None) -> float:
    if not value:
        return DEFAULT_DRAIN_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_DRAIN_TIMEOUT
    return max(0.1, min(timeout, 300.0))


@dataclass
class Config:
    """process-output configuration.

    Attributes:
        encoding: Codec used to decode stdout/stderr bytes
        read_size: Bytes per pipe read
        drain_timeout: Seconds the exit watcher waits for readers to finish
        chunk_local_lines: Split each chunk independently (no carry-over)
        log_debug: Debug logging to a file (command-line runner only)
        log_file: Log file path (set when log_debug is True)
    """

    encoding: str = DEFAULT_ENCODING
    read_size: int = DEFAULT_READ_SIZE
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    chunk_local_lines: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(encoding={self.encoding}, "
            f"read_size={self.read_size}, "
            f"drain_timeout={self.drain_timeout}, "
            f"chunk_local_lines={self.chunk_local_lines}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "process-output"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procout_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROCOUT_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        encoding=_parse_encoding(os.environ.get("PROCOUT_ENCODING")),
        read_size=_parse_read_size(os.environ.get("PROCOUT_READ_SIZE")),
        drain_timeout=_parse_drain_timeout(os.environ.get("PROCOUT_DRAIN_TIMEOUT")),
        chunk_local_lines=_parse_bool(
            os.environ.get("PROCOUT_CHUNK_LOCAL_LINES"), default=False
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global configuration (loaded lazily)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
