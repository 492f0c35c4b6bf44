"""Command-line runner: start a program and stream its output line by line."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from .config import get_config
from .output import LaunchSpec, launch
from .priority import PriorityClass
from .redirector import ConsoleRedirector

__all__ = ["main", "build_parser"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILED = 127


def _parse_env_pair(value: str) -> tuple[str, str]:
    name, sep, env_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {value!r}")
    return name, env_value


def _parse_priority(value: str) -> PriorityClass:
    try:
        return PriorityClass.from_string(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m process_output",
        description="Run an executable and print its output line by line.",
    )
    parser.add_argument("--visible", action="store_true", help="Attach to the console")
    parser.add_argument(
        "--no-quote", action="store_true", help="Join arguments verbatim instead of quoting"
    )
    parser.add_argument("--cwd", default=None, help="Working directory")
    parser.add_argument(
        "--env",
        action="append",
        type=_parse_env_pair,
        default=[],
        metavar="NAME=VALUE",
        help="Environment variable to set (repeatable)",
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Kill the process after SECONDS"
    )
    parser.add_argument(
        "--priority", type=_parse_priority, default=None, help="Priority class name"
    )
    parser.add_argument("--prefix", default="", help="Prefix for every printed line")
    parser.add_argument("--log-level", default=None, help="Log level (default INFO)")
    parser.add_argument("executable", help="Program to run")
    parser.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments to pass")
    return parser


def _configure_logging(level_name: str | None) -> None:
    config = get_config()
    handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        handler: logging.Handler = logging.FileHandler(config.log_file, encoding="utf-8")
        log_level = logging.DEBUG
    else:
        handler = logging.StreamHandler(sys.stderr)
        log_level = logging.INFO
    handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    )
    handlers.append(handler)

    if level_name:
        log_level = logging.getLevelName(level_name.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    logging.basicConfig(level=logging.WARNING, handlers=handlers)
    logging.getLogger("process_output").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point. Returns the child's exit code."""
    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    redirector = ConsoleRedirector(prefix=args.prefix)
    spec = LaunchSpec(
        executable=args.executable,
        arguments=args.arguments,
        working_directory=args.cwd,
        env=dict(args.env) or None,
        visible=args.visible,
        redirector=redirector,
        quote_args=not args.no_quote,
    )

    with launch(spec) as output:
        logger.debug(f"Command line: {output.command_line}")
        if output.launch_error is not None:
            for line in output.stderr_lines:
                print(line, file=sys.stderr)
            return EXIT_LAUNCH_FAILED

        if args.priority is not None:
            try:
                output.priority = args.priority
            except OSError as e:
                logger.warning(f"Could not set priority {args.priority.value}: {e}")

        if not output.wait(args.timeout):
            logger.warning(f"Timed out after {args.timeout}s, killing pid={output.pid}")
            output.kill()
            output.wait()
            return EXIT_TIMEOUT

        return output.exit_code if output.exit_code is not None else 1
