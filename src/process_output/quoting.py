"""Windows-style command-line quoting.

process-output v0.1.0

This module provides:
- quote_argument: make one argument safe for the Windows argv parser
- join_arguments / build_command_line: assemble a full command line
- split_command_line: the Windows C runtime argv parser, used on POSIX
  so that both platforms hand the child exactly the same arguments

Everything here is pure string manipulation.
"""

from __future__ import annotations

import os
from collections.abc import Iterable

__all__ = [
    "quote_argument",
    "join_arguments",
    "build_command_line",
    "split_command_line",
]

# Characters that force an argument to be quoted
_NEED_QUOTING = (" ", '"')

# Argument separators recognised by the Windows C runtime
_WHITESPACE = (" ", "\t")


def quote_argument(arg: str | None) -> str:
    """Quote a single argument for a Windows command line.

    Arguments without spaces or double quotes are returned unchanged, as
    are arguments that are already wrapped in balanced quotes.

    Args:
        arg: The raw argument (None and "" are allowed)

    Returns:
        The argument as it should appear on the command line
    """
    if not arg:
        return '""'
    if not any(c in arg for c in _NEED_QUOTING):
        return arg

    if arg.startswith('"') and arg.endswith('"'):
        in_quote = False
        backslashes = 0
        for c in arg:
            # An odd run of backslashes escapes the quote
            if c == '"' and backslashes % 2 == 0:
                in_quote = not in_quote
            if c == "\\":
                backslashes += 1
            else:
                backslashes = 0
        if not in_quote:
            return arg

    quoted = arg.replace('"', '\\"')
    if quoted.endswith("\\"):
        quoted += "\\"
    return f'"{quoted}"'


def join_arguments(
    arguments: Iterable[str | os.PathLike[str] | None],
    quote: bool = True,
) -> str:
    """Join arguments with single spaces, skipping None entries.

    Args:
        arguments: Ordered arguments; paths are converted with os.fspath
        quote: Quote each argument with quote_argument; when False the
            arguments are joined verbatim

    Returns:
        The argument part of a command line
    """
    present = [os.fspath(a) for a in arguments if a is not None]
    if quote:
        return " ".join(quote_argument(a) for a in present)
    return " ".join(present)


def build_command_line(
    executable: str,
    arguments: Iterable[str | None] = (),
    quote: bool = True,
) -> str:
    """Build the diagnostic command line: quoted executable, a space, arguments."""
    return f"{quote_argument(executable)} {join_arguments(arguments, quote)}"


def split_command_line(command_line: str) -> list[str]:
    """Split a command line the way the Windows C runtime builds argv.

    Rules:
    - spaces and tabs outside a quoted span separate arguments
    - 2n backslashes followed by a quote produce n backslashes and the
      quote opens or closes a quoted span
    - 2n+1 backslashes followed by a quote produce n backslashes and a
      literal quote
    - backslashes not followed by a quote are literal
    - "" inside a quoted span is a literal quote

    Args:
        command_line: Arguments as they would follow the program name

    Returns:
        The list of arguments
    """
    args: list[str] = []
    current: list[str] = []
    in_quotes = False
    has_arg = False
    i = 0
    n = len(command_line)

    while i < n:
        c = command_line[i]

        if c in _WHITESPACE and not in_quotes:
            if has_arg:
                args.append("".join(current))
                current = []
                has_arg = False
            i += 1
            continue

        has_arg = True

        if c == "\\":
            j = i
            while j < n and command_line[j] == "\\":
                j += 1
            count = j - i
            if j < n and command_line[j] == '"':
                current.append("\\" * (count // 2))
                if count % 2:
                    current.append('"')
                    j += 1
            else:
                current.append("\\" * count)
            i = j
            continue

        if c == '"':
            if in_quotes and i + 1 < n and command_line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
            i += 1
            continue

        current.append(c)
        i += 1

    if has_arg:
        args.append("".join(current))

    return args
