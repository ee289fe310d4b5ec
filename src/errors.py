"""Error taxonomy for minish.

Every failure the engine reports derives from :class:`ShellError`; the
category prefix is part of the rendered message so the REPL can print the
exception as-is on stderr.
"""

from __future__ import annotations


class ShellError(Exception):
    """Base class for all errors raised by the parser and evaluator."""

    prefix = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.prefix}: {self.message}"


class ParseError(ShellError):
    prefix = "Parse error"


class ShellIOError(ShellError):
    """Wraps an OSError or a decoding failure raised by a builtin operation."""

    prefix = "IO error"

    @classmethod
    def wrap(cls, exc: Exception) -> "ShellIOError":
        if isinstance(exc, OSError) and exc.filename is not None:
            return cls(f"{exc.strerror or exc}: {exc.filename}")
        if isinstance(exc, UnicodeDecodeError):
            return cls(f"cannot decode input as {exc.encoding}")
        return cls(str(exc))


class InvalidArgument(ShellError):
    prefix = "argument error"


class UnknownCommand(ShellError):
    prefix = "unknown command error"


class InvalidPattern(ShellError):
    prefix = "Invalid syntax error"


class LoopLimitError(ShellError):
    """Raised when a while loop runs past its iteration cap."""

    prefix = "runtime error"
