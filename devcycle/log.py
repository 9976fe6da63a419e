"""Pluggable logging used throughout the SDK.

Messages are written through a process-wide logger, which defaults to one
that forwards to the standard :mod:`logging` package under the ``devcycle``
logger name. Any object with the :class:`Logger` methods can replace it.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Optional, Protocol, runtime_checkable

__all__ = [
    "Logger",
    "DefaultLogger",
    "DiscardLogger",
    "set_logger",
    "get_logger",
    "printf",
    "infof",
    "debugf",
    "warnf",
    "errorf",
]

# Verbs such as %v, %+v, %#v and %w are rendered like %s.
_VALUE_VERB = re.compile(r"(?<!%)%[+#]?[vw]")


def _render(format: str, args: tuple[Any, ...]) -> str:
    """Render a printf-style message, tolerating mismatched arguments."""
    if not args:
        return format
    try:
        return _VALUE_VERB.sub("%s", format) % args
    except (TypeError, ValueError):
        return " ".join([format.rstrip(), *map(str, args)])


@runtime_checkable
class Logger(Protocol):
    """The methods a logger handed to :func:`set_logger` must provide."""

    def printf(self, format: str, *args: Any) -> None:
        """Write a message with no level attached."""

    def infof(self, format: str, *args: Any) -> None:
        """Write an informational message."""

    def debugf(self, format: str, *args: Any) -> None:
        """Write a tracing message."""

    def warnf(self, format: str, *args: Any) -> None:
        """Write a message about something that might be a problem."""

    def errorf(self, format: str, *args: Any) -> Optional[Exception]:
        """Write an error message and return it as an exception."""


class DefaultLogger:
    """Forwards messages to a standard library logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger if logger is not None else logging.getLogger("devcycle")

    def _emit(self, level: int, format: str, args: tuple[Any, ...]) -> str:
        message = _render(format, args).rstrip("\n")
        self._logger.log(level, "%s", message)
        return message

    def printf(self, format: str, *args: Any) -> None:
        self._emit(logging.INFO, format, args)

    def infof(self, format: str, *args: Any) -> None:
        self._emit(logging.INFO, format, args)

    def debugf(self, format: str, *args: Any) -> None:
        self._emit(logging.DEBUG, format, args)

    def warnf(self, format: str, *args: Any) -> None:
        self._emit(logging.WARNING, format, args)

    def errorf(self, format: str, *args: Any) -> Exception:
        return RuntimeError(self._emit(logging.ERROR, format, args))


class DiscardLogger:
    """Drops every message, keeping only a count of how many were dropped."""

    def __init__(self) -> None:
        self.discarded = 0
        self._count_lock = threading.Lock()

    def _discard(self) -> None:
        with self._count_lock:
            self.discarded += 1

    def printf(self, format: str, *args: Any) -> None:
        self._discard()

    def infof(self, format: str, *args: Any) -> None:
        self._discard()

    def debugf(self, format: str, *args: Any) -> None:
        self._discard()

    def warnf(self, format: str, *args: Any) -> None:
        self._discard()

    def errorf(self, format: str, *args: Any) -> None:
        self._discard()


_lock = threading.Lock()
_current: Logger = DefaultLogger()


def set_logger(logger: Logger) -> None:
    """Replace the process-wide logger."""
    global _current
    if logger is None:
        raise ValueError("can't set the logger to None")
    with _lock:
        _current = logger


def get_logger() -> Logger:
    """Return the process-wide logger."""
    with _lock:
        return _current


def printf(format: str, *args: Any) -> None:
    get_logger().printf(format, *args)


def infof(format: str, *args: Any) -> None:
    get_logger().infof(format, *args)


def debugf(format: str, *args: Any) -> None:
    get_logger().debugf(format, *args)


def warnf(format: str, *args: Any) -> None:
    get_logger().warnf(format, *args)


def errorf(format: str, *args: Any) -> None:
    get_logger().errorf(format, *args)