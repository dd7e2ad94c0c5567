"""Plain-text logging to standard error with a switchable informational level."""

from __future__ import annotations

import sys
import threading

_state_lock = threading.Lock()
_write_lock = threading.Lock()
_verbose = False


def set_verbose(enabled: bool) -> None:
    """Enable or disable informational messages."""
    global _verbose
    with _state_lock:
        _verbose = bool(enabled)


def is_verbose() -> bool:
    """Return whether informational messages are written."""
    with _state_lock:
        return _verbose


def _format(message: object, args: tuple) -> str:
    text = str(message)
    return text % args if args else text


def _emit(text: str) -> None:
    with _write_lock:
        stream = sys.stderr
        stream.write(text + "\n")
        stream.flush()


def info(message: object, *args: object) -> None:
    """Write an informational message, only when verbose output is enabled."""
    if is_verbose():
        _emit(_format(message, args))


def error(message: object, *args: object) -> None:
    """Write an error message; these are always written."""
    _emit(_format(message, args))


def fatal(message: object, *args: object) -> None:
    """Write a message and terminate with exit status 1."""
    _emit(_format(message, args))
    raise SystemExit(1)