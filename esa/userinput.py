"""Interactive prompts read from the controlling terminal."""

from __future__ import annotations

import io
import os
import stat
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import IO, Any, Iterator

try:
    import termios
    import tty as _ttymode
except ImportError:  # pragma: no cover - non-POSIX platforms
    termios = None
    _ttymode = None

TTY_PATH = "/dev/tty"

_CYAN = "36"
_BLUE = "34"
_HINT = "97;3"


@dataclass(frozen=True)
class ConfirmResponse:
    """Outcome of a yes/no/message confirmation prompt."""

    approved: bool
    message: str = ""


def _paint(text: str, code: str) -> str:
    stream = sys.stderr
    if os.environ.get("NO_COLOR") or not getattr(stream, "isatty", lambda: False)():
        return text
    return f"\x1b[{code}m{text}\x1b[0m"


def _text(data: Any) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


@contextmanager
def _interactive_input() -> Iterator[IO[Any]]:
    """Yield the terminal, bypassing piped stdin, or stdin if there is none."""
    try:
        stream = open(TTY_PATH, "r+b", buffering=0)
    except OSError:
        yield sys.stdin
        return
    with stream:
        yield stream


@contextmanager
def _raw_mode(stream: IO[Any]) -> Iterator[None]:
    if termios is None:
        yield
        return
    try:
        fd = stream.fileno()
        old = termios.tcgetattr(fd)
    except (OSError, ValueError, termios.error):
        yield
        return
    try:
        _ttymode.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def confirm(prompt: str) -> ConfirmResponse:
    """Ask the user to approve (y), refuse (N) or answer with a message (m)."""
    sys.stderr.write(f"{_paint('[?]', _CYAN)} {prompt} (m/y/N): ")
    sys.stderr.flush()
    with _interactive_input() as stream:
        with _raw_mode(stream):
            char = _text(stream.read(1))
            if not char:
                return ConfirmResponse(approved=False)
            response = char.lower()
            sys.stderr.write(f"{response}\n\r")
            sys.stderr.flush()
        if response == "m":
            sys.stderr.write(f"{_paint('[?]', _CYAN)} Enter message: ")
            sys.stderr.flush()
            message = _text(stream.readline()).removesuffix("\n")
            return ConfirmResponse(approved=False, message=message)
    return ConfirmResponse(approved=response == "y")


def read_stdin() -> str:
    """Return piped stdin in full, or an empty string when stdin is a terminal."""
    try:
        mode = os.fstat(sys.stdin.fileno()).st_mode
    except (OSError, ValueError, AttributeError):
        return ""
    if stat.S_ISCHR(mode):
        return ""
    try:
        return sys.stdin.read()
    except (OSError, ValueError):
        return ""


def read_user_input(prompt: str, multiline: bool) -> str:
    """Read a line, or several lines ended by Ctrl+D on an empty line."""
    with _interactive_input() as stream:
        if prompt:
            sys.stderr.write(_paint(prompt, _BLUE))
            sys.stderr.write(_paint(" (ctrl+d on empty line to complete)\n", _HINT))
            sys.stderr.flush()

        out = io.StringIO()
        while True:
            line = _text(stream.readline())
            if not line.endswith("\n"):
                break
            if not multiline:
                return line

            line = line[:-1]
            if out.tell() > 0:
                out.write("\n")
            out.write(line)

            if not line:
                head = stream.read(1)
                if not head:
                    break
                out.write("\n")
                out.write(_text(head + stream.readline()))
        return out.getvalue()