"""Home-directory expansion and cache-directory handling."""

from __future__ import annotations

import os
import sys
import tempfile


class CacheError(Exception):
    """Raised when the cache directory cannot be located or prepared."""

    def __init__(self, operation: str, path: str, err: BaseException | str) -> None:
        self.operation = operation
        self.path = path
        self.err = err
        super().__init__(f"cache {operation} failed for path '{path}': {err}")


class FileError(Exception):
    """Raised when an operation on a file fails."""

    def __init__(self, operation: str, path: str, err: BaseException | str) -> None:
        self.operation = operation
        self.path = path
        self.err = err
        super().__init__(f"file {operation} failed for path '{path}': {err}")


def _home_dir() -> str:
    if sys.platform == "win32":
        home = os.environ.get("USERPROFILE", "")
        if not home:
            raise OSError("%USERPROFILE% is not defined")
        return home
    home = os.environ.get("HOME", "")
    if not home:
        raise OSError("$HOME is not defined")
    return home


def _user_cache_dir() -> str:
    if sys.platform == "win32":
        local = os.environ.get("LocalAppData", "")
        if not local:
            raise OSError("%LocalAppData% is not defined")
        return local
    if sys.platform == "darwin":
        return os.path.join(_home_dir(), "Library", "Caches")
    xdg = os.environ.get("XDG_CACHE_HOME", "")
    if not xdg:
        home = os.environ.get("HOME", "")
        if not home:
            raise OSError("neither $XDG_CACHE_HOME nor $HOME are defined")
        return os.path.join(home, ".cache")
    if not os.path.isabs(xdg):
        raise OSError("path in $XDG_CACHE_HOME is relative")
    return xdg


def expand_home_path(path: str) -> str:
    """Replace a leading ``~`` with the user's home directory."""
    if not path.startswith("~"):
        return path
    try:
        home = _home_dir()
    except OSError:
        return path
    return os.path.normpath(home + os.sep + path[1:])


def setup_cache_dir() -> str:
    """Ensure the ``esa`` cache directory exists and return its path."""
    try:
        cache_dir = _user_cache_dir()
    except OSError as exc:
        raise CacheError("get user cache directory", "", exc) from exc
    esa_dir = os.path.join(cache_dir, "esa")
    try:
        os.makedirs(esa_dir, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise CacheError("create directory", esa_dir, exc) from exc
    return esa_dir


def setup_cache_dir_with_fallback() -> str:
    """Return the cache directory, falling back to a temp location on failure."""
    try:
        return setup_cache_dir()
    except CacheError as exc:
        print(f"Warning: could not setup cache directory: {exc}", file=sys.stderr)
        return os.path.join(tempfile.gettempdir(), "esa")