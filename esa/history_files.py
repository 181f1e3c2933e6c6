"""Location and naming of conversation history files."""

from __future__ import annotations

import os
import re
from datetime import datetime

from esa.options import CLIOptions
from esa.paths import CacheError, setup_cache_dir, setup_cache_dir_with_fallback

HISTORY_TIME_FORMAT = "%Y%m%d-%H%M%S"

_INTEGER = re.compile(r"[+-]?[0-9]+")


def get_conversation_index(conversation: str) -> int | None:
    """Return the zero-based index a numeric conversation refers to, else None."""
    if not _INTEGER.fullmatch(conversation):
        return None
    value = int(conversation)
    if value < 0:
        return None
    return value - 1


def create_new_history_file(cache_dir: str, agent_name: str, conversation: str) -> str:
    """Build the path for a fresh history file."""
    agent_name = agent_name or "default"
    timestamp = datetime.now().strftime(HISTORY_TIME_FORMAT)
    if get_conversation_index(conversation) is not None:
        return os.path.join(cache_dir, f"---{agent_name}-{timestamp}.json")
    return os.path.join(cache_dir, f"{conversation}---{agent_name}-{timestamp}.json")


def _json_files(directory: str) -> dict[str, os.stat_result]:
    found: dict[str, os.stat_result] = {}
    with os.scandir(directory) as entries:
        for entry in entries:
            if not entry.name.endswith(".json"):
                continue
            try:
                if entry.is_dir():
                    continue
                found[entry.name] = entry.stat()
            except OSError:
                continue
    return found


def _newest_first(files: dict[str, os.stat_result]) -> list[str]:
    return sorted(sorted(files), key=lambda name: files[name].st_mtime, reverse=True)


def find_history_file(cache_dir: str, conversation: str) -> str:
    """Find a history file by 1-based recency index or by conversation id."""
    files = _json_files(cache_dir)
    if not files:
        raise FileNotFoundError("no history files found")

    index = get_conversation_index(conversation)
    if index is not None:
        ordered = _newest_first(files)
        if not 0 <= index < len(ordered):
            raise IndexError(f"history file index {index} out of range (0-{len(ordered) - 1})")
        return os.path.join(cache_dir, ordered[index])

    prefix = conversation + "---"
    match = next((name for name in sorted(files) if name.startswith(prefix)), None)
    if match is None:
        raise FileNotFoundError(f"no history file found for conversation {conversation}")
    return os.path.join(cache_dir, match)


def get_history_file_path(cache_dir: str, opts: CLIOptions) -> tuple[str, bool]:
    """Return the history file to use and whether it already exists."""
    if opts.continue_chat or opts.retry_chat:
        try:
            return find_history_file(cache_dir, opts.conversation), True
        except (OSError, IndexError):
            pass
    new_dir = setup_cache_dir_with_fallback()
    return create_new_history_file(new_dir, opts.agent_name, opts.conversation), False


def get_sorted_history_files() -> tuple[list[str], dict[str, os.stat_result]]:
    """Return history file names, newest first, with their stat results."""
    cache_dir = setup_cache_dir()
    if not os.path.isdir(cache_dir):
        raise CacheError("access", cache_dir, "directory does not exist")
    try:
        files = _json_files(cache_dir)
    except OSError as exc:
        raise CacheError("read", cache_dir, exc) from exc
    if not files:
        raise CacheError("find history files", cache_dir, "no history files found")
    return _newest_first(files), files