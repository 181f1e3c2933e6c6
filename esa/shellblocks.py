"""Expansion of ``{{$command}}`` and ``{{#prompt}}`` template blocks."""

from __future__ import annotations

import re
import signal
import subprocess

from esa.userinput import read_user_input

_SHELL_BLOCK = re.compile(r"\{\{\$(.*?)\}\}")
_INPUT_BLOCK = re.compile(r"\{\{#(.*?)\}\}")


def _run_shell(match: re.Match[str]) -> str:
    try:
        completed = subprocess.run(
            ["sh", "-c", match.group(1)],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            check=False,
        )
    except OSError as exc:
        return f"Error: {exc}"
    code = completed.returncode
    if code > 0:
        return f"Error: exit status {code}"
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = str(-code)
        return f"Error: signal: {name}"
    return completed.stdout.decode("utf-8", errors="replace").strip()


def _ask_user(match: re.Match[str]) -> str:
    try:
        return read_user_input(match.group(1), True)
    except OSError as exc:
        return f"Error: {exc}"


def process_shell_blocks(text: str) -> str:
    """Run ``{{$...}}`` blocks in a shell and replace ``{{#...}}`` blocks with user input."""
    result = _SHELL_BLOCK.sub(_run_shell, text)
    return _INPUT_BLOCK.sub(_ask_user, result)