"""Token usage accumulated over a conversation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping


@dataclass
class Usage:
    """Cumulative prompt and completion token counts."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, prompt: int, completion: int) -> None:
        """Add the tokens of one response to the running totals."""
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        self.total_tokens += prompt + completion

    def empty(self) -> bool:
        """Return True when no tokens have been recorded."""
        return self.total_tokens == 0

    def to_dict(self) -> dict[str, int]:
        """Return the form stored in history files."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Usage:
        """Build a Usage from its stored form; missing counts are zero."""
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0)),
            completion_tokens=int(data.get("completion_tokens", 0)),
            total_tokens=int(data.get("total_tokens", 0)),
        )