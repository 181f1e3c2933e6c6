"""Token count estimation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class Counter(Protocol):
    """Estimates how many tokens a text takes for a given model."""

    @property
    def name(self) -> str: ...

    def estimate(self, text: str, model: str) -> int: ...

    def estimate_chars(self, chars: int, model: str) -> int: ...


_DEFAULT_CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class FallbackCounter:
    """Estimates tokens with a fixed characters-per-token ratio."""

    chars_per_token: int = 0

    @property
    def name(self) -> str:
        return "fallback"

    def estimate(self, text: str, model: str) -> int:
        """Estimate the tokens in ``text`` from its UTF-8 byte length."""
        return self.estimate_chars(len(text.encode("utf-8")), model)

    def estimate_chars(self, chars: int, model: str) -> int:
        """Estimate the tokens in ``chars`` characters, rounding up."""
        if chars <= 0:
            return 0
        cpt = self.chars_per_token if self.chars_per_token > 0 else _DEFAULT_CHARS_PER_TOKEN
        return -(-chars // cpt)


class MapProvider:
    """Chooses a counter by provider name, with a default."""

    def __init__(self, default: Counter | None) -> None:
        self.default = default
        self._by_provider: dict[str, Counter] = {}

    def set(self, provider: str, counter: Counter | None) -> None:
        """Use ``counter`` for ``provider``; empty names and None are ignored."""
        if not provider or counter is None:
            return
        self._by_provider[provider] = counter

    def counter_for(self, provider: str) -> Counter | None:
        """Return the counter for ``provider``, or the default."""
        if provider and provider in self._by_provider:
            return self._by_provider[provider]
        return self.default