"""Context-window sizes of models."""

from __future__ import annotations

from dataclasses import dataclass

_DEFAULT_CONTEXT_WINDOWS: dict[str, dict[str, int]] = {}


@dataclass
class ModelContextTools:
    """Looks up context windows; ``overrides`` map provider to model to tokens."""

    overrides: dict[str, dict[str, int]] | None = None

    def context_window_tokens(self, provider: str, model: str) -> int | None:
        """Return the context window in tokens, or None when it is not known."""
        provider = provider.strip()
        model = model.strip()
        if not provider or not model:
            return None
        for table in (self.overrides or {}, _DEFAULT_CONTEXT_WINDOWS):
            tokens = table.get(provider, {}).get(model)
            if tokens is not None and tokens > 0:
                return tokens
        return None