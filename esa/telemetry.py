"""Instrumentation events and the sinks that receive them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol

_MILLISECOND = timedelta(milliseconds=1)


@dataclass(frozen=True)
class TurnContext:
    """Where the conversation stands and which model serves it."""

    turn_index: int = 0
    message_count: int = 0
    provider: str = ""
    model: str = ""


@dataclass(frozen=True)
class ToolCallContext:
    """A tool call and the size of its arguments."""

    tool_name: str = ""
    args_size: int = 0


@dataclass(frozen=True)
class CompactionContext:
    """Why and at what size a conversation was compacted."""

    trigger: str = ""
    msg_count: int = 0
    char_count: int = 0
    token_estimate: int = 0
    token_threshold: int = 0


@dataclass(frozen=True)
class RetryContext:
    """A retried request and the wait before the next attempt."""

    attempt: int = 0
    max: int = 0
    error: str = ""
    delay: timedelta = timedelta(0)


@dataclass(frozen=True)
class ErrorContext:
    """An error and the stage it happened in."""

    stage: str = ""
    error: str = ""


class Telemetry(Protocol):
    """Receives instrumentation events without tying them to a backend."""

    def turn_started(self, ctx: TurnContext) -> None: ...

    def turn_completed(self, ctx: TurnContext) -> None: ...

    def tool_call_started(self, ctx: ToolCallContext) -> None: ...

    def tool_call_completed(self, ctx: ToolCallContext) -> None: ...

    def compaction(self, ctx: CompactionContext) -> None: ...

    def retry(self, ctx: RetryContext) -> None: ...

    def error(self, ctx: ErrorContext) -> None: ...


def delay_millis(delay: timedelta) -> int:
    """Return a delay in whole milliseconds, truncated toward zero."""
    return int(delay / _MILLISECOND)


@dataclass
class Fanout:
    """Forwards every event to each sink in turn."""

    sinks: list[Telemetry] = field(default_factory=list)

    def turn_started(self, ctx: TurnContext) -> None:
        for sink in self.sinks:
            sink.turn_started(ctx)

    def turn_completed(self, ctx: TurnContext) -> None:
        for sink in self.sinks:
            sink.turn_completed(ctx)

    def tool_call_started(self, ctx: ToolCallContext) -> None:
        for sink in self.sinks:
            sink.tool_call_started(ctx)

    def tool_call_completed(self, ctx: ToolCallContext) -> None:
        for sink in self.sinks:
            sink.tool_call_completed(ctx)

    def compaction(self, ctx: CompactionContext) -> None:
        for sink in self.sinks:
            sink.compaction(ctx)

    def retry(self, ctx: RetryContext) -> None:
        for sink in self.sinks:
            sink.retry(ctx)

    def error(self, ctx: ErrorContext) -> None:
        for sink in self.sinks:
            sink.error(ctx)


class Noop(Fanout):
    """Discards every event: a fan-out with no sinks."""

    def __init__(self) -> None:
        super().__init__(sinks=[])


class LoggingAdapter:
    """Writes events as structured log records; the fields go in ``extra``."""

    def __init__(self, logger: logging.Logger | None) -> None:
        self.logger = logger

    def _emit(self, level: int, event: str, **fields: object) -> None:
        if self.logger is None:
            return
        self.logger.log(level, event, extra=fields)

    def turn_started(self, ctx: TurnContext) -> None:
        self._emit(
            logging.INFO,
            "turn.start",
            turn_index=ctx.turn_index,
            message_count=ctx.message_count,
            provider=ctx.provider,
            model=ctx.model,
        )

    def turn_completed(self, ctx: TurnContext) -> None:
        self._emit(
            logging.INFO,
            "turn.complete",
            turn_index=ctx.turn_index,
            message_count=ctx.message_count,
            provider=ctx.provider,
            model=ctx.model,
        )

    def tool_call_started(self, ctx: ToolCallContext) -> None:
        self._emit(logging.INFO, "tool.start", tool=ctx.tool_name, args_size=ctx.args_size)

    def tool_call_completed(self, ctx: ToolCallContext) -> None:
        self._emit(logging.INFO, "tool.complete", tool=ctx.tool_name, args_size=ctx.args_size)

    def compaction(self, ctx: CompactionContext) -> None:
        self._emit(
            logging.INFO,
            "compaction",
            trigger=ctx.trigger,
            msg_count=ctx.msg_count,
            char_count=ctx.char_count,
            token_estimate=ctx.token_estimate,
            token_threshold=ctx.token_threshold,
        )

    def retry(self, ctx: RetryContext) -> None:
        self._emit(
            logging.WARNING,
            "retry",
            attempt=ctx.attempt,
            max=ctx.max,
            error=ctx.error,
            delay_ms=delay_millis(ctx.delay),
        )

    def error(self, ctx: ErrorContext) -> None:
        self._emit(logging.ERROR, "error", stage=ctx.stage, error=ctx.error)