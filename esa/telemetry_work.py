"""Telemetry carried through a job queue, and the consumer that replays it."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Protocol

from esa.telemetry import (
    CompactionContext,
    ErrorContext,
    RetryContext,
    Telemetry,
    ToolCallContext,
    TurnContext,
    delay_millis,
)

JOB_TURN_STARTED = "telemetry.turn_started"
JOB_TURN_COMPLETED = "telemetry.turn_completed"
JOB_TOOL_STARTED = "telemetry.tool_started"
JOB_TOOL_COMPLETED = "telemetry.tool_completed"
JOB_COMPACTION = "telemetry.compaction"
JOB_RETRY = "telemetry.retry"
JOB_ERROR = "telemetry.error"

ARG_TURN_INDEX = "turn_index"
ARG_MESSAGE_COUNT = "message_count"
ARG_PROVIDER = "provider"
ARG_MODEL = "model"
ARG_TOOL_NAME = "tool_name"
ARG_ARGS_SIZE = "args_size"
ARG_TRIGGER = "trigger"
ARG_MSG_COUNT = "msg_count"
ARG_CHAR_COUNT = "char_count"
ARG_TOKEN_ESTIMATE = "token_estimate"
ARG_TOKEN_THRESHOLD = "token_threshold"
ARG_ATTEMPT = "attempt"
ARG_MAX = "max"
ARG_DELAY_MS = "delay_ms"
ARG_ERROR = "error"
ARG_STAGE = "stage"

DEFAULT_BUFFER_SIZE = 256


@dataclass
class Job:
    """A queued job: its name and its arguments."""

    name: str = ""
    args: dict[str, Any] = field(default_factory=dict)

    def arg_int(self, key: str) -> int:
        """Return an integer argument; raise KeyError or TypeError if unusable."""
        if key not in self.args:
            raise KeyError(f"job argument {key!r} is missing")
        value = self.args[key]
        if isinstance(value, bool):
            raise TypeError(f"job argument {key!r} is not an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise TypeError(f"job argument {key!r} is not an integer")

    def arg_string(self, key: str) -> str:
        """Return a string argument; raise KeyError or TypeError if unusable."""
        if key not in self.args:
            raise KeyError(f"job argument {key!r} is missing")
        value = self.args[key]
        if not isinstance(value, str):
            raise TypeError(f"job argument {key!r} is not a string")
        return value


class Enqueuer(Protocol):
    """Puts a named job with its arguments on a queue."""

    def enqueue(self, name: str, args: dict[str, Any]) -> Job | None: ...


@dataclass
class WorkQueueOptions:
    """How events reach the enqueuer.

    With ``asynchronous`` set, events go through a bounded buffer drained by a
    background thread; a full buffer drops events unless ``block_on_full``.
    ``enqueue_delay`` is a pause in seconds after each delivered event.
    """

    asynchronous: bool = False
    buffer_size: int = 0
    block_on_full: bool = False
    enqueue_delay: float = 0.0


_STOP = object()


class WorkTelemetry:
    """A telemetry sink that turns events into queued jobs."""

    def __init__(self, enqueuer: Enqueuer, opts: WorkQueueOptions | None = None) -> None:
        opts = opts or WorkQueueOptions()
        self._enqueuer = enqueuer
        self._drop_on_full = not opts.block_on_full
        self._delay = opts.enqueue_delay
        self._dropped = 0
        self._closed = False
        self._lock = threading.Lock()
        self._queue: queue.Queue[Any] | None = None
        self._worker: threading.Thread | None = None
        if opts.asynchronous:
            size = opts.buffer_size if opts.buffer_size > 0 else DEFAULT_BUFFER_SIZE
            self._queue = queue.Queue(maxsize=size)
            self._worker = threading.Thread(target=self._run, name="esa-telemetry", daemon=True)
            self._worker.start()

    @property
    def dropped(self) -> int:
        """Number of events dropped because the buffer was full or closed."""
        with self._lock:
            return self._dropped

    def close(self) -> None:
        """Deliver what is buffered and stop the background thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._queue is None:
                return
            self._queue.put(_STOP)
        if self._worker is not None:
            self._worker.join()

    def __enter__(self) -> WorkTelemetry:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _deliver(self, name: str, args: dict[str, Any]) -> None:
        try:
            self._enqueuer.enqueue(name, args)
        except Exception:
            pass

    def _run(self) -> None:
        assert self._queue is not None
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._deliver(*item)
            if self._delay > 0:
                time.sleep(self._delay)

    def _enqueue(self, name: str, args: dict[str, Any]) -> None:
        if self._queue is None:
            self._deliver(name, args)
            return
        with self._lock:
            if self._closed:
                self._dropped += 1
                return
            if self._drop_on_full:
                try:
                    self._queue.put_nowait((name, args))
                except queue.Full:
                    self._dropped += 1
                return
            self._queue.put((name, args))

    def turn_started(self, ctx: TurnContext) -> None:
        self._enqueue(JOB_TURN_STARTED, _turn_args(ctx))

    def turn_completed(self, ctx: TurnContext) -> None:
        self._enqueue(JOB_TURN_COMPLETED, _turn_args(ctx))

    def tool_call_started(self, ctx: ToolCallContext) -> None:
        self._enqueue(JOB_TOOL_STARTED, _tool_args(ctx))

    def tool_call_completed(self, ctx: ToolCallContext) -> None:
        self._enqueue(JOB_TOOL_COMPLETED, _tool_args(ctx))

    def compaction(self, ctx: CompactionContext) -> None:
        self._enqueue(
            JOB_COMPACTION,
            {
                ARG_TRIGGER: ctx.trigger,
                ARG_MSG_COUNT: ctx.msg_count,
                ARG_CHAR_COUNT: ctx.char_count,
                ARG_TOKEN_ESTIMATE: ctx.token_estimate,
                ARG_TOKEN_THRESHOLD: ctx.token_threshold,
            },
        )

    def retry(self, ctx: RetryContext) -> None:
        self._enqueue(
            JOB_RETRY,
            {
                ARG_ATTEMPT: ctx.attempt,
                ARG_MAX: ctx.max,
                ARG_ERROR: ctx.error,
                ARG_DELAY_MS: delay_millis(ctx.delay),
            },
        )

    def error(self, ctx: ErrorContext) -> None:
        self._enqueue(JOB_ERROR, {ARG_STAGE: ctx.stage, ARG_ERROR: ctx.error})


def _turn_args(ctx: TurnContext) -> dict[str, Any]:
    return {
        ARG_TURN_INDEX: ctx.turn_index,
        ARG_MESSAGE_COUNT: ctx.message_count,
        ARG_PROVIDER: ctx.provider,
        ARG_MODEL: ctx.model,
    }


def _tool_args(ctx: ToolCallContext) -> dict[str, Any]:
    return {ARG_TOOL_NAME: ctx.tool_name, ARG_ARGS_SIZE: ctx.args_size}


def _turn_context(job: Job) -> TurnContext:
    return TurnContext(
        turn_index=job.arg_int(ARG_TURN_INDEX),
        message_count=job.arg_int(ARG_MESSAGE_COUNT),
        provider=job.arg_string(ARG_PROVIDER),
        model=job.arg_string(ARG_MODEL),
    )


def _tool_context(job: Job) -> ToolCallContext:
    return ToolCallContext(
        tool_name=job.arg_string(ARG_TOOL_NAME),
        args_size=job.arg_int(ARG_ARGS_SIZE),
    )


@dataclass
class WorkConsumer:
    """Turns queued telemetry jobs back into events for a sink.

    Each handler raises KeyError or TypeError when a job's arguments are
    missing or of the wrong type.
    """

    sink: Telemetry | None = None

    def turn_started(self, job: Job) -> None:
        if self.sink is not None:
            self.sink.turn_started(_turn_context(job))

    def turn_completed(self, job: Job) -> None:
        if self.sink is not None:
            self.sink.turn_completed(_turn_context(job))

    def tool_call_started(self, job: Job) -> None:
        if self.sink is not None:
            self.sink.tool_call_started(_tool_context(job))

    def tool_call_completed(self, job: Job) -> None:
        if self.sink is not None:
            self.sink.tool_call_completed(_tool_context(job))

    def compaction(self, job: Job) -> None:
        if self.sink is None:
            return
        self.sink.compaction(
            CompactionContext(
                trigger=job.arg_string(ARG_TRIGGER),
                msg_count=job.arg_int(ARG_MSG_COUNT),
                char_count=job.arg_int(ARG_CHAR_COUNT),
                token_estimate=job.arg_int(ARG_TOKEN_ESTIMATE),
                token_threshold=job.arg_int(ARG_TOKEN_THRESHOLD),
            )
        )

    def retry(self, job: Job) -> None:
        if self.sink is None:
            return
        self.sink.retry(
            RetryContext(
                attempt=job.arg_int(ARG_ATTEMPT),
                max=job.arg_int(ARG_MAX),
                error=job.arg_string(ARG_ERROR),
                delay=timedelta(milliseconds=job.arg_int(ARG_DELAY_MS)),
            )
        )

    def error(self, job: Job) -> None:
        if self.sink is None:
            return
        self.sink.error(
            ErrorContext(stage=job.arg_string(ARG_STAGE), error=job.arg_string(ARG_ERROR))
        )