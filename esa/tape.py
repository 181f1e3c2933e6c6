"""Linear views of stored conversations and their rendering."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Protocol

_FILE_TIME_FORMAT = "%Y%m%d-%H%M%S"
_ZERO_TIME = "0001-01-01T00:00:00Z"


@dataclass
class TapeMessage:
    """One message on a tape."""

    role: str
    name: str = ""
    content: str = ""

    def to_dict(self) -> dict[str, str]:
        data = {"role": self.role}
        if self.name:
            data["name"] = self.name
        if self.content:
            data["content"] = self.content
        return data


@dataclass
class Tape:
    """A conversation from its first message to its last."""

    conversation_id: str = ""
    agent_path: str = ""
    model: str = ""
    start_time: datetime | None = None
    messages: list[TapeMessage] = field(default_factory=list)
    summary: str = ""
    schema_version: int = 0
    commit: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form, leaving out empty fields."""
        data: dict[str, Any] = {}
        if self.conversation_id:
            data["conversation_id"] = self.conversation_id
        if self.agent_path:
            data["agent_path"] = self.agent_path
        if self.model:
            data["model"] = self.model
        data["start_time"] = (
            _rfc3339(self.start_time, fractional=True) if self.start_time else _ZERO_TIME
        )
        if self.messages:
            data["messages"] = [message.to_dict() for message in self.messages]
        if self.summary:
            data["summary"] = self.summary
        if self.schema_version:
            data["schema_version"] = self.schema_version
        if self.commit:
            data["commit"] = self.commit
        return data


def _rfc3339(moment: datetime, fractional: bool = False) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    if fractional and moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _parse_history_file_name(file_path: str) -> tuple[str, datetime | None]:
    name = os.path.basename(file_path).removesuffix(".json")
    parts = name.split("-", 4)
    if len(parts) != 5:
        return "", None
    try:
        start = datetime.strptime(parts[4], _FILE_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        start = None
    return parts[0], start


def build_tape(file_path: str, history: Mapping[str, Any]) -> Tape:
    """Build a tape from a history file's path and its decoded contents."""
    conversation_id, start_time = _parse_history_file_name(file_path)
    messages = [
        TapeMessage(
            role=message.get("role", ""),
            name=message.get("name") or "",
            content=message.get("content") or "",
        )
        for message in history.get("messages") or []
    ]
    compaction = history.get("compaction") or {}
    return Tape(
        conversation_id=conversation_id,
        agent_path=history.get("agent_path") or "",
        model=history.get("model") or "",
        start_time=start_time,
        messages=messages,
        summary=compaction.get("summary") or "",
        schema_version=int(history.get("schema_version") or 0),
        commit=history.get("commit") or "",
    )


class Renderer(Protocol):
    """Formats a tape for display."""

    def render(self, tape: Tape) -> str: ...


class TextRenderer:
    """Renders a tape as readable plain text."""

    def render(self, tape: Tape) -> str:
        lines = ["Conversation Tape\n"]
        if tape.conversation_id:
            lines.append(f"ID: {tape.conversation_id}\n")
        if tape.agent_path:
            lines.append(f"Agent: {tape.agent_path}\n")
        if tape.model:
            lines.append(f"Model: {tape.model}\n")
        if tape.start_time:
            lines.append(f"Start: {_rfc3339(tape.start_time)}\n")
        lines.append(f"Messages: {len(tape.messages)}\n")

        if tape.summary:
            lines.append(f"\n[Compaction Summary]\n{tape.summary}\n")

        for number, message in enumerate(tape.messages, start=1):
            header = f"\n[{number}] {message.role}"
            if message.name:
                header += f" ({message.name})"
            lines.append(header + "\n")
            if message.content:
                lines.append(message.content + "\n")
        return "".join(lines)


_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class JSONRenderer:
    """Renders a tape as indented JSON."""

    def render(self, tape: Tape) -> str:
        text = json.dumps(tape.to_dict(), indent=2, ensure_ascii=False)
        for char, escape in _HTML_ESCAPES.items():
            text = text.replace(char, escape)
        return text