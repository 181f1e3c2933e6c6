"""Approval gates for tool calls."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Protocol

from esa.userinput import ConfirmResponse, confirm


class Decision(enum.Enum):
    """Outcome of a gate."""

    ALLOW = "allow"
    DENY = "deny"
    ABSTAIN = "abstain"


@dataclass(frozen=True)
class ToolIntent:
    """A tool call awaiting approval."""

    tool_name: str
    args_json: str


@dataclass(frozen=True)
class SignedIntent:
    """An approved intent with the signature that vouches for it."""

    intent: ToolIntent
    signature: str
    key_id: str


GateResult = tuple[Decision, "SignedIntent | None"]


class Gate(Protocol):
    """Decides whether a tool call may run."""

    def evaluate(self, intent: ToolIntent) -> GateResult: ...


@dataclass
class GateChain:
    """Runs gates in order; the first that does not abstain decides.

    If every gate abstains the call is denied. An exception from a gate
    propagates, so the call never goes ahead.
    """

    gates: list[Gate] = field(default_factory=list)

    def evaluate(self, intent: ToolIntent) -> GateResult:
        for gate in self.gates:
            decision, signed = gate.evaluate(intent)
            if decision is not Decision.ABSTAIN:
                return decision, signed
        return Decision.DENY, None


class DenyGate:
    """Denies every call."""

    def evaluate(self, intent: ToolIntent) -> GateResult:
        return Decision.DENY, None


@dataclass
class HumanGate:
    """Asks the user to approve each call."""

    ask: Callable[[str], ConfirmResponse] = confirm

    def evaluate(self, intent: ToolIntent) -> GateResult:
        response = self.ask(f"Execute tool {intent.tool_name} with args {intent.args_json}?")
        return (Decision.ALLOW if response.approved else Decision.DENY), None