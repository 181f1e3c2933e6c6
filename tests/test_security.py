from dataclasses import dataclass

import pytest

from esa.security import (
    Decision,
    DenyGate,
    GateChain,
    HumanGate,
    SignedIntent,
    ToolIntent,
)
from esa.userinput import ConfirmResponse

INTENT = ToolIntent(tool_name="x", args_json="{}")


@dataclass
class StubGate:
    decision: Decision
    signed: SignedIntent | None = None
    calls: int = 0

    def evaluate(self, intent):
        self.calls += 1
        return self.decision, self.signed


class BrokenGate:
    def evaluate(self, intent):
        raise RuntimeError("gate failure")


def test_gate_chain_order():
    last = StubGate(Decision.DENY)
    chain = GateChain([StubGate(Decision.ABSTAIN), StubGate(Decision.ALLOW), last])
    decision, _ = chain.evaluate(INTENT)
    assert decision is Decision.ALLOW
    assert last.calls == 0


def test_gate_chain_default_deny():
    chain = GateChain([StubGate(Decision.ABSTAIN), StubGate(Decision.ABSTAIN)])
    assert chain.evaluate(INTENT) == (Decision.DENY, None)


def test_empty_chain_denies():
    assert GateChain().evaluate(INTENT) == (Decision.DENY, None)


def test_deny_gate():
    assert DenyGate().evaluate(INTENT) == (Decision.DENY, None)


def test_chain_passes_signature_through():
    signed = SignedIntent(intent=INTENT, signature="sig", key_id="k1")
    chain = GateChain([StubGate(Decision.ALLOW, signed)])
    assert chain.evaluate(INTENT) == (Decision.ALLOW, signed)


def test_gate_error_propagates():
    after = StubGate(Decision.ALLOW)
    chain = GateChain([BrokenGate(), after])
    with pytest.raises(RuntimeError, match="gate failure"):
        chain.evaluate(INTENT)
    assert after.calls == 0


def test_human_gate_allows_on_approval():
    prompts = []

    def ask(prompt):
        prompts.append(prompt)
        return ConfirmResponse(approved=True)

    decision, signed = HumanGate(ask=ask).evaluate(ToolIntent("ls", '{"a":1}'))
    assert decision is Decision.ALLOW
    assert signed is None
    assert prompts == ['Execute tool ls with args {"a":1}?']


def test_human_gate_denies_on_refusal():
    gate = HumanGate(ask=lambda prompt: ConfirmResponse(approved=False, message="no"))
    assert gate.evaluate(INTENT) == (Decision.DENY, None)