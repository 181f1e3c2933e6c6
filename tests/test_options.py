from dataclasses import asdict, replace

from esa.options import CLIOptions


def test_defaults_are_all_unset():
    opts = CLIOptions()
    assert set(asdict(opts).values()) == {False, ""}
    assert opts.agent_name == ""
    assert opts.conversation == ""
    assert opts.model == ""
    assert opts.ask_level == ""
    assert opts.continue_chat is False
    assert opts.retry_chat is False
    assert opts.think is False
    assert opts.no_think is False


def test_keyword_construction():
    opts = CLIOptions(agent_name="coder", conversation="session", continue_chat=True)
    assert opts.agent_name == "coder"
    assert opts.conversation == "session"
    assert opts.continue_chat is True
    assert opts.retry_chat is False


def test_replace_keeps_other_fields():
    opts = CLIOptions(model="openai/gpt-4o", ask_level="all")
    changed = replace(opts, ask_level="none")
    assert changed.model == "openai/gpt-4o"
    assert changed.ask_level == "none"
    assert opts.ask_level == "all"


def test_equality_by_value():
    assert CLIOptions(think=True) == CLIOptions(think=True)
    assert CLIOptions(think=True) != CLIOptions(no_think=True)