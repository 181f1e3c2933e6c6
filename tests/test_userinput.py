import io
import sys

import pytest

from esa import userinput
from esa.userinput import ConfirmResponse, confirm, read_stdin, read_user_input


@pytest.fixture
def terminal(tmp_path, monkeypatch):
    def _make(content: str):
        path = tmp_path / "tty"
        path.write_bytes(content.encode())
        monkeypatch.setattr(userinput, "TTY_PATH", str(path))
        return path

    return _make


def test_confirm_yes(terminal):
    terminal("y")
    assert confirm("Run it?") == ConfirmResponse(approved=True, message="")


def test_confirm_uppercase_yes(terminal):
    terminal("Y")
    assert confirm("Run it?").approved is True


def test_confirm_no(terminal):
    terminal("n")
    assert confirm("Run it?") == ConfirmResponse(approved=False)


def test_confirm_message(terminal):
    terminal("muse the other file\n")
    assert confirm("Run it?") == ConfirmResponse(approved=False, message="use the other file")


def test_confirm_empty_input_refuses(terminal):
    terminal("")
    assert confirm("Run it?") == ConfirmResponse(approved=False)


def test_confirm_prompt_written_to_stderr(terminal, capsys):
    terminal("y")
    confirm("Execute `ls`?")
    err = capsys.readouterr().err
    assert "Execute `ls`? (m/y/N): " in err


def test_confirm_falls_back_to_stdin(tmp_path, monkeypatch):
    monkeypatch.setattr(userinput, "TTY_PATH", str(tmp_path / "missing" / "tty"))
    monkeypatch.setattr(sys, "stdin", io.StringIO("y"))
    assert confirm("ok?").approved is True


def test_read_user_input_single_line(terminal):
    terminal("hello\nworld\n")
    assert read_user_input("", False) == "hello\n"


def test_read_user_input_multiline(terminal):
    terminal("first\nsecond\n")
    assert read_user_input("", True) == "first\nsecond"


def test_read_user_input_drops_unterminated_line(terminal):
    terminal("partial")
    assert read_user_input("", False) == ""


def test_read_user_input_prints_prompt(terminal, capsys):
    terminal("x\n")
    read_user_input("Your name", True)
    assert "Your name" in capsys.readouterr().err


def test_read_user_input_stdin_fallback(tmp_path, monkeypatch):
    monkeypatch.setattr(userinput, "TTY_PATH", str(tmp_path / "missing"))
    monkeypatch.setattr(sys, "stdin", io.StringIO("one\ntwo\n"))
    assert read_user_input("", True) == "one\ntwo"


def test_read_stdin_from_file(tmp_path, monkeypatch):
    source = tmp_path / "input.txt"
    source.write_text("piped data\nmore\n")
    with open(source) as handle:
        monkeypatch.setattr(sys, "stdin", handle)
        assert read_stdin() == "piped data\nmore\n"


def test_read_stdin_without_fileno(monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO("ignored"))
    assert read_stdin() == ""