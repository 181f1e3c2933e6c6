import os
import sys
from datetime import datetime, timezone

import pytest

from esa.history_files import (
    create_new_history_file,
    find_history_file,
    get_conversation_index,
    get_history_file_path,
    get_sorted_history_files,
)
from esa.options import CLIOptions
from esa.paths import CacheError


def _set_mtime(path, hour):
    stamp = datetime(2024, 1, 1, hour, 0, 0, tzinfo=timezone.utc).timestamp()
    os.utime(path, (stamp, stamp))


@pytest.fixture
def cache_home(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    return tmp_path / "cache" / "esa"


@pytest.mark.parametrize(
    "conversation, expected",
    [
        ("1", 0),
        ("5", 4),
        ("0", -1),
        ("my-custom-id", None),
        ("session123", None),
        ("", None),
        ("-1", None),
    ],
)
def test_get_conversation_index(conversation, expected):
    assert get_conversation_index(conversation) == expected


@pytest.mark.parametrize(
    "agent_name, conversation, pattern",
    [
        ("test-agent", "1", "---test-agent-"),
        ("test-agent", "my-session", "my-session---test-agent-"),
        ("", "custom-id", "custom-id---default-"),
        ("agent", "0", "---agent-"),
    ],
)
def test_create_new_history_file(tmp_path, agent_name, conversation, pattern):
    path = create_new_history_file(str(tmp_path), agent_name, conversation)
    name = os.path.basename(path)
    assert os.path.isabs(path)
    assert path.startswith(str(tmp_path))
    assert pattern in name
    assert os.path.splitext(name)[1] == ".json"


def test_index_mode_file_has_no_conversation_prefix(tmp_path):
    name = os.path.basename(create_new_history_file(str(tmp_path), "agent", "3"))
    assert name.startswith("---agent-")


@pytest.fixture
def history_dir(tmp_path):
    names = {
        "custom-session---test-agent---20240101-120000.json": 12,
        "another-id---default---20240101-130000.json": 12,
        "---old-agent---20240101-110000.json": 11,
        "---new-agent---20240101-140000.json": 14,
    }
    for name, hour in names.items():
        path = tmp_path / name
        path.write_text("{}")
        _set_mtime(path, hour)
    return tmp_path


@pytest.mark.parametrize(
    "conversation, expected",
    [
        ("custom-session", "custom-session---test-agent---20240101-120000.json"),
        ("another-id", "another-id---default---20240101-130000.json"),
        ("1", "---new-agent---20240101-140000.json"),
        ("2", "another-id---default---20240101-130000.json"),
    ],
)
def test_find_history_file(history_dir, conversation, expected):
    assert find_history_file(str(history_dir), conversation) == os.path.join(str(history_dir), expected)


def test_find_history_file_unknown_id(history_dir):
    with pytest.raises(FileNotFoundError):
        find_history_file(str(history_dir), "nonexistent")


def test_find_history_file_index_out_of_range(history_dir):
    with pytest.raises(IndexError):
        find_history_file(str(history_dir), "10")


def test_find_history_file_empty_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        find_history_file(str(tmp_path), "1")


def test_find_history_file_ignores_other_files(tmp_path):
    (tmp_path / "notes.txt").write_text("x")
    (tmp_path / "dir.json").mkdir()
    with pytest.raises(FileNotFoundError):
        find_history_file(str(tmp_path), "1")


@pytest.fixture
def existing(tmp_path):
    path = tmp_path / "existing-session---test-agent---20240101-120000.json"
    path.write_text("{}")
    return path


def test_get_history_file_path_new_custom(tmp_path, existing, cache_home):
    opts = CLIOptions(agent_name="test-agent", conversation="new-session")
    path, exists = get_history_file_path(str(tmp_path), opts)
    assert exists is False
    assert "new-session---test-agent-" in os.path.basename(path)
    assert os.path.dirname(path) == str(cache_home)


@pytest.mark.parametrize("continue_chat, retry_chat", [(True, False), (False, True)])
def test_get_history_file_path_existing(tmp_path, existing, cache_home, continue_chat, retry_chat):
    opts = CLIOptions(
        agent_name="test-agent",
        conversation="existing-session",
        continue_chat=continue_chat,
        retry_chat=retry_chat,
    )
    path, exists = get_history_file_path(str(tmp_path), opts)
    assert exists is True
    assert path == str(existing)


def test_get_history_file_path_new_numeric(tmp_path, existing, cache_home):
    opts = CLIOptions(agent_name="test-agent", conversation="1")
    path, exists = get_history_file_path(str(tmp_path), opts)
    assert exists is False
    assert "---test-agent-" in os.path.basename(path)


def test_get_history_file_path_continue_missing_creates_new(tmp_path, existing, cache_home):
    opts = CLIOptions(agent_name="a", conversation="missing", continue_chat=True)
    path, exists = get_history_file_path(str(tmp_path), opts)
    assert exists is False
    assert os.path.basename(path).startswith("missing---a-")


def test_get_sorted_history_files(cache_home):
    cache_home.mkdir(parents=True)
    for name, hour in [("a.json", 10), ("b.json", 14), ("c.json", 12)]:
        path = cache_home / name
        path.write_text("{}")
        _set_mtime(path, hour)
    (cache_home / "ignored.txt").write_text("x")
    names, infos = get_sorted_history_files()
    assert names == ["b.json", "c.json", "a.json"]
    assert set(infos) == {"a.json", "b.json", "c.json"}


def test_get_sorted_history_files_empty(cache_home):
    with pytest.raises(CacheError) as info:
        get_sorted_history_files()
    assert info.value.operation == "find history files"