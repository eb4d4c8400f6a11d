from __future__ import annotations

from pathlib import Path

import pytest

from tmux_relay.tmux import (
    ContentReader,
    FakeTmuxClient,
    TmuxClient,
    TmuxError,
    TmuxNotFoundError,
    escape_keys,
    flatten_command,
    sanitize_environment,
    strip_ansi,
)

FAKE_TMUX = """#!/bin/sh
case "$1" in
  has-session)
    [ "$3" = "=relay-live" ] && exit 0
    exit 1
    ;;
  list-sessions)
    printf 'relay-one\\nrelay-two\\n'
    ;;
  kill-session)
    echo "can't find session: $3" >&2
    exit 1
    ;;
  *)
    echo "$@"
    ;;
esac
"""


def _fake_tmux(tmp_path: Path) -> Path:
    script = tmp_path / "tmux"
    script.write_text(FAKE_TMUX, encoding="utf-8")
    script.chmod(0o755)
    return script


def test_has_session_uses_exact_target(tmp_path: Path) -> None:
    client = TmuxClient(_fake_tmux(tmp_path))

    assert client.has_session("relay-live")
    assert not client.has_session("relay-liv")


def test_list_sessions_splits_lines(tmp_path: Path) -> None:
    client = TmuxClient(_fake_tmux(tmp_path))

    assert client.list_sessions() == ["relay-one", "relay-two"]


def test_failed_command_raises_with_stderr(tmp_path: Path) -> None:
    client = TmuxClient(_fake_tmux(tmp_path))

    with pytest.raises(TmuxError) as excinfo:
        client.kill_session("relay-gone")

    assert "can't find session" in excinfo.value.stderr
    assert excinfo.value.command[-1] == "=relay-gone"


def test_capture_pane_passes_history_window(tmp_path: Path) -> None:
    client = TmuxClient(_fake_tmux(tmp_path))

    output = client.capture_pane("relay-live", 250)

    assert output.strip() == "capture-pane -p -t relay-live -S -250"


def test_send_keys_literal_flag(tmp_path: Path) -> None:
    client = TmuxClient(_fake_tmux(tmp_path))
    result = client._invoke("send-keys", "-t", "relay-live", "-l", "hello world")

    assert result.ok
    assert result.stdout.strip() == "send-keys -t relay-live -l hello world"


def test_tmux_not_found(tmp_path: Path) -> None:
    with pytest.raises(TmuxNotFoundError):
        TmuxClient(tmp_path / "missing")


def test_sanitize_environment_strips_tmux(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
    monkeypatch.setenv("TMUX_PANE", "%1")
    monkeypatch.setenv("VIRTUAL_ENV", "/opt/relay/.venv")
    monkeypatch.setenv("PYTHONPATH", "/opt/relay/src")
    env = sanitize_environment({"EXTRA": "1"})

    assert "TMUX" not in env
    assert "TMUX_PANE" not in env
    assert "VIRTUAL_ENV" not in env
    assert "PYTHONPATH" not in env
    assert env["EXTRA"] == "1"


def test_flatten_and_escape() -> None:
    assert flatten_command("line one\nline  two\r\n\tthree") == "line one line two three"
    assert escape_keys("echo hi;") == "echo hi\\;"
    assert escape_keys("a; b") == "a; b"
    assert escape_keys("nul\x00byte") == "nulbyte"


def test_strip_ansi() -> None:
    assert strip_ansi("\x1b[1;32mgreen\x1b[0m text") == "green text"


def test_fake_client_executes_only_non_empty_input() -> None:
    client = FakeTmuxClient()
    pane = client.add_session("relay-a")

    client.send_keys("relay-a", "hello", literal=True)
    client.send_keys("relay-a", "C-m")
    client.send_keys("relay-a", "C-m")

    assert pane.executed == ["hello"]
    assert pane.input_line == ""


def test_content_reader_returns_empty_for_missing_session() -> None:
    client = FakeTmuxClient()

    assert ContentReader(client).capture("relay-missing", 100) == ""


def test_content_reader_tail() -> None:
    client = FakeTmuxClient()
    client.add_session("relay-a", "one\n\ntwo\nthree\n")

    assert ContentReader(client).tail("relay-a", 2) == ["two", "three"]
