from __future__ import annotations

import subprocess
from types import SimpleNamespace

import pytest

from aiterm.errors import ExecutionDispatchError
from aiterm.pane import TmuxAdapter, create_pane_adapter, parse_completion, sanitize_command


class RecordingRun:
    def __init__(self, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[tuple[list[str], dict[str, object]]] = []

    def __call__(self, *args: object, **kwargs: object) -> SimpleNamespace:
        self.calls.append((list(args[0]), kwargs))
        return SimpleNamespace(returncode=self.returncode, stdout=self.stdout, stderr=self.stderr)


def test_create_pane_adapter() -> None:
    assert isinstance(create_pane_adapter("tmux"), TmuxAdapter)
    with pytest.raises(ValueError, match="Unsupported pane adapter"):
        create_pane_adapter("screen")


def test_dispatch_command_sends_literal_text_then_enter(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun()
    monkeypatch.setattr(subprocess, "run", run)

    TmuxAdapter().dispatch_command("%3", "echo 'a b'")

    assert [call[0] for call in run.calls] == [
        ["tmux", "send-keys", "-t", "%3", "-l", "echo 'a b'"],
        ["tmux", "send-keys", "-t", "%3", "Enter"],
    ]


def test_capture_requests_history_and_strips(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun(stdout="line one\nline two\n\n\n")
    monkeypatch.setattr(subprocess, "run", run)

    content = TmuxAdapter().capture("%3", 150)

    assert content == "line one\nline two"
    assert run.calls[0][0] == ["tmux", "capture-pane", "-p", "-J", "-t", "%3", "-S", "-150"]


def test_paste_loads_buffer_from_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun()
    monkeypatch.setattr(subprocess, "run", run)

    TmuxAdapter().paste("%3", "x = 1\ny = 2\n")

    load_args, load_kwargs = run.calls[0]
    assert load_args[:3] == ["tmux", "load-buffer", "-b"]
    assert load_kwargs["input"] == "x = 1\ny = 2\n"
    assert run.calls[1][0][:2] == ["tmux", "paste-buffer"]


def test_create_exec_pane_returns_new_pane_id(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun(stdout="%7\n")
    monkeypatch.setattr(subprocess, "run", run)

    assert TmuxAdapter().create_exec_pane("%0") == "%7"
    assert "split-window" in run.calls[0][0]


def test_nonzero_exit_raises_dispatch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", RecordingRun(returncode=1, stderr="can't find pane"))

    with pytest.raises(ExecutionDispatchError, match="can't find pane"):
        TmuxAdapter().send_keys("%99", ["Enter"])


def test_timeout_raises_dispatch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> SimpleNamespace:
        raise subprocess.TimeoutExpired(cmd=args[0], timeout=1)

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ExecutionDispatchError, match="timed out"):
        TmuxAdapter(timeout=1).capture("%1", 10)


def test_missing_executable_raises_dispatch_error() -> None:
    with pytest.raises(ExecutionDispatchError, match="not found"):
        TmuxAdapter(executable="/definitely/missing/tmux").capture("%1", 10)


def test_pane_exists_is_false_when_tmux_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", RecordingRun(returncode=1, stderr="no server"))

    assert TmuxAdapter().pane_exists("%1") is False


def test_current_pane_id_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TMUX_PANE", "%4")
    assert TmuxAdapter().current_pane_id() == "%4"

    monkeypatch.delenv("TMUX_PANE")
    assert TmuxAdapter().current_pane_id() is None


def test_prepare_rejects_unknown_shell(monkeypatch: pytest.MonkeyPatch) -> None:
    run = RecordingRun()
    monkeypatch.setattr(subprocess, "run", run)

    with pytest.raises(ValueError, match="Unsupported shell"):
        TmuxAdapter().prepare("%1", "fish")
    TmuxAdapter().prepare("%1", "bash")

    assert run.calls[0][0][-1] == "export PS1='[aiterm:$?]\\$ '"
    assert run.calls[-1][0][:2] == ["tmux", "clear-history"]


def test_parse_completion_reads_output_and_exit_code() -> None:
    content = "[aiterm:0]$ make\ncc -o app main.c\nmain.c:3: error\n[aiterm:2]$ \n\n"

    entry = parse_completion(content, "make")

    assert entry is not None
    assert entry.command == "make"
    assert entry.output == "cc -o app main.c\nmain.c:3: error"
    assert entry.exit_code == 2


@pytest.mark.parametrize(
    ("content", "command"),
    [
        ("[aiterm:0]$ sleep 10\n", "sleep 10"),
        ("[aiterm:0]$ ls\nfile\n[aiterm:0]$ ", "pwd"),
        ("plain output\n", "ls"),
        ("", "ls"),
    ],
)
def test_parse_completion_returns_none_when_not_finished(content: str, command: str) -> None:
    assert parse_completion(content, command) is None


def test_sanitize_command_masks_secrets() -> None:
    assert sanitize_command("deploy --token abc123") == "deploy --token ***"
    assert sanitize_command("export API_KEY=xyz") == "export API_KEY=***"
