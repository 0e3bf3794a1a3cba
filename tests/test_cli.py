from __future__ import annotations

from types import SimpleNamespace

import pytest

from aiterm import cli
from aiterm.agent.models import KnowledgeBase, RiskAssessment
from aiterm.agent.session import Session
from aiterm.config import AppConfig, SessionOverrides
from aiterm.errors import SessionSetupError


class FakeCoordinator:
    def __init__(self) -> None:
        self.session = Session(overrides=SessionOverrides(AppConfig(api_key=None)))
        self.session.exec_pane_id = "%1"
        self.kb_store = SimpleNamespace(list=lambda: ["docker", "git"])
        self.messages: list[str] = []
        self.events: list[str] = []
        self.setup_error: SessionSetupError | None = None

    def setup_exec_pane(self, target=None):
        if self.setup_error is not None:
            raise self.setup_error
        self.events.append(f"setup:{target}")
        return target or "%9"

    def auto_load_knowledge_bases(self) -> None:
        self.events.append("auto_load")

    def load_kb(self, name):
        self.session.knowledge_bases[name] = KnowledgeBase(name, "text", 1)
        return True

    def unload_kb(self, name):
        return self.session.knowledge_bases.pop(name, None) is not None

    def process_message(self, text):
        self.messages.append(text)
        self.session.status = "waiting"
        return "idle"

    def clear_history(self) -> None:
        self.events.append("clear")

    def reset(self) -> None:
        self.events.append("reset")

    def squash_now(self) -> bool:
        return False

    def prepare(self, shell=None) -> bool:
        self.events.append(f"prepare:{shell}")
        return True

    def context_usage(self):
        return 250, 1000

    def shutdown(self) -> None:
        self.events.append("shutdown")


def _feed(lines: list[str]):
    pending = iter(lines)

    def read_line(_prompt: str) -> str:
        try:
            return next(pending)
        except StopIteration:
            raise EOFError from None

    return read_line


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.goal is None
    assert args.target is None
    assert args.watch is None
    assert args.kb is None
    assert args.debug is False


def test_parser_accepts_target_and_repeated_kb() -> None:
    args = cli.build_parser().parse_args(
        ["--target", "%5", "--kb", "docker", "--kb", "git", "fix the build"]
    )

    assert args.target == "%5"
    assert args.kb == ["docker", "git"]
    assert args.goal == "fix the build"


def test_status_prompt_symbols() -> None:
    session = Session(overrides=SessionOverrides(AppConfig(api_key=None)))

    assert cli.status_prompt(session) == "aiterm» "
    session.status = "running"
    assert "▶" in cli.status_prompt(session)
    session.status = "waiting"
    assert "?" in cli.status_prompt(session)
    session.status = "done"
    assert "✓" in cli.status_prompt(session)
    session.watch_mode = True
    assert "∞" in cli.status_prompt(session)


def test_repl_sends_messages_and_handles_commands(capsys: pytest.CaptureFixture[str]) -> None:
    coordinator = FakeCoordinator()

    cli.run_repl(
        coordinator,
        read_line=_feed(["list files", "", "/clear", "/prepare zsh", "/bogus", "/exit", "never"]),
    )

    out = capsys.readouterr().out
    assert coordinator.messages == ["list files"]
    assert coordinator.events == ["clear", "prepare:zsh"]
    assert "Unknown command: /bogus" in out


def test_repl_ends_on_eof() -> None:
    coordinator = FakeCoordinator()

    cli.run_repl(coordinator, read_line=_feed(["hello"]))

    assert coordinator.messages == ["hello"]


def test_info_reports_usage_and_knowledge_bases() -> None:
    coordinator = FakeCoordinator()
    coordinator.load_kb("docker")

    info = cli.render_info(coordinator)

    assert "Context: 250 / 1000 tokens (25.0%)" in info
    assert "Knowledge bases: docker" in info
    assert "Pane mode: unprepared" in info


def test_config_command_sets_and_reports_values(capsys: pytest.CaptureFixture[str]) -> None:
    coordinator = FakeCoordinator()
    overrides = coordinator.session.overrides

    cli.handle_command(coordinator, "/config set max_steps 5")
    cli.handle_command(coordinator, "/config set max_steps lots")
    cli.handle_command(coordinator, "/config get nope")
    cli.handle_command(coordinator, "/config")

    out = capsys.readouterr().out
    assert overrides.get_int("max_steps") == 5
    assert "max_steps = 5" in out
    assert "Invalid value for max_steps" in out
    assert "Unknown configuration key: nope" in out
    assert "* max_steps = 5" in out
    assert "api_key" not in out


def test_config_command_refuses_startup_only_settings(
    capsys: pytest.CaptureFixture[str],
) -> None:
    coordinator = FakeCoordinator()

    cli.handle_command(coordinator, "/config set request_timeout 5")
    cli.handle_command(coordinator, "/config")

    out = capsys.readouterr().out
    assert "request_timeout is fixed for the session" in out
    assert "request_timeout =" not in out
    assert "model =" not in out
    assert coordinator.session.overrides.overridden == {}


def test_kb_command_lists_loads_and_unloads(capsys: pytest.CaptureFixture[str]) -> None:
    coordinator = FakeCoordinator()

    cli.handle_command(coordinator, "/kb load docker")
    cli.handle_command(coordinator, "/kb")
    cli.handle_command(coordinator, "/kb unload docker git")

    out = capsys.readouterr().out
    assert "Loaded knowledge base: docker" in out
    assert "* docker" in out
    assert "  git" in out
    assert "Unloaded knowledge base: docker" in out
    assert "Knowledge base not loaded: git" in out


def test_exit_command_stops_the_session() -> None:
    assert cli.handle_command(FakeCoordinator(), "/exit") is False
    assert cli.handle_command(FakeCoordinator(), "/help") is True


def test_confirm_action_prompts_with_risk_marker(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    answers = iter(["e", "ls -l"])
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(answers))

    outcome = cli.confirm_action(
        "ls -la", RiskAssessment("dangerous", "Matches a blacklisted pattern"), "exec_command"
    )

    assert outcome == ("edit", "ls -l")
    assert "[!] exec command" in capsys.readouterr().out


def test_confirm_action_defaults_to_decline(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("builtins.input", lambda _prompt="": "")

    outcome = cli.confirm_action("rm x", RiskAssessment("unknown", "Deletes files"), "exec_command")

    assert outcome == ("decline", None)


def test_main_returns_error_when_setup_fails(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    coordinator = FakeCoordinator()
    coordinator.setup_error = SessionSetupError("Not running inside tmux")
    monkeypatch.setattr("sys.argv", ["aiterm"])
    monkeypatch.setattr(cli, "configure_logging", lambda *_args, **_kwargs: None)
    monkeypatch.setattr(cli, "build_coordinator", lambda _config, debug: coordinator)

    assert cli.main() == 1
    assert "Not running inside tmux" in capsys.readouterr().out


def test_main_runs_goal_then_repl_and_shuts_down(monkeypatch: pytest.MonkeyPatch) -> None:
    coordinator = FakeCoordinator()
    monkeypatch.setattr("sys.argv", ["aiterm", "--target", "%5", "--kb", "git", "check disk"])
    monkeypatch.setattr(cli, "configure_logging", lambda *_args, **_kwargs: None)
    monkeypatch.setattr(cli, "build_coordinator", lambda _config, debug: coordinator)
    monkeypatch.setattr(cli, "run_repl", lambda _coordinator: None)

    assert cli.main() == 0
    assert coordinator.messages == ["check disk"]
    assert coordinator.events == ["setup:%5", "auto_load", "shutdown"]
    assert "git" in coordinator.session.knowledge_bases
