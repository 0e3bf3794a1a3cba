from __future__ import annotations

import json

from aiterm.agent.budget import ContextBudgetManager
from aiterm.agent.coordinator import ExecutionCoordinator
from aiterm.agent.gate import ActionGate
from aiterm.agent.risk import RiskScorer
from aiterm.agent.session import Session
from aiterm.agent.timer import CountdownTimer
from aiterm.agent.watch import WatchLoop
from aiterm.config import AppConfig, SessionOverrides
from aiterm.pane import PaneAdapter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    model = "fake-model"

    def __init__(self, replies: list[dict[str, object]]) -> None:
        self.replies = replies
        self.calls: list[tuple[str, list[dict[str, str]]]] = []
        self.on_call = None

    def send(self, instructions, messages):
        self.calls.append((instructions, list(messages)))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        reply = self.replies[(len(self.calls) - 1) % len(self.replies)]
        return json.dumps(reply)


class FakePane(PaneAdapter):
    def __init__(self, ticking: bool = False) -> None:
        self.ticking = ticking
        self.captures = 0
        self.panes = ["%0", "%1", "%2"]
        self.dispatched: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    def current_pane_id(self):
        return "%0"

    def pane_exists(self, pane_id):
        return pane_id in self.panes

    def list_panes(self, target):
        return list(self.panes)

    def create_exec_pane(self, target):
        return "%1"

    def kill_pane(self, pane_id):
        return None

    def capture(self, target, max_lines):
        self.captures += 1
        if self.ticking:
            return f"{target} tick {self.captures}"
        return f"{target} static"

    def send_keys(self, target, keys):
        self.dispatched.extend(keys)

    def dispatch_command(self, target, command):
        self.dispatched.append(command)

    def paste(self, target, content):
        self.dispatched.append(content)

    def clear(self, target):
        return None


def _watch(replies: list[dict[str, object]], pane: FakePane, goal: str = "tell me when tests fail"):
    overrides = SessionOverrides(
        AppConfig(api_key=None, wait_interval=2.0, exec_confirm=False, send_keys_confirm=False)
    )
    client = FakeClient(replies)
    clock = FakeClock()
    shown: list[str] = []
    coordinator = ExecutionCoordinator(
        session=Session(overrides=overrides, chat_pane_id="%0", exec_pane_id="%1"),
        client=client,
        pane=pane,
        gate=ActionGate(
            scorer=RiskScorer(),
            whitelist=list,
            blacklist=list,
            confirmation_enabled=lambda _kind: False,
        ),
        budget=ContextBudgetManager(backend=client, overrides=overrides),
        timer=CountdownTimer(clock=clock, sleep=clock.sleep, tick=0.5),
        display=shown.append,
    )
    return WatchLoop(coordinator, goal), client, clock, shown


def test_watch_never_executes_payloads() -> None:
    pane = FakePane()
    watch, client, _clock, shown = _watch(
        [{"message": "Tests failed in test_api.py", "exec_command": ["pytest -x"]}], pane
    )

    assert watch.observe() is True

    assert pane.dispatched == []
    assert shown == ["Tests failed in test_api.py"]
    assert "tell me when tests fail" in client.calls[0][0]


def test_watch_respects_no_comment() -> None:
    watch, _client, _clock, shown = _watch(
        [{"message": "nothing new", "no_comment": True}], FakePane()
    )

    watch.observe()

    assert shown == []


def test_unchanged_panes_skip_the_model_call() -> None:
    pane = FakePane()
    watch, client, _clock, _shown = _watch([{"no_comment": True}], pane)

    assert watch.observe() is True
    assert watch.observe() is False
    pane.ticking = True
    assert watch.observe() is True

    assert len(client.calls) == 2


def test_capture_skips_the_chat_pane() -> None:
    watch, _client, _clock, _shown = _watch([{"no_comment": True}], FakePane())

    snapshot = watch.capture_window()

    assert "Pane %1" in snapshot
    assert "Pane %2" in snapshot
    assert "Pane %0" not in snapshot


def test_run_waits_between_cycles_and_stops_on_cancel() -> None:
    pane = FakePane(ticking=True)
    watch, client, clock, _shown = _watch([{"message": "ok"}], pane)
    session = watch.session

    def cancel_on_third(count: int) -> None:
        assert session.watch_mode is True
        if count == 3:
            session.cancelled.set()

    client.on_call = cancel_on_third

    calls = watch.run()

    assert calls == 3
    assert clock.now == 4.0
    assert session.watch_mode is False


def test_stop_ends_the_loop() -> None:
    pane = FakePane(ticking=True)
    watch, client, _clock, _shown = _watch([{"message": "ok"}], pane)
    client.on_call = lambda _count: watch.stop()

    assert watch.run() == 1
