"""Orchestration loop: ask the model, gate its proposal, run it, and wait."""

from __future__ import annotations

import json
import logging
import shlex
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from aiterm.agent.budget import ContextBudgetManager
from aiterm.agent.gate import ActionGate, GateDecision
from aiterm.agent.models import (
    Action,
    ActionKind,
    ChatMessage,
    CommandExecHistory,
    CoordinatorState,
    split_instructions,
)
from aiterm.agent.parser import ResponseParser
from aiterm.agent.session import Session
from aiterm.agent.timer import CountdownTimer, OnTick, PollKey
from aiterm.errors import (
    AIBackendError,
    ExecutionDispatchError,
    KnowledgeBaseUnavailable,
    SessionSetupError,
    SquashFailure,
)
from aiterm.knowledge import KnowledgeBaseStore
from aiterm.llm.client import LLMClient
from aiterm.llm.prompts import build_system_prompt
from aiterm.pane import PaneAdapter, sanitize_command

LOGGER = logging.getLogger(__name__)

Display = Callable[[str], None]

CONTINUE_NOTE = "Continue with the task based on the current pane content."
MARKER_POLL_INTERVAL = 0.5
MAX_HISTORY_OUTPUT_CHARS = 2000


class ExecutionCoordinator:
    """Drives one session through the ask/confirm/execute/wait cycle.

    Each call to :meth:`process_message` runs a bounded iterative loop that
    ends in ``done`` (the model reported the request accomplished) or
    ``idle`` (the model needs user input, failed, or the step budget ran
    out).
    """

    def __init__(
        self,
        *,
        session: Session,
        client: LLMClient,
        pane: PaneAdapter,
        gate: ActionGate,
        budget: ContextBudgetManager,
        parser: ResponseParser | None = None,
        timer: CountdownTimer | None = None,
        kb_store: KnowledgeBaseStore | None = None,
        display: Display = print,
        warn: Display | None = None,
        poll_key: PollKey | None = None,
        on_tick: OnTick | None = None,
        log_dir: str | Path | None = None,
        marker_poll_interval: float = MARKER_POLL_INTERVAL,
    ) -> None:
        self.session = session
        self.client = client
        self.pane = pane
        self.gate = gate
        self.budget = budget
        self.parser = parser or ResponseParser()
        self.timer = timer or CountdownTimer()
        self.kb_store = kb_store
        self.display = display
        self.warn = warn or display
        self.poll_key = poll_key
        self.on_tick = on_tick
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.marker_poll_interval = marker_poll_interval
        self._ai_lock = threading.Lock()
        self._loop_lock = threading.Lock()
        self._reported_history = 0
        if not self.session.messages:
            self.session.messages.append(self._system_message())

    # -- setup and teardown -------------------------------------------------

    def setup_exec_pane(self, target: str | None = None) -> str:
        """Resolve the exec pane or raise ``SessionSetupError``.

        An explicit ``target`` must exist. Otherwise the current tmux pane is
        split and the new pane belongs to this session.
        """
        try:
            if target:
                if not self.pane.pane_exists(target):
                    msg = f"Target pane {target} does not exist"
                    raise SessionSetupError(msg)
                self.session.chat_pane_id = self.pane.current_pane_id()
                self.session.exec_pane_id = target
                self.session.owns_exec_pane = False
                return target

            current = self.pane.current_pane_id()
            if current is None:
                msg = "Not running inside tmux and no target pane was given"
                raise SessionSetupError(msg)
            self.session.chat_pane_id = current
            self.session.exec_pane_id = self.pane.create_exec_pane(current)
            self.session.owns_exec_pane = True
        except ExecutionDispatchError as exc:
            raise SessionSetupError(f"Cannot reach the pane collaborator: {exc}") from exc
        LOGGER.info(
            "exec_pane_ready",
            extra={"exec_pane": self.session.exec_pane_id, "owned": self.session.owns_exec_pane},
        )
        return self.session.exec_pane_id

    def auto_load_knowledge_bases(self) -> None:
        for name in self.session.overrides.get_list("kb_auto_load"):
            self.load_kb(name)

    def shutdown(self) -> None:
        """Cancel pending waits and release the exec pane created by this session."""
        self.session.cancelled.set()
        if self.session.owns_exec_pane and self.session.exec_pane_id:
            try:
                self.pane.kill_pane(self.session.exec_pane_id)
            except ExecutionDispatchError as exc:
                LOGGER.warning("exec_pane_cleanup_failed", extra={"error": str(exc)})
        self.session.owns_exec_pane = False

    # -- main loop ----------------------------------------------------------

    def process_message(self, text: str) -> CoordinatorState:
        with self._loop_lock:
            return self._run_loop(text)

    def _run_loop(self, text: str) -> CoordinatorState:
        session = self.session
        session.status = "running"
        note = text.strip() or CONTINUE_NOTE
        max_steps = max(1, session.overrides.get_int("max_steps"))

        for _ in range(max_steps):
            if session.cancelled.is_set():
                break

            self._transition("awaiting_ai")
            action = self.request_action(note)
            note = CONTINUE_NOTE
            if action is None:
                break

            if action.message and not action.no_comment:
                self.display(action.message)

            if action.request_accomplished:
                self._transition("done")
                session.status = "done"
                return "done"

            kind = action.kind
            if kind is None:
                if action.exec_pane_seems_busy and not action.waiting_for_user_response:
                    self._transition("waiting")
                    if not self.countdown():
                        break
                    continue
                break

            self._transition("awaiting_confirmation")
            decisions = self._gate_action(action, kind)
            declined = [decision for decision in decisions if decision.declined]
            if declined:
                self._record_decline(kind, declined[0])
                continue

            try:
                self._execute(action, kind, decisions)
            except ExecutionDispatchError as exc:
                self.warn(f"Execution failed: {exc}")
                self._append(
                    f"The {kind} request could not be delivered to the exec pane: {exc}",
                    from_user=True,
                )
                continue
        else:
            self.warn(
                "Reached the maximum number of steps for this request. "
                "Send a new message to continue."
            )

        self._transition("idle")
        session.status = "waiting"
        return "idle"

    def request_action(
        self,
        note: str,
        *,
        instructions: str | None = None,
        snapshot: str | None = None,
    ) -> Action | None:
        """Send one round-trip to the model and parse its reply.

        Returns ``None`` after reporting an ``AIBackendError``.
        """
        content = snapshot if snapshot is not None else self.exec_pane_snapshot()
        self._append(f"{note}\n\n{content}".strip(), from_user=True)
        self.ensure_budget()

        system_prompt, tagged = split_instructions(self.session.messages)
        effective_instructions = self._with_knowledge(instructions or system_prompt)
        try:
            with self._ai_lock:
                raw = self.client.send(effective_instructions, tagged)
        except AIBackendError as exc:
            self.warn(f"AI request failed: {exc.message}")
            self._log_turn({"event": "ai_error", "status": exc.status, "error": exc.message})
            return None

        action = self.parser.parse(raw)
        self._append(raw, from_user=False)
        self._log_turn(
            {
                "event": "ai_reply",
                "message": action.message,
                "exec_command": [sanitize_command(item) for item in action.exec_command],
                "send_keys": action.send_keys,
                "paste_multiline_length": len(action.paste_multiline_content),
                "request_accomplished": action.request_accomplished,
                "exec_pane_seems_busy": action.exec_pane_seems_busy,
                "waiting_for_user_response": action.waiting_for_user_response,
                "no_comment": action.no_comment,
            }
        )
        return action

    # -- context ------------------------------------------------------------

    def exec_pane_snapshot(self) -> str:
        session = self.session
        max_lines = session.overrides.get_int("max_capture_lines")
        try:
            captured = self.pane.capture(session.target, max_lines)
        except ExecutionDispatchError as exc:
            self.warn(f"Could not capture the exec pane: {exc}")
            captured = f"(pane content unavailable: {exc})"

        sections = [
            f"Exec pane {session.target} (last {max_lines} lines):\n```\n{captured}\n```"
        ]
        history = self._unreported_history()
        if history:
            sections.append("Command history:\n" + "\n".join(history))
        return "\n\n".join(sections)

    def _unreported_history(self) -> list[str]:
        entries = self.session.exec_history[self._reported_history :]
        self._reported_history = len(self.session.exec_history)
        rendered: list[str] = []
        for entry in entries:
            output = entry.output
            if len(output) > MAX_HISTORY_OUTPUT_CHARS:
                output = f"...{output[-MAX_HISTORY_OUTPUT_CHARS:]}"
            rendered.append(f"$ {entry.command}\n(exit code {entry.exit_code})\n{output}".rstrip())
        return rendered

    def _with_knowledge(self, instructions: str) -> str:
        loaded = self.session.loaded_knowledge_bases
        if not loaded:
            return instructions
        blocks = [f"Knowledge base '{kb.name}':\n{kb.content}" for kb in loaded]
        return "\n\n".join([instructions, *blocks])

    def ensure_budget(self, *, force: bool = False) -> bool:
        """Squash when over budget (or when forced); return true if squashed."""
        session = self.session
        try:
            squashed = self.budget.squash(
                session.messages, session.loaded_knowledge_bases, force=force
            )
        except SquashFailure as exc:
            self.warn(f"Context squash failed, keeping full history: {exc}")
            return False
        if squashed is session.messages:
            return False
        session.messages = squashed
        self.display("Context squashed to stay within the token budget.")
        return True

    # -- gating and execution ----------------------------------------------

    def _gate_action(self, action: Action, kind: ActionKind) -> list[GateDecision]:
        if kind == "exec_command":
            candidates = action.exec_command
        elif kind == "send_keys":
            candidates = [" ".join(action.send_keys)]
        else:
            candidates = [action.paste_multiline_content]

        decisions: list[GateDecision] = []
        for candidate in candidates:
            decision = self.gate.evaluate(candidate, kind)
            decisions.append(decision)
            if decision.declined:
                break
        if kind == "send_keys" and decisions and decisions[0].reason == "edited":
            action.send_keys = _split_keys(decisions[0].command)
        return decisions

    def _record_decline(self, kind: ActionKind, decision: GateDecision) -> None:
        LOGGER.info(
            "action_declined",
            extra={"kind": kind, "risk": decision.risk.level, "blacklisted": decision.blacklisted},
        )
        self._log_turn({"event": "declined", "kind": kind, "risk": decision.risk.level})
        self._append(
            f"User declined to run the proposed {kind.replace('_', ' ')}: "
            f"{decision.command}. Suggest an alternative or ask what to do next.",
            from_user=True,
        )

    def _execute(self, action: Action, kind: ActionKind, decisions: list[GateDecision]) -> None:
        session = self.session
        target = session.target
        self._transition("executing")

        if kind == "send_keys":
            self.pane.send_keys(target, action.send_keys)
            self._transition("waiting")
            self.countdown()
            return
        if kind == "paste_multiline":
            self.pane.paste(target, decisions[0].command)
            self._transition("waiting")
            self.countdown()
            return

        for command in [decision.command for decision in decisions]:
            if not session.prepared:
                self.pane.dispatch_command(target, command)
                continue

            max_lines = session.overrides.get_int("max_capture_lines")
            baseline = self.pane.capture(target, max_lines)
            self.pane.dispatch_command(target, command)
            self._transition("waiting")
            entry = self.wait_for_marker(command, baseline)
            if entry is None:
                LOGGER.info("marker_timeout_fallback", extra={"command": sanitize_command(command)})
                self.countdown()
                return
            session.exec_history.append(entry)
            self._transition("executing")

        if not session.prepared:
            self._transition("waiting")
            self.countdown()

    def wait_for_marker(self, command: str, baseline: str | None) -> CommandExecHistory | None:
        """Poll the prepared pane until the prompt marker reports completion.

        The deadline counts unpaused time on the shared timer, so a pause key
        holds both the polling and the timeout.
        """
        session = self.session
        timer = self.timer
        max_lines = session.overrides.get_int("max_capture_lines")
        timer.start(session.overrides.get_float("marker_timeout"))
        while not timer.expired:
            if session.cancelled.is_set():
                return None
            if self.poll_key is not None:
                timer.handle_key(self.poll_key())
            if self.on_tick is not None:
                self.on_tick(timer.remaining(), timer.paused)
            if timer.paused:
                timer.sleep(timer.tick)
                continue
            entry = self.pane.completion(
                session.target, command, max_lines=max_lines, baseline=baseline
            )
            if entry is not None:
                LOGGER.info(
                    "command_completed",
                    extra={"command": sanitize_command(command), "exit_code": entry.exit_code},
                )
                return entry
            self.timer.sleep(self.marker_poll_interval)
        return None

    def countdown(self) -> bool:
        """Fixed-interval wait; false when the session was cancelled."""
        return self.timer.wait(
            self.session.overrides.get_float("wait_interval"),
            cancelled=self.session.cancelled.is_set,
            poll_key=self.poll_key,
            on_tick=self.on_tick,
        )

    # -- session commands ---------------------------------------------------

    def clear_history(self) -> None:
        self.session.messages = [self._system_message()]
        self.session.exec_history.clear()
        self._reported_history = 0

    def reset(self) -> None:
        self.clear_history()
        self.session.status = ""
        self._transition("idle")
        if self.session.exec_pane_id:
            try:
                self.pane.clear(self.session.exec_pane_id)
            except ExecutionDispatchError as exc:
                self.warn(f"Could not clear the exec pane: {exc}")

    def prepare(self, shell: str | None = None) -> bool:
        chosen = shell or str(self.session.overrides.get("prepare_shell"))
        try:
            self.pane.prepare(self.session.target, chosen)
        except (ExecutionDispatchError, ValueError) as exc:
            self.warn(f"Could not prepare the exec pane: {exc}")
            return False
        self.session.prepared = True
        self.session.messages[0] = self._system_message()
        LOGGER.info("exec_pane_prepared", extra={"shell": chosen})
        return True

    def squash_now(self) -> bool:
        return self.ensure_budget(force=True)

    def load_kb(self, name: str) -> bool:
        if self.kb_store is None:
            self.warn("Knowledge base unavailable: no knowledge base directory configured")
            return False
        try:
            kb = self.kb_store.load(name)
        except KnowledgeBaseUnavailable as exc:
            self.warn(f"Knowledge base unavailable: {exc}")
            return False
        self.session.knowledge_bases[name] = kb
        return True

    def unload_kb(self, name: str) -> bool:
        return self.session.knowledge_bases.pop(name, None) is not None

    def context_usage(self) -> tuple[int, int]:
        session = self.session
        used = self.budget.total_tokens(session.messages, session.loaded_knowledge_bases)
        return used, self.budget.max_context_size

    # -- helpers ------------------------------------------------------------

    def _system_message(self) -> ChatMessage:
        return ChatMessage(
            content=build_system_prompt(prepared=self.session.prepared),
            from_user=False,
        )

    def _append(self, content: str, *, from_user: bool) -> None:
        self.session.messages.append(ChatMessage(content=content, from_user=from_user))

    def _transition(self, state: CoordinatorState) -> None:
        if self.session.state != state:
            LOGGER.debug("state_transition", extra={"from": self.session.state, "to": state})
        self.session.state = state

    def _log_turn(self, fields: dict[str, object]) -> None:
        if self.log_dir is None:
            return
        now = datetime.now(timezone.utc)
        entry = {
            "log_version": 1,
            "timestamp": now.isoformat(),
            "model": getattr(self.client, "model", None),
            "exec_pane": self.session.exec_pane_id,
            "prepared": self.session.prepared,
            "watch_mode": self.session.watch_mode,
            "state": self.session.state,
            **fields,
        }
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            day_file = self.log_dir / f"session-{now.date().isoformat()}.log"
            with day_file.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")
        except OSError as exc:
            LOGGER.warning("session_log_write_failed", extra={"error": str(exc)})


def _split_keys(text: str) -> list[str]:
    """Tokenize edited key text; quotes keep a token with spaces together."""
    try:
        return shlex.split(text)
    except ValueError:
        return text.split()
