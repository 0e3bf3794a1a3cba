"""Watch mode: periodically observe panes and comment without executing."""

from __future__ import annotations

import hashlib
import logging

from aiterm.agent.coordinator import ExecutionCoordinator
from aiterm.agent.session import Session
from aiterm.errors import ExecutionDispatchError
from aiterm.llm.prompts import build_watch_instructions

LOGGER = logging.getLogger(__name__)

WATCH_NOTE = "Watch mode update. Review the pane content below."


class WatchLoop:
    """Observe the target window every ``wait_interval`` seconds.

    Payloads proposed by the model are logged and ignored; watch mode never
    touches the panes.
    """

    def __init__(self, coordinator: ExecutionCoordinator, goal: str) -> None:
        self.coordinator = coordinator
        self.goal = goal.strip()
        self.instructions = build_watch_instructions(self.goal)
        self._stopped = False
        self._last_digest: str | None = None

    @property
    def session(self) -> Session:
        return self.coordinator.session

    def stop(self) -> None:
        self._stopped = True

    def should_continue(self) -> bool:
        return not self._stopped and not self.session.cancelled.is_set()

    def run(self) -> int:
        """Loop until stopped or cancelled; return the number of AI calls made."""
        session = self.session
        session.watch_mode = True
        LOGGER.info("watch_started", extra={"goal": self.goal})
        calls = 0
        try:
            while self.should_continue():
                if self.observe():
                    calls += 1
                if not self.should_continue():
                    break
                if not self.coordinator.countdown():
                    break
        finally:
            session.watch_mode = False
            LOGGER.info("watch_stopped", extra={"ai_calls": calls})
        return calls

    def observe(self) -> bool:
        """Run one watch cycle; return true when the model was consulted."""
        snapshot = self.capture_window()
        digest = hashlib.sha256(snapshot.encode("utf-8")).hexdigest()
        if digest == self._last_digest:
            LOGGER.debug("watch_skipped_unchanged")
            return False
        self._last_digest = digest

        action = self.coordinator.request_action(
            f"{WATCH_NOTE} Goal: {self.goal}",
            instructions=self.instructions,
            snapshot=snapshot,
        )
        if action is None:
            return True
        if action.kind is not None:
            LOGGER.info("watch_payload_ignored", extra={"kind": action.kind})
        if action.message and not action.no_comment:
            self.coordinator.display(action.message)
        return True

    def capture_window(self) -> str:
        session = self.session
        pane = self.coordinator.pane
        max_lines = session.overrides.get_int("max_capture_lines")
        try:
            pane_ids = pane.list_panes(session.target)
        except ExecutionDispatchError as exc:
            LOGGER.warning("watch_list_panes_failed", extra={"error": str(exc)})
            pane_ids = [session.target]

        sections: list[str] = []
        for pane_id in pane_ids:
            if pane_id == session.chat_pane_id:
                continue
            try:
                content = pane.capture(pane_id, max_lines)
            except ExecutionDispatchError as exc:
                content = f"(pane content unavailable: {exc})"
            sections.append(f"Pane {pane_id}:\n```\n{content}\n```")
        return "\n\n".join(sections)
