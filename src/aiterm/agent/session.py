"""Per-window session state owned by the execution coordinator."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from aiterm.agent.models import (
    ChatMessage,
    CommandExecHistory,
    CoordinatorState,
    KnowledgeBase,
    SessionStatus,
)
from aiterm.config import SessionOverrides


@dataclass
class Session:
    """Everything one orchestration session knows.

    Only the coordinator that owns the session mutates ``messages``; other
    components receive copies or return replacements.
    """

    overrides: SessionOverrides
    messages: list[ChatMessage] = field(default_factory=list)
    state: CoordinatorState = "idle"
    status: SessionStatus = ""
    chat_pane_id: str | None = None
    exec_pane_id: str | None = None
    owns_exec_pane: bool = False
    prepared: bool = False
    watch_mode: bool = False
    exec_history: list[CommandExecHistory] = field(default_factory=list)
    knowledge_bases: dict[str, KnowledgeBase] = field(default_factory=dict)
    cancelled: threading.Event = field(default_factory=threading.Event)

    @property
    def loaded_knowledge_bases(self) -> list[KnowledgeBase]:
        return [kb for kb in self.knowledge_bases.values() if kb.loaded]

    @property
    def target(self) -> str:
        if not self.exec_pane_id:
            msg = "Session has no exec pane"
            raise RuntimeError(msg)
        return self.exec_pane_id
