"""Data models used by the orchestration loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

RiskLevel = Literal["safe", "unknown", "dangerous"]
CoordinatorState = Literal[
    "idle",
    "awaiting_ai",
    "awaiting_confirmation",
    "executing",
    "waiting",
    "done",
]
SessionStatus = Literal["", "running", "waiting", "done"]
ActionKind = Literal["exec_command", "send_keys", "paste_multiline"]

RISK_ORDER: tuple[RiskLevel, ...] = ("safe", "unknown", "dangerous")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ChatMessage:
    """One entry of the conversation sent to the model."""

    content: str
    from_user: bool
    timestamp: datetime = field(default_factory=_utcnow)

    def role(self, index: int) -> str:
        if index == 0 and not self.from_user:
            return "system"
        return "user" if self.from_user else "assistant"


@dataclass(slots=True)
class Action:
    """Model decision for a single round-trip."""

    message: str = ""
    send_keys: list[str] = field(default_factory=list)
    exec_command: list[str] = field(default_factory=list)
    paste_multiline_content: str = ""
    request_accomplished: bool = False
    exec_pane_seems_busy: bool = False
    waiting_for_user_response: bool = False
    no_comment: bool = False

    @property
    def kind(self) -> ActionKind | None:
        """Return which pane payload this action carries, if any."""
        if self.exec_command:
            return "exec_command"
        if self.send_keys:
            return "send_keys"
        if self.paste_multiline_content:
            return "paste_multiline"
        return None


@dataclass(slots=True)
class CommandExecHistory:
    """A command whose completion was observed through the prompt marker."""

    command: str
    output: str
    exit_code: int


@dataclass(slots=True, frozen=True)
class RiskAssessment:
    level: RiskLevel
    rationale: str


@dataclass(slots=True)
class KnowledgeBase:
    """Named reference text that can be loaded into the conversation."""

    name: str
    content: str
    estimated_tokens: int
    loaded: bool = True


def split_instructions(
    messages: list[ChatMessage],
) -> tuple[str, list[dict[str, str]]]:
    """Separate the system message from the role-tagged remainder."""
    tagged = [
        {"role": message.role(index), "content": message.content}
        for index, message in enumerate(messages)
    ]
    if tagged and tagged[0]["role"] == "system":
        return tagged[0]["content"], tagged[1:]
    return "", tagged


def max_risk(first: RiskLevel, second: RiskLevel) -> RiskLevel:
    """Return the more severe of two risk levels."""
    return first if RISK_ORDER.index(first) >= RISK_ORDER.index(second) else second
