"""Base pane adapter primitives and prompt-marker parsing."""

from __future__ import annotations

import abc
import logging
import re

from aiterm.agent.models import CommandExecHistory

LOGGER = logging.getLogger(__name__)

MARKER_NAME = "aiterm"
PROMPT_MARKER_PATTERN = re.compile(rf"^\[{MARKER_NAME}:(\d+)\][$#%]\s?(.*)$")

PREPARE_COMMANDS = {
    "bash": f"export PS1='[{MARKER_NAME}:$?]\\$ '",
    "zsh": f"PROMPT='[{MARKER_NAME}:%?]%# '",
}

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


def sanitize_command(command: str) -> str:
    """Mask secret-looking arguments before a command reaches the logs."""
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


def parse_completion(content: str, command: str | None = None) -> CommandExecHistory | None:
    """Find the last finished command in prepared-pane content.

    The pane is idle when its last non-empty line is a bare prompt marker. The
    exit code reported by that prompt belongs to the command typed at the
    previous prompt; the lines in between are its output. When ``command`` is
    given, the previous prompt must show that command.
    """
    lines = [line.rstrip() for line in content.splitlines()]
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return None

    last = PROMPT_MARKER_PATTERN.match(lines[-1])
    if last is None or last.group(2).strip():
        return None

    for index in range(len(lines) - 2, -1, -1):
        previous = PROMPT_MARKER_PATTERN.match(lines[index])
        if previous is None:
            continue
        typed = previous.group(2).strip()
        if not typed:
            return None
        if command is not None and typed != command.strip():
            return None
        output = "\n".join(lines[index + 1 : -1])
        return CommandExecHistory(command=typed, output=output, exit_code=int(last.group(1)))
    return None


class PaneAdapter(abc.ABC):
    """Abstract adapter for the terminal multiplexer that hosts the exec pane.

    Every operation raises ``ExecutionDispatchError`` on failure.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly adapter name."""

    @abc.abstractmethod
    def current_pane_id(self) -> str | None:
        """Pane the assistant itself runs in, if any."""

    @abc.abstractmethod
    def pane_exists(self, pane_id: str) -> bool: ...

    @abc.abstractmethod
    def list_panes(self, target: str) -> list[str]:
        """Ids of every pane in the window containing ``target``."""

    @abc.abstractmethod
    def create_exec_pane(self, target: str) -> str:
        """Split ``target`` and return the new pane id."""

    @abc.abstractmethod
    def kill_pane(self, pane_id: str) -> None: ...

    @abc.abstractmethod
    def capture(self, target: str, max_lines: int) -> str: ...

    @abc.abstractmethod
    def send_keys(self, target: str, keys: list[str]) -> None: ...

    @abc.abstractmethod
    def dispatch_command(self, target: str, command: str) -> None: ...

    @abc.abstractmethod
    def paste(self, target: str, content: str) -> None: ...

    @abc.abstractmethod
    def clear(self, target: str) -> None: ...

    def completion(
        self,
        target: str,
        command: str,
        *,
        max_lines: int = 200,
        baseline: str | None = None,
    ) -> CommandExecHistory | None:
        """Return the finished command when the prompt marker shows completion.

        Content identical to ``baseline`` (captured before dispatch) is never
        treated as complete, so a repeated command cannot match its previous run.
        """
        content = self.capture(target, max_lines)
        if baseline is not None and content == baseline:
            return None
        return parse_completion(content, command)

    def prepare(self, target: str, shell: str) -> None:
        """Install the exit-code prompt marker in the pane's shell."""
        normalized = shell.strip().lower()
        prepare_command = PREPARE_COMMANDS.get(normalized)
        if prepare_command is None:
            msg = f"Unsupported shell for prepare: {shell}"
            raise ValueError(msg)
        self.dispatch_command(target, prepare_command)
        self.clear(target)

    def log_dispatch(self, target: str, kind: str, payload: str) -> None:
        LOGGER.info(
            "pane_dispatch",
            extra={
                "adapter": self.name,
                "target": target,
                "kind": kind,
                "payload": sanitize_command(payload),
            },
        )
