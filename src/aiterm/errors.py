"""Error taxonomy shared by the orchestration components."""

from __future__ import annotations


class AitermError(Exception):
    """Base class for recoverable aiterm failures."""


class AIBackendError(AitermError):
    """Transport, HTTP, timeout, or body parsing failure talking to the model."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"AI backend error (status {status}): {message}")
        self.status = status
        self.message = message


class ExecutionDispatchError(AitermError):
    """The pane collaborator could not capture, send, or dispatch."""


class SquashFailure(AitermError):
    """Summarization failed; the conversation was left untouched."""


class KnowledgeBaseUnavailable(AitermError):
    """A knowledge base could not be listed or read."""


class SessionSetupError(AitermError):
    """No addressable target pane; the session cannot start."""
