"""Token budget tracking and conversation squashing."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Protocol

from aiterm.agent.models import ChatMessage, KnowledgeBase
from aiterm.config import SessionOverrides
from aiterm.errors import AIBackendError, SquashFailure
from aiterm.llm.prompts import SQUASH_INSTRUCTIONS

LOGGER = logging.getLogger(__name__)

SQUASH_THRESHOLD = 0.8
SUMMARY_HEADER = "[Summary of earlier conversation]"
CHARS_PER_TOKEN = 4


class ChatBackend(Protocol):
    def send(self, instructions: str, messages: list[dict[str, str]]) -> str: ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate proportional to character count."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def is_summary(message: ChatMessage) -> bool:
    return not message.from_user and message.content.startswith(SUMMARY_HEADER)


class ContextBudgetManager:
    """Estimates context usage and replaces old history with a summary."""

    def __init__(self, *, backend: ChatBackend, overrides: SessionOverrides) -> None:
        self.backend = backend
        self.overrides = overrides

    @property
    def max_context_size(self) -> int:
        return self.overrides.get_int("max_context_size")

    @property
    def keep_recent(self) -> int:
        return max(1, self.overrides.get_int("squash_keep_recent"))

    def total_tokens(
        self,
        messages: Iterable[ChatMessage],
        knowledge_bases: Iterable[KnowledgeBase] = (),
    ) -> int:
        message_tokens = sum(estimate_tokens(message.content) for message in messages)
        kb_tokens = sum(kb.estimated_tokens for kb in knowledge_bases if kb.loaded)
        return message_tokens + kb_tokens

    def utilization(
        self,
        messages: Iterable[ChatMessage],
        knowledge_bases: Iterable[KnowledgeBase] = (),
    ) -> float:
        maximum = self.max_context_size
        if maximum <= 0:
            return 0.0
        return self.total_tokens(messages, knowledge_bases) / maximum

    def needs_squash(
        self,
        messages: list[ChatMessage],
        knowledge_bases: Iterable[KnowledgeBase] = (),
    ) -> bool:
        return self.utilization(messages, knowledge_bases) > SQUASH_THRESHOLD

    def summarizable_range(self, messages: list[ChatMessage]) -> tuple[int, int] | None:
        """Return the ``[start, end)`` slice that a squash would summarize."""
        start = 1 if messages and not messages[0].from_user else 0
        end = len(messages) - self.keep_recent
        if end <= start:
            return None
        prefix = messages[start:end]
        if len(prefix) == 1 and is_summary(prefix[0]):
            return None
        return start, end

    def squash(
        self,
        messages: list[ChatMessage],
        knowledge_bases: Iterable[KnowledgeBase] = (),
        *,
        force: bool = False,
    ) -> list[ChatMessage]:
        """Return a squashed copy of ``messages`` or the same list on no-op.

        ``force`` skips the utilization threshold for manual requests. Raises
        ``SquashFailure`` when the summarization call fails.
        """
        loaded = list(knowledge_bases)
        if not force and not self.needs_squash(messages, loaded):
            return messages
        summary_range = self.summarizable_range(messages)
        if summary_range is None:
            LOGGER.debug("squash_skipped_no_prefix", extra={"messages": len(messages)})
            return messages

        start, end = summary_range
        prefix = messages[start:end]
        transcript = "\n\n".join(
            f"{'user' if message.from_user else 'assistant'}: {message.content}"
            for message in prefix
        )
        try:
            summary = self.backend.send(
                SQUASH_INSTRUCTIONS,
                [{"role": "user", "content": transcript}],
            ).strip()
        except AIBackendError as exc:
            LOGGER.warning("squash_failed", extra={"status": exc.status, "error": exc.message})
            raise SquashFailure(f"Summarization failed: {exc.message}") from exc
        if not summary:
            raise SquashFailure("Summarization returned an empty summary")

        summary_message = ChatMessage(content=f"{SUMMARY_HEADER}\n{summary}", from_user=False)
        squashed = [*messages[:start], summary_message, *messages[end:]]
        before = self.total_tokens(messages)
        after = self.total_tokens(squashed)
        if after >= before:
            LOGGER.info(
                "squash_discarded_no_reduction",
                extra={"tokens_before": before, "tokens_after": after},
            )
            return messages

        LOGGER.info(
            "squash_completed",
            extra={
                "summarized_messages": len(prefix),
                "tokens_before": before,
                "tokens_after": after,
            },
        )
        return squashed
