"""Directory-backed knowledge base store."""

from __future__ import annotations

import logging
from pathlib import Path

from aiterm.agent.budget import estimate_tokens
from aiterm.agent.models import KnowledgeBase
from aiterm.errors import KnowledgeBaseUnavailable

LOGGER = logging.getLogger(__name__)

KB_SUFFIXES = (".md", ".txt")


class KnowledgeBaseStore:
    """Reads named reference documents from ``directory``.

    A knowledge base named ``docker`` is the file ``docker.md`` (or
    ``docker.txt``) in the directory.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def list(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        try:
            entries = sorted(self.directory.iterdir())
        except OSError as exc:
            raise KnowledgeBaseUnavailable(f"Cannot list {self.directory}: {exc}") from exc
        return [entry.stem for entry in entries if entry.is_file() and entry.suffix in KB_SUFFIXES]

    def read(self, name: str) -> str:
        path = self._resolve(name)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("kb_read_failed", extra={"kb": name, "error": str(exc)})
            raise KnowledgeBaseUnavailable(f"Knowledge base {name!r} unavailable: {exc}") from exc

    def load(self, name: str) -> KnowledgeBase:
        content = self.read(name)
        return KnowledgeBase(name=name, content=content, estimated_tokens=estimate_tokens(content))

    def _resolve(self, name: str) -> Path:
        if not name or Path(name).name != name:
            raise KnowledgeBaseUnavailable(f"Invalid knowledge base name: {name!r}")
        for suffix in KB_SUFFIXES:
            candidate = self.directory / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        raise KnowledgeBaseUnavailable(f"Knowledge base {name!r} not found in {self.directory}")
