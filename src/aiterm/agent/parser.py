"""Turn raw model replies into ``Action`` values without ever failing."""

from __future__ import annotations

import json
import logging
import re

from aiterm.agent.models import Action
from aiterm.llm.prompts import REPLY_FIELDS

LOGGER = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
_BLANK_LINE_RUN = re.compile(r"\n(?:[ \t]*\n){2,}")

_BOOLEAN_FIELDS = (
    "request_accomplished",
    "exec_pane_seems_busy",
    "waiting_for_user_response",
    "no_comment",
)


def normalize_message(text: str) -> str:
    """Collapse runs of two or more blank lines into a single line break."""
    return _BLANK_LINE_RUN.sub("\n", text).strip()


class ResponseParser:
    """Parses the JSON reply schema described in the system prompt."""

    def parse(self, raw: str) -> Action:
        payload = self._locate_object(raw)
        if payload is None:
            LOGGER.warning("malformed_response", extra={"response_length": len(raw)})
            return Action(message=normalize_message(raw))
        return self._to_action(payload)

    @staticmethod
    def _locate_object(raw: str) -> dict[str, object] | None:
        candidates: list[str] = []
        stripped = raw.strip()
        if stripped.startswith("{"):
            candidates.append(stripped)
        candidates.extend(match.group(1) for match in _FENCED_JSON.finditer(raw))
        first = raw.find("{")
        last = raw.rfind("}")
        if 0 <= first < last:
            candidates.append(raw[first : last + 1])

        for candidate in candidates:
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(parsed, dict) and any(key in parsed for key in _known_keys()):
                return {str(key): value for key, value in parsed.items()}
        return None

    @staticmethod
    def _to_action(parsed: dict[str, object]) -> Action:
        message = parsed.get("message")
        paste = parsed.get("paste_multiline_content")
        action = Action(
            message=normalize_message(message) if isinstance(message, str) else "",
            send_keys=_string_list(parsed.get("send_keys")),
            exec_command=_string_list(parsed.get("exec_command")),
            paste_multiline_content=paste if isinstance(paste, str) else "",
        )
        for name in _BOOLEAN_FIELDS:
            value = parsed.get(name, False)
            setattr(action, name, value if isinstance(value, bool) else False)

        populated = [
            name
            for name, value in (
                ("exec_command", action.exec_command),
                ("send_keys", action.send_keys),
                ("paste_multiline_content", action.paste_multiline_content),
            )
            if value
        ]
        if len(populated) > 1:
            LOGGER.warning("action_multiple_payloads", extra={"fields": populated})
            kept = populated[0]
            if kept != "send_keys":
                action.send_keys = []
            if kept != "paste_multiline_content":
                action.paste_multiline_content = ""
        return action


def _known_keys() -> tuple[str, ...]:
    return tuple(REPLY_FIELDS)


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]
