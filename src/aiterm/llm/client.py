"""Thin HTTP client for chat-style model calls."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from urllib import request
from urllib.error import HTTPError, URLError

from aiterm.errors import AIBackendError

LOGGER = logging.getLogger(__name__)


class LLMClient:
    """Sends instructions plus role-tagged messages and returns the reply text.

    Supports the OpenAI Responses API (``api_type="responses"``) and the
    chat-completions shape used by most compatible providers
    (``api_type="chat"``). Failures raise ``AIBackendError`` and are never
    retried here.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        api_url: str = "https://api.openai.com/v1/responses",
        api_type: str = "responses",
        reasoning_effort: str | None = None,
        timeout: float = 60.0,
        debug_dir: str | Path | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.api_type = api_type
        self.reasoning_effort = reasoning_effort
        self.timeout = timeout
        self.debug_dir = Path(debug_dir) if debug_dir is not None else None

    def send(self, instructions: str, messages: list[dict[str, str]]) -> str:
        payload = self._build_payload(instructions, messages)
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        LOGGER.debug(
            "llm_request_prepared",
            extra={
                "api_url": self.api_url,
                "api_type": self.api_type,
                "model": self.model,
                "payload_bytes": len(body),
                "messages": len(messages),
            },
        )

        req = request.Request(self.api_url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                raw_response = json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            body_excerpt = self._read_error_body_excerpt(exc)
            LOGGER.error(
                "llm_request_http_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "http_status": exc.code,
                    "reason": exc.reason,
                    "response_excerpt": body_excerpt,
                },
            )
            details = f"HTTP {exc.code}: {exc.reason}"
            if body_excerpt:
                details = f"{details}. Response body: {body_excerpt}"
            raise AIBackendError(exc.code, details) from exc
        except URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise self._timeout_error() from exc
            LOGGER.error(
                "llm_request_transport_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "reason": str(exc.reason),
                },
            )
            raise AIBackendError(0, f"Transport error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise self._timeout_error() from exc
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            LOGGER.error(
                "llm_response_parse_error",
                extra={
                    "api_url": self.api_url,
                    "model": self.model,
                    "error": str(exc),
                },
            )
            raise AIBackendError(200, f"Response parsing error: {exc}") from exc

        if not isinstance(raw_response, dict):
            raise AIBackendError(200, "Response parsing error: expected top-level object")

        error = raw_response.get("error")
        if isinstance(error, dict) and error.get("message"):
            raise AIBackendError(200, f"API error: {error['message']}")

        text = self._extract_text(raw_response)
        if text is None:
            LOGGER.error(
                "llm_response_parse_error",
                extra={"api_url": self.api_url, "model": self.model, "error": "no output text"},
            )
            raise AIBackendError(200, f"No response content returned (model: {self.model})")

        self._write_debug_transcript(instructions, messages, text)
        return text

    def _build_payload(
        self, instructions: str, messages: list[dict[str, str]]
    ) -> dict[str, object]:
        if self.api_type == "chat":
            chat_messages: list[dict[str, str]] = []
            if instructions:
                chat_messages.append({"role": "system", "content": instructions})
            chat_messages.extend(messages)
            return {"model": self.model, "messages": chat_messages}

        payload: dict[str, object] = {
            "model": self.model,
            "input": [
                {"role": message["role"], "content": message["content"]}
                for message in messages
            ],
        }
        if instructions:
            payload["instructions"] = instructions
        if self.reasoning_effort:
            payload["reasoning"] = {"effort": self.reasoning_effort}
        return payload

    def _timeout_error(self) -> AIBackendError:
        LOGGER.error(
            "llm_request_timeout",
            extra={
                "api_url": self.api_url,
                "model": self.model,
                "timeout_seconds": self.timeout,
            },
        )
        return AIBackendError(0, f"Model request timed out after {self.timeout:.1f}s")

    @classmethod
    def _extract_text(cls, payload: dict[str, object]) -> str | None:
        output_text = payload.get("output_text")
        if isinstance(output_text, str) and output_text:
            return output_text

        choices = payload.get("choices")
        if isinstance(choices, list):
            for choice in choices:
                if not isinstance(choice, dict):
                    continue
                message = choice.get("message")
                if isinstance(message, dict) and isinstance(message.get("content"), str):
                    return str(message["content"])

        output_items = payload.get("output")
        if not isinstance(output_items, list):
            return None
        parts: list[str] = []
        for item in output_items:
            if not isinstance(item, dict):
                continue
            content_items = item.get("content")
            if not isinstance(content_items, list):
                continue
            for content in content_items:
                if not isinstance(content, dict):
                    continue
                if content.get("type") == "output_text" and isinstance(content.get("text"), str):
                    parts.append(str(content["text"]))
        return "".join(parts) if parts else None

    @staticmethod
    def _read_error_body_excerpt(exc: HTTPError, *, max_chars: int = 500) -> str | None:
        if exc.fp is None:
            return None
        try:
            raw = exc.read()
        except OSError:
            return None

        if not raw:
            return None

        excerpt = raw.decode("utf-8", errors="replace").replace("\n", " ").strip()
        if len(excerpt) > max_chars:
            return f"{excerpt[:max_chars]}..."
        return excerpt

    def _write_debug_transcript(
        self, instructions: str, messages: list[dict[str, str]], response: str
    ) -> None:
        if self.debug_dir is None:
            return
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
        lines = ["==================    SENT CHAT MESSAGES ==================", ""]
        if instructions:
            lines.extend(["Message 0: Role=system", "Content:", instructions, ""])
        for index, message in enumerate(messages, start=1):
            lines.extend(
                [f"Message {index}: Role={message['role']}", "Content:", message["content"], ""]
            )
        lines.extend(["==================    RECEIVED RESPONSE ==================", ""])
        lines.extend([response, "", "==================    END DEBUG =================="])
        try:
            self.debug_dir.mkdir(parents=True, exist_ok=True)
            path = self.debug_dir / f"debug-{timestamp}.txt"
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("debug_transcript_failed", extra={"error": str(exc)})
