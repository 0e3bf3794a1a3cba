"""tmux pane adapter implementation."""

from __future__ import annotations

import logging
import os
import subprocess

from aiterm.errors import ExecutionDispatchError

from .base import PaneAdapter

LOGGER = logging.getLogger(__name__)

PASTE_BUFFER_NAME = "aiterm-paste"


class TmuxAdapter(PaneAdapter):
    """Adapter driving panes through the ``tmux`` command-line client."""

    def __init__(self, executable: str = "tmux", *, timeout: float = 10.0) -> None:
        self.executable = executable
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "tmux"

    def current_pane_id(self) -> str | None:
        pane_id = os.getenv("TMUX_PANE", "").strip()
        return pane_id or None

    def pane_exists(self, pane_id: str) -> bool:
        try:
            output = self._run("list-panes", "-a", "-F", "#{pane_id}")
        except ExecutionDispatchError:
            return False
        return pane_id in {line.strip() for line in output.splitlines()}

    def list_panes(self, target: str) -> list[str]:
        output = self._run("list-panes", "-t", target, "-F", "#{pane_id}")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def create_exec_pane(self, target: str) -> str:
        pane_id = self._run(
            "split-window", "-d", "-v", "-t", target, "-P", "-F", "#{pane_id}"
        ).strip()
        if not pane_id:
            msg = f"tmux did not report a pane id when splitting {target}"
            raise ExecutionDispatchError(msg)
        LOGGER.debug("tmux_pane_created", extra={"target": target, "pane_id": pane_id})
        return pane_id

    def kill_pane(self, pane_id: str) -> None:
        self._run("kill-pane", "-t", pane_id)

    def capture(self, target: str, max_lines: int) -> str:
        output = self._run("capture-pane", "-p", "-J", "-t", target, "-S", f"-{max_lines}")
        return output.strip()

    def send_keys(self, target: str, keys: list[str]) -> None:
        for key in keys:
            self.log_dispatch(target, "send_keys", key)
            self._run("send-keys", "-t", target, key)

    def dispatch_command(self, target: str, command: str) -> None:
        self.log_dispatch(target, "exec_command", command)
        self._run("send-keys", "-t", target, "-l", command)
        self._run("send-keys", "-t", target, "Enter")

    def paste(self, target: str, content: str) -> None:
        self.log_dispatch(target, "paste_multiline", content)
        self._run("load-buffer", "-b", PASTE_BUFFER_NAME, "-", input_text=content)
        self._run("paste-buffer", "-d", "-b", PASTE_BUFFER_NAME, "-t", target)

    def clear(self, target: str) -> None:
        self._run("send-keys", "-t", target, "-l", "clear")
        self._run("send-keys", "-t", target, "Enter")
        self._run("clear-history", "-t", target)

    def _run(self, *args: str, input_text: str | None = None) -> str:
        command = [self.executable, *args]
        try:
            process = subprocess.run(
                command,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            LOGGER.error("tmux_not_found", extra={"executable": self.executable})
            msg = f"tmux executable not found: {self.executable}"
            raise ExecutionDispatchError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            LOGGER.error(
                "tmux_command_timeout",
                extra={"subcommand": args[0] if args else "", "timeout": self.timeout},
            )
            msg = f"tmux {args[0] if args else ''} timed out after {self.timeout:.1f}s"
            raise ExecutionDispatchError(msg) from exc

        if process.returncode != 0:
            stderr = (process.stderr or "").strip()
            LOGGER.error(
                "tmux_command_failed",
                extra={
                    "subcommand": args[0] if args else "",
                    "returncode": process.returncode,
                    "stderr": stderr,
                },
            )
            msg = f"tmux {args[0] if args else ''} failed ({process.returncode}): {stderr}"
            raise ExecutionDispatchError(msg)
        return process.stdout or ""
