"""Command-line interface for aiterm."""

from __future__ import annotations

import argparse
import logging
import select
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO, cast

from .agent.budget import ContextBudgetManager
from .agent.coordinator import ExecutionCoordinator
from .agent.gate import ActionGate, GateOutcome
from .agent.models import ActionKind, RiskAssessment
from .agent.parser import ResponseParser
from .agent.risk import RiskScorer
from .agent.session import Session
from .agent.timer import CountdownTimer
from .agent.watch import WatchLoop
from .config import AppConfig, SessionOverrides
from .errors import KnowledgeBaseUnavailable, SessionSetupError
from .knowledge import KnowledgeBaseStore
from .llm.client import LLMClient
from .pane import create_pane_adapter

LOGGER = logging.getLogger(__name__)

STATUS_SYMBOLS = {"running": "▶", "waiting": "?", "done": "✓"}
WATCH_SYMBOL = "∞"
RISK_MARKERS = {"safe": "[safe]", "unknown": "[?]", "dangerous": "[!]"}
CONFIRM_KEYS = {
    "exec_command": "exec_confirm",
    "send_keys": "send_keys_confirm",
    "paste_multiline": "paste_multiline_confirm",
}

HELP_TEXT = "\n".join(
    [
        "Commands:",
        "  /help                 Show this help",
        "  /info                 Context usage, knowledge bases and pane mode",
        "  /clear                Drop the conversation history",
        "  /reset                Clear history and the exec pane",
        "  /squash               Summarize older messages now",
        "  /prepare [shell]      Install the exit-code prompt marker (bash, zsh)",
        "  /watch <goal>         Observe the panes and comment (Ctrl+C to stop)",
        "  /config [get|set ...] Show or change session configuration",
        "  /kb [load|unload ...] List, load or unload knowledge bases",
        "  /exit                 Leave the session",
    ]
)


class CLIArgs(argparse.Namespace):
    goal: str | None
    target: str | None
    watch: str | None
    kb: list[str] | None
    debug: bool


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aiterm", description="Terminal AI assistant")
    parser.add_argument("goal", nargs="?", help="First message to send to the assistant")
    parser.add_argument(
        "--target",
        help="Existing tmux pane id to use as the exec pane instead of splitting a new one",
    )
    parser.add_argument("--watch", metavar="GOAL", help="Start directly in watch mode")
    parser.add_argument(
        "--kb",
        action="append",
        metavar="NAME",
        help="Knowledge base to load at startup (repeatable)",
    )
    parser.add_argument("--debug", action="store_true", help="Write debug logs and transcripts")
    return parser


def configure_logging(log_dir: str, *, debug: bool) -> None:
    if not debug:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
        return
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG,
        filename=str(path / "aiterm-debug.log"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_coordinator(config: AppConfig, *, debug: bool) -> ExecutionCoordinator:
    """Wire the session collaborators from configuration."""
    overrides = SessionOverrides(config)
    client = LLMClient(
        api_key=config.api_key,
        model=config.model,
        api_url=config.api_url,
        api_type=config.api_type,
        reasoning_effort=config.reasoning_effort,
        timeout=config.request_timeout,
        debug_dir=Path(config.log_dir) / "debug" if debug else None,
    )
    gate = ActionGate(
        scorer=RiskScorer.from_config(config.risk_rules),
        whitelist=lambda: overrides.get_list("whitelist_patterns"),
        blacklist=lambda: overrides.get_list("blacklist_patterns"),
        confirmation_enabled=lambda kind: overrides.get_bool(CONFIRM_KEYS[kind]),
        confirm_action=confirm_action,
    )
    return ExecutionCoordinator(
        session=Session(overrides=overrides),
        client=client,
        pane=create_pane_adapter("tmux"),
        gate=gate,
        budget=ContextBudgetManager(backend=client, overrides=overrides),
        parser=ResponseParser(),
        timer=CountdownTimer(),
        kb_store=KnowledgeBaseStore(config.kb_dir),
        display=print,
        warn=_warn,
        poll_key=_poll_key,
        on_tick=_render_tick,
        log_dir=config.log_dir,
    )


def main() -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args())
    config = AppConfig.from_env()
    debug = args.debug or config.debug
    configure_logging(config.log_dir, debug=debug)

    coordinator = build_coordinator(config, debug=debug)
    try:
        coordinator.setup_exec_pane(args.target)
    except SessionSetupError as exc:
        print(f"Cannot start session: {exc}")
        return 1

    try:
        coordinator.auto_load_knowledge_bases()
        for name in args.kb or []:
            coordinator.load_kb(name)

        if args.watch:
            _run_watch(coordinator, args.watch)
        elif args.goal:
            coordinator.process_message(args.goal)

        run_repl(coordinator)
    except KeyboardInterrupt:
        print()
    finally:
        coordinator.shutdown()
    return 0


def run_repl(coordinator: ExecutionCoordinator, read_line: Callable[[str], str] = input) -> None:
    while True:
        try:
            line = read_line(status_prompt(coordinator.session)).strip()
        except EOFError:
            print()
            return
        except KeyboardInterrupt:
            print()
            continue
        if not line:
            continue
        if line.startswith("/"):
            if not handle_command(coordinator, line):
                return
            continue
        try:
            coordinator.process_message(line)
        except KeyboardInterrupt:
            print("\nInterrupted.")


def status_prompt(session: Session) -> str:
    symbol = WATCH_SYMBOL if session.watch_mode else STATUS_SYMBOLS.get(session.status, "")
    return f"aiterm {symbol}» " if symbol else "aiterm» "


def handle_command(coordinator: ExecutionCoordinator, line: str) -> bool:
    """Run one slash command; return false when the session should end."""
    name, _, rest = line.partition(" ")
    rest = rest.strip()
    command = name.lower()

    if command in {"/exit", "/quit"}:
        return False
    if command == "/help":
        print(HELP_TEXT)
    elif command == "/info":
        print(render_info(coordinator))
    elif command == "/clear":
        coordinator.clear_history()
        print("Conversation cleared.")
    elif command == "/reset":
        coordinator.reset()
        print("Session reset.")
    elif command == "/squash":
        if not coordinator.squash_now():
            print("Nothing to squash.")
    elif command == "/prepare":
        if coordinator.prepare(rest or None):
            print("Exec pane prepared.")
    elif command == "/watch":
        if not rest:
            print("Usage: /watch <goal>")
        else:
            _run_watch(coordinator, rest)
    elif command == "/config":
        _handle_config(coordinator.session.overrides, rest)
    elif command == "/kb":
        _handle_kb(coordinator, rest)
    else:
        print(f"Unknown command: {name}. Type /help for the list.")
    return True


def render_info(coordinator: ExecutionCoordinator) -> str:
    session = coordinator.session
    used, limit = coordinator.context_usage()
    percent = (used / limit * 100) if limit else 0.0
    loaded = ", ".join(kb.name for kb in session.loaded_knowledge_bases) or "none"
    return "\n".join(
        [
            f"Exec pane: {session.exec_pane_id or 'none'}",
            f"Pane mode: {'prepared' if session.prepared else 'unprepared'}",
            f"Messages: {len(session.messages)}",
            f"Context: {used} / {limit} tokens ({percent:.1f}%)",
            f"Knowledge bases: {loaded}",
        ]
    )


def _handle_config(overrides: SessionOverrides, rest: str) -> None:
    parts = rest.split(maxsplit=2)
    if not parts:
        for key, value in overrides.items().items():
            marker = "*" if key in overrides.overridden else " "
            print(f"{marker} {key} = {value}")
        return
    action = parts[0].lower()
    if action == "get" and len(parts) == 2:
        try:
            print(f"{parts[1]} = {overrides.get(parts[1])}")
        except KeyError as exc:
            print(exc.args[0])
        return
    if action == "set" and len(parts) == 3:
        try:
            value = overrides.set(parts[1], parts[2])
        except KeyError as exc:
            print(exc.args[0])
            return
        except ValueError as exc:
            print(f"Invalid value for {parts[1]}: {exc}")
            return
        print(f"{parts[1]} = {value}")
        return
    print("Usage: /config [get <key> | set <key> <value>]")


def _handle_kb(coordinator: ExecutionCoordinator, rest: str) -> None:
    parts = rest.split()
    session = coordinator.session
    if not parts or parts[0].lower() == "list":
        try:
            available = coordinator.kb_store.list() if coordinator.kb_store else []
        except KnowledgeBaseUnavailable as exc:
            _warn(f"Knowledge base unavailable: {exc}")
            return
        if not available:
            print("No knowledge bases found.")
        for name in available:
            marker = "*" if name in session.knowledge_bases else " "
            print(f"{marker} {name}")
        return
    action = parts[0].lower()
    names = parts[1:]
    if action == "load" and names:
        for name in names:
            if coordinator.load_kb(name):
                print(f"Loaded knowledge base: {name}")
        return
    if action == "unload" and names:
        for name in names:
            if coordinator.unload_kb(name):
                print(f"Unloaded knowledge base: {name}")
            else:
                print(f"Knowledge base not loaded: {name}")
        return
    print("Usage: /kb [list | load <name>... | unload <name>...]")


def _run_watch(coordinator: ExecutionCoordinator, goal: str) -> None:
    watch = WatchLoop(coordinator, goal)
    print(f"Watching for: {goal} (Ctrl+C to stop)")
    try:
        watch.run()
    except KeyboardInterrupt:
        watch.stop()
        print("\nWatch mode stopped.")


def confirm_action(
    command: str, risk: RiskAssessment, kind: ActionKind
) -> tuple[GateOutcome, str | None]:
    label = kind.replace("_", " ")
    print(f"\n{RISK_MARKERS[risk.level]} {label}: {risk.rationale}")
    print(command)
    choice = input("Run it? [y/N/e(dit)]: ").strip().lower()
    if choice in {"y", "yes"}:
        return "approve", None
    if choice in {"e", "edit"}:
        edited = input("Edited: ").strip()
        return ("edit", edited) if edited else ("decline", None)
    return "decline", None


def _warn(message: str) -> None:
    print(f"warning: {message}")


def _render_tick(remaining: float, paused: bool) -> None:
    state = "paused (space to resume)" if paused else "space to pause"
    sys.stdout.write(f"\rWaiting {remaining:4.1f}s, {state} ")
    sys.stdout.flush()


def _poll_key() -> str | None:
    """Return a pending key press from a terminal stdin without blocking."""
    if not sys.stdin.isatty():
        return None
    with _cbreak(sys.stdin):
        ready, _, _ = select.select([sys.stdin], [], [], 0)
        if not ready:
            return None
        return sys.stdin.read(1)


@contextmanager
def _cbreak(stream: TextIO) -> Iterator[None]:
    import termios
    import tty

    fd = stream.fileno()
    previous = termios.tcgetattr(fd)
    try:
        tty.setcbreak(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)


if __name__ == "__main__":
    raise SystemExit(main())
