"""Heuristic command risk scoring.

The verdict is advisory. Rules are evaluated in order and the first rule whose
pattern matches the command decides the level; commands no rule recognises are
``unknown``. The rule list is plain data so it can be replaced from
configuration.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import cast

from aiterm.agent.models import RISK_ORDER, RiskAssessment, RiskLevel

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RiskRule:
    """Regex predicate mapped to a risk level and a rationale."""

    pattern: re.Pattern[str]
    level: RiskLevel
    rationale: str

    def matches(self, command: str) -> bool:
        return self.pattern.search(command) is not None


def rule(pattern: str, level: RiskLevel, rationale: str) -> RiskRule:
    return RiskRule(re.compile(pattern, re.IGNORECASE), level, rationale)


DEFAULT_RISK_RULES: tuple[RiskRule, ...] = (
    rule(r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)\b", "dangerous", "Recursive force delete"),
    rule(r"\bmkfs(\.\w+)?\b", "dangerous", "Formats a filesystem"),
    rule(r"\bdd\b.*\bof=", "dangerous", "Raw write to a device or file"),
    rule(r">\s*/dev/(sd|nvme|hd|disk)", "dangerous", "Overwrites a block device"),
    rule(r"\b(shutdown|reboot|halt|poweroff)\b", "dangerous", "Stops or restarts the machine"),
    rule(r"\bchmod\s+(-R\s+)?0?777\b", "dangerous", "World-writable permissions"),
    rule(r"\bchown\s+-R\b", "dangerous", "Recursive ownership change"),
    rule(r"\bgit\s+push\s+.*(--force|-f)\b", "dangerous", "Force push rewrites remote history"),
    rule(r"\bgit\s+(reset\s+--hard|clean\s+-[a-z]*f)", "dangerous", "Discards local changes"),
    rule(r"\bdrop\s+(table|database)\b", "dangerous", "Drops database objects"),
    rule(r"\b(curl|wget)\b.*\|\s*(sudo\s+)?(ba|z)?sh\b", "dangerous", "Pipes remote script to a shell"),
    rule(r"\bfind\b.*\s-delete\b", "dangerous", "Find and delete"),
    rule(r"\bkill(all)?\s+-9\b", "dangerous", "Force kills processes"),
    rule(r"\bsudo\b", "unknown", "Privileged execution"),
    rule(r"\brm\b", "unknown", "Deletes files"),
    rule(r"\b(mv|cp|rsync|scp)\b", "unknown", "Moves or copies files"),
    rule(r"\b(chmod|chown)\b", "unknown", "Changes permissions or ownership"),
    rule(
        r"\b(apt(-get)?|yum|dnf|brew|pip3?|npm|cargo)\s+(install|remove|uninstall|upgrade)\b",
        "unknown",
        "Installs or removes packages",
    ),
    rule(r"(^|[^>])>(?!&)\s*\S", "unknown", "Redirects output into a file"),
    rule(r"\bgit\s+(commit|push|merge|rebase|checkout)\b", "unknown", "Changes repository state"),
    rule(
        r"^\s*(ls|ll|pwd|cd|echo|cat|less|more|head|tail|wc|grep|rg|find|which|whoami|date|"
        r"uname|hostname|df|du|free|ps|top|htop|env|printenv|history|stat|file|tree)\b",
        "safe",
        "Read-only inspection command",
    ),
    rule(r"^\s*git\s+(status|log|diff|show|branch|remote\s+-v)\b", "safe", "Read-only git query"),
)


class RiskScorer:
    """Deterministic first-match-wins scorer over an ordered rule list."""

    def __init__(self, rules: Sequence[RiskRule] = DEFAULT_RISK_RULES) -> None:
        self.rules = tuple(rules)

    @classmethod
    def from_config(cls, rule_specs: Iterable[Mapping[str, str]]) -> RiskScorer:
        """Build a scorer from ``{pattern, level, rationale}`` mappings.

        Invalid entries are skipped. An empty result falls back to the
        default rules.
        """
        rules: list[RiskRule] = []
        for spec in rule_specs:
            level = spec.get("level", "").strip().lower()
            if level not in RISK_ORDER:
                LOGGER.warning("risk_rule_invalid_level", extra={"level": level})
                continue
            try:
                compiled = re.compile(spec.get("pattern", ""), re.IGNORECASE)
            except re.error as exc:
                LOGGER.warning(
                    "risk_rule_invalid_pattern",
                    extra={"pattern": spec.get("pattern"), "error": str(exc)},
                )
                continue
            rationale = spec.get("rationale") or f"Matched rule {compiled.pattern!r}"
            rules.append(RiskRule(compiled, cast(RiskLevel, level), rationale))
        return cls(rules or DEFAULT_RISK_RULES)

    def score(self, command: str) -> RiskAssessment:
        stripped = command.strip()
        if not stripped:
            return RiskAssessment("safe", "Empty command")
        for candidate in self.rules:
            if candidate.matches(stripped):
                return RiskAssessment(candidate.level, candidate.rationale)
        return RiskAssessment("unknown", "No risk rule recognises this command")
