"""Whitelist/blacklist gating and interactive confirmation of proposed actions."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Literal

from aiterm.agent.models import ActionKind, RiskAssessment, max_risk
from aiterm.agent.risk import RiskScorer

LOGGER = logging.getLogger(__name__)

GateOutcome = Literal["approve", "edit", "decline"]
GateReason = Literal["whitelist", "no_confirmation", "confirmed", "edited", "declined"]

# Receives (command, risk, kind) and returns the user's choice plus edited text.
ConfirmAction = Callable[[str, RiskAssessment, ActionKind], tuple[GateOutcome, str | None]]

BLACKLIST_RATIONALE = "Matches a blacklisted pattern"


@dataclass(slots=True, frozen=True)
class GateDecision:
    """Result of gating one candidate command."""

    approved: bool
    command: str
    risk: RiskAssessment
    confirmation_required: bool
    reason: GateReason
    blacklisted: bool = False
    whitelisted: bool = False

    @property
    def declined(self) -> bool:
        return not self.approved


def matches_any(command: str, patterns: Sequence[str]) -> bool:
    """Return true when any pattern matches the command.

    Patterns are regular expressions searched anywhere in the command. A
    pattern that is not a valid regex is matched as a plain substring.
    """
    for pattern in patterns:
        if not pattern:
            continue
        try:
            if re.search(pattern, command):
                return True
        except re.error:
            if pattern in command:
                return True
    return False


class ActionGate:
    """Decides whether a proposed pane action may run."""

    def __init__(
        self,
        *,
        scorer: RiskScorer,
        whitelist: Callable[[], Sequence[str]],
        blacklist: Callable[[], Sequence[str]],
        confirmation_enabled: Callable[[ActionKind], bool],
        confirm_action: ConfirmAction | None = None,
    ) -> None:
        self.scorer = scorer
        self.whitelist = whitelist
        self.blacklist = blacklist
        self.confirmation_enabled = confirmation_enabled
        self.confirm_action = confirm_action

    def assess(self, command: str) -> tuple[RiskAssessment, bool, bool]:
        """Score a command and apply the pattern lists without prompting.

        Returns the risk and the blacklist/whitelist flags. A blacklist match
        wins over any whitelist match.
        """
        risk = self.scorer.score(command)
        if matches_any(command, self.blacklist()):
            forced = RiskAssessment(
                max_risk(risk.level, "dangerous"),
                f"{BLACKLIST_RATIONALE}; {risk.rationale}",
            )
            return forced, True, False
        return risk, False, matches_any(command, self.whitelist())

    def evaluate(self, command: str, kind: ActionKind = "exec_command") -> GateDecision:
        risk, blacklisted, whitelisted = self.assess(command)
        if blacklisted:
            required = True
        elif whitelisted:
            required = False
        else:
            required = self.confirmation_enabled(kind)

        if not required:
            reason: GateReason = "whitelist" if whitelisted else "no_confirmation"
            LOGGER.debug(
                "gate_auto_approved",
                extra={"kind": kind, "risk": risk.level, "reason": reason},
            )
            return GateDecision(
                approved=True,
                command=command,
                risk=risk,
                confirmation_required=False,
                reason=reason,
                whitelisted=whitelisted,
            )

        if self.confirm_action is None:
            LOGGER.info(
                "gate_declined_without_prompt",
                extra={"kind": kind, "risk": risk.level, "blacklisted": blacklisted},
            )
            return GateDecision(
                approved=False,
                command=command,
                risk=risk,
                confirmation_required=True,
                reason="declined",
                blacklisted=blacklisted,
            )

        outcome, edited = self.confirm_action(command, risk, kind)
        LOGGER.info(
            "gate_user_decision",
            extra={"kind": kind, "risk": risk.level, "outcome": outcome},
        )
        if outcome == "approve":
            return GateDecision(
                approved=True,
                command=command,
                risk=risk,
                confirmation_required=True,
                reason="confirmed",
                blacklisted=blacklisted,
            )
        if outcome == "edit" and edited is not None and edited.strip():
            return GateDecision(
                approved=True,
                command=edited.strip() if kind != "paste_multiline" else edited,
                risk=risk,
                confirmation_required=True,
                reason="edited",
                blacklisted=blacklisted,
            )
        return GateDecision(
            approved=False,
            command=command,
            risk=risk,
            confirmation_required=True,
            reason="declined",
            blacklisted=blacklisted,
        )
