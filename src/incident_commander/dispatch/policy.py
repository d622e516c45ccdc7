"""
Security policy for remediation actions.

Two checks run before anything touches infrastructure:

1. Destructive action names (``DELETE_DB``, ``TerminateInstances``, ...) are
   vetoed outright, even when a planner proposes them.
2. A static deny-list of ``ACTION:glob`` rules vetoes specific
   action/target pairs, e.g. ``SCALE_UP:prod-*-reserved``.

A veto is a hard failure (``SecurityVetoError``), never a silent downgrade.
"""

import fnmatch
import logging
from dataclasses import dataclass
from typing import Iterable, Tuple

from ..exceptions import InvalidPlanError, PlanParseError, SecurityVetoError
from ..models import ActionCommand, ProposedPlan, RemediationPlan

logger = logging.getLogger(__name__)

BLOCKED_ACTION_NAMES: Tuple[str, ...] = (
    "DELETE_DB",
    "DeleteDBInstance",
    "TerminateInstances",
    "DeleteBucket",
)


@dataclass(frozen=True)
class DenyRule:
    """Vetoes ``action`` (or any action for ``*``) on targets matching ``target_pattern``."""
    action: str
    target_pattern: str

    @classmethod
    def parse(cls, rule: str) -> "DenyRule":
        """
        Parse an ``ACTION:glob`` rule.

        Example:
            >>> DenyRule.parse("ROLLBACK:payments-*")
            DenyRule(action='ROLLBACK', target_pattern='payments-*')
        """
        action, sep, pattern = rule.partition(":")
        action = action.strip().upper()
        pattern = pattern.strip()
        if not sep or not action or not pattern:
            raise ValueError(f"Deny rule must look like ACTION:pattern, got '{rule}'")
        if action != "*" and ActionCommand.parse(action) is None:
            raise ValueError(f"Deny rule references unknown action '{action}'")
        return cls(action=action, target_pattern=pattern)

    def matches(self, action: ActionCommand, target: str) -> bool:
        if self.action != "*" and self.action != action.value:
            return False
        return fnmatch.fnmatchcase(target, self.target_pattern)


class SecurityPolicy:
    """Static veto rules shared by plan validation and dispatch."""

    def __init__(
        self,
        deny_rules: Iterable[DenyRule] = (),
        blocked_action_names: Iterable[str] = BLOCKED_ACTION_NAMES,
    ):
        self.deny_rules = tuple(deny_rules)
        self.blocked_action_names = tuple(blocked_action_names)

    @classmethod
    def from_rules(cls, rules: Iterable[str]) -> "SecurityPolicy":
        """Build a policy from ``ACTION:glob`` strings."""
        return cls(deny_rules=[DenyRule.parse(rule) for rule in rules])

    def check_action_name(self, action_name: str) -> None:
        """Veto destructive action names regardless of vocabulary."""
        lowered = action_name.lower()
        for blocked in self.blocked_action_names:
            if blocked.lower() in lowered:
                logger.warning(f"Security veto: restricted action {action_name}")
                raise SecurityVetoError(f"Security veto: restricted action {action_name}")

    def check(self, action: ActionCommand, target: str) -> None:
        """Veto action/target pairs on the deny-list."""
        for rule in self.deny_rules:
            if rule.matches(action, target):
                logger.warning(
                    f"Security veto: {action.value} on {target} matches {rule.action}:{rule.target_pattern}"
                )
                raise SecurityVetoError(
                    f"Security veto: {action.value} on {target} is denied by policy"
                )


def validate_plan(
    proposed: ProposedPlan,
    policy: SecurityPolicy,
    default_provider: str,
    default_target: str,
) -> RemediationPlan:
    """
    Turn a proposed plan into a validated, immutable one.

    Raises:
        SecurityVetoError: Action name or action/target pair is vetoed
        PlanParseError: Action is not in the vocabulary
        InvalidPlanError: Target or provider is missing
    """
    policy.check_action_name(proposed.action)

    command = ActionCommand.parse(proposed.action)
    if command is None:
        raise PlanParseError(f"Unknown remediation command: {proposed.action}")

    target = (proposed.target or default_target or "").strip()
    if not target:
        raise InvalidPlanError("Plan has no target resource")
    provider = (proposed.provider or default_provider or "").strip()
    if not provider:
        raise InvalidPlanError("Plan has no target provider")

    policy.check(command, target)

    return RemediationPlan(
        action=command,
        target=target,
        provider=provider,
        confidence=proposed.confidence,
        rationale=proposed.rationale,
        policy_citation=proposed.policy_citation,
        cost_impact=proposed.cost_impact,
        source=proposed.source,
        validated=True,
    )
