"""
Rule-based planning.

Deterministic plans derived from the alarm name, used whenever the planning
collaborator is missing, failing, slow, or returns something unusable.
"""

import logging
from typing import Optional

from ..constants import DEFAULT_PROVIDER, DEFAULT_TARGET, FALLBACK_PLAN_CONFIDENCE
from ..models import ActionCommand, Alarm, ProposedPlan, Severity

logger = logging.getLogger(__name__)

# Checked in order against the lowercased alarm name
ACTION_RULES = (
    (("latency", "timeout"), ActionCommand.INCREASE_TIMEOUT),
    (("error", "failure", "fail"), ActionCommand.RESTART),
    (("memory",), ActionCommand.INCREASE_MEMORY),
)

ROOT_CAUSES = (
    ("Error", "Application error spike detected"),
    ("Memory", "Memory usage exceeded threshold"),
    ("CPU", "CPU utilization high"),
    ("Latency", "Response latency increased"),
    ("Timeout", "Request timeout detected"),
)
DEFAULT_ROOT_CAUSE = "System anomaly detected"

PROVIDER_HINTS = (
    ("azure", "AZURE"),
    ("gcp", "GCP"),
)


def derive_severity(alarm: Alarm) -> Severity:
    """
    Severity from an explicit alarm ``severity`` key, else from the alarm name.

    Example:
        >>> derive_severity(Alarm(name="CriticalDiskAlarm"))
        <Severity.CRITICAL: 'CRITICAL'>
    """
    explicit = alarm.attributes.get("severity")
    if isinstance(explicit, str):
        try:
            return Severity(explicit.strip().upper())
        except ValueError:
            logger.warning(f"Ignoring unknown severity '{explicit}' on {alarm.name}")

    if "Critical" in alarm.name:
        return Severity.CRITICAL
    if "Error" in alarm.name:
        return Severity.HIGH
    if "Warning" in alarm.name:
        return Severity.MEDIUM
    return Severity.LOW


def root_cause_hint(alarm: Alarm) -> str:
    """Human-readable guess at the cause, for plan rationale."""
    for marker, cause in ROOT_CAUSES:
        if marker in alarm.name:
            return cause
    return DEFAULT_ROOT_CAUSE


def select_action(alarm_name: str) -> ActionCommand:
    """Map an alarm name to a remediation command by substring match."""
    lowered = alarm_name.lower()
    for markers, command in ACTION_RULES:
        if any(marker in lowered for marker in markers):
            return command
    return ActionCommand.LOG_ONLY


class RuleBasedPlanner:
    """
    Deterministic fallback planner.

    Example:
        >>> planner = RuleBasedPlanner()
        >>> planner.plan(Alarm(name="HighErrorAlarm")).action
        'RESTART'
    """

    def __init__(self, default_provider: str = DEFAULT_PROVIDER, default_target: str = DEFAULT_TARGET):
        self.default_provider = default_provider
        self.default_target = default_target

    def select_provider(self, alarm: Alarm) -> str:
        explicit = alarm.attributes.get("provider")
        if isinstance(explicit, str) and explicit.strip():
            return explicit.strip().upper()
        lowered = alarm.name.lower()
        for marker, provider in PROVIDER_HINTS:
            if marker in lowered:
                return provider
        return self.default_provider

    def plan(self, alarm: Alarm, cause: Optional[str] = None) -> ProposedPlan:
        """
        Build a plan for ``alarm``.

        Args:
            alarm: Normalized alarm
            cause: Why the fallback was used, appended to the rationale
        """
        command = select_action(alarm.name)
        rationale = f"{root_cause_hint(alarm)}; rule-based plan for {alarm.name}"
        if cause:
            rationale = f"{rationale} ({cause})"
        return ProposedPlan(
            action=command.value,
            target=alarm.target_hint or self.default_target,
            provider=self.select_provider(alarm),
            confidence=FALLBACK_PLAN_CONFIDENCE,
            rationale=rationale,
            source="fallback",
        )

    async def propose(self, alarm: Alarm) -> ProposedPlan:
        return self.plan(alarm)
