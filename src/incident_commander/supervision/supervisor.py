"""
Supervisor loop: execute, settle, verify, and self-correct at most once.
"""

import asyncio
from typing import Callable, List, Optional, Sequence

from ..audit import AuditChain, AuditEvent
from ..constants import DEFAULT_SETTLE_SECONDS
from ..dispatch import ActionDispatcher
from ..logging_context import get_logger
from ..metrics import track_action_total
from ..models import ActionCommand, ActionResult, Incident, IncidentState, RemediationPlan
from .verifiers import StaticVerifier, Verifier

logger = get_logger(__name__)

TransitionFn = Callable[[IncidentState, Optional[str]], None]

FALLBACK_PREFERENCE = (
    ActionCommand.ROLLBACK,
    ActionCommand.RESTART,
    ActionCommand.LOG_ONLY,
)

ACTOR = "supervisor"


class Supervisor:
    """
    Drives one approved plan to a terminal state.

    The loop performs at most two actions: the primary plan and, only when
    its verification fails, one fallback chosen from ``FALLBACK_PREFERENCE``
    among the actions the provider supports. Policy errors raised by the
    dispatcher propagate to the caller.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        verifier: Optional[Verifier] = None,
        audit: Optional[AuditChain] = None,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        fallback_preference: Sequence[ActionCommand] = FALLBACK_PREFERENCE,
    ):
        if settle_seconds < 0:
            raise ValueError(f"settle_seconds must not be negative, got {settle_seconds}")
        self.dispatcher = dispatcher
        self.verifier = verifier or StaticVerifier(healthy=True)
        self.audit = audit if audit is not None else AuditChain()
        self.settle_seconds = settle_seconds
        self.fallback_preference = tuple(fallback_preference)

    def select_fallback(self, plan: RemediationPlan) -> Optional[ActionCommand]:
        """First preferred action, other than the primary, that the provider offers."""
        for action in self.fallback_preference:
            if action != plan.action and self.dispatcher.supports(plan.provider, action):
                return action
        return None

    async def run(
        self,
        incident: Incident,
        plan: RemediationPlan,
        transition: TransitionFn,
        results: List[ActionResult],
    ) -> IncidentState:
        """
        Execute ``plan`` for ``incident``.

        Args:
            incident: Incident being remediated (read only)
            plan: Validated, approved plan
            transition: Called for every lifecycle state change
            results: Receives each ActionResult as soon as it exists

        Returns:
            Terminal state reached (RESOLVED or FAILED)
        """
        if not plan.validated:
            raise ValueError(f"Refusing to execute unvalidated plan for {incident.id}")

        transition(IncidentState.EXECUTING, f"{plan.action.value} on {plan.provider}/{plan.target}")
        primary = await self._execute(incident, plan.provider, plan.action, plan.target, "primary", results)
        if not primary.outcome.executed:
            transition(IncidentState.FAILED, f"Primary action failed: {primary.message}")
            return IncidentState.FAILED

        transition(IncidentState.VERIFYING, f"settling {self.settle_seconds}s")
        if await self._verify(incident, plan, primary, "primary"):
            transition(IncidentState.RESOLVED, f"{plan.action.value} verified healthy")
            return IncidentState.RESOLVED

        fallback = self.select_fallback(plan)
        transition(
            IncidentState.SELF_CORRECTING,
            f"verification failed; plan B {fallback.value if fallback else 'unavailable'}",
        )
        if fallback is None:
            transition(IncidentState.FAILED, f"No fallback available for {plan.provider}; escalate")
            return IncidentState.FAILED

        logger.warning(f"Plan B for {incident.id}: {fallback.value} on {plan.provider}/{plan.target}")
        secondary = await self._execute(incident, plan.provider, fallback, plan.target, "fallback", results)
        if not secondary.outcome.executed:
            transition(IncidentState.FAILED, f"Fallback {fallback.value} failed: {secondary.message}")
            return IncidentState.FAILED

        if await self._verify(incident, plan, secondary, "fallback"):
            transition(IncidentState.RESOLVED, f"fallback {fallback.value} verified healthy")
            return IncidentState.RESOLVED

        transition(IncidentState.FAILED, f"Fallback {fallback.value} verification failed; escalate")
        return IncidentState.FAILED

    async def _execute(
        self,
        incident: Incident,
        provider: str,
        action: ActionCommand,
        target: str,
        phase: str,
        results: List[ActionResult],
    ) -> ActionResult:
        result = await self.dispatcher.dispatch(provider, action, target)
        results.append(result)
        track_action_total(result.provider, result.action.value, result.outcome.value)
        detail = f"{result.outcome.value}: {result.provider} {result.action.value} {result.target}"
        if result.message:
            detail = f"{detail} ({result.message})"
        self.audit.append(AuditEvent(ACTOR, incident.id, f"dispatch:{phase}", detail))
        return result

    async def _verify(
        self,
        incident: Incident,
        plan: RemediationPlan,
        result: ActionResult,
        phase: str,
    ) -> bool:
        if self.settle_seconds:
            await asyncio.sleep(self.settle_seconds)
        healthy = await self.verifier.verify(incident, plan, result)
        self.audit.append(
            AuditEvent(ACTOR, incident.id, f"verify:{phase}", "healthy" if healthy else "unhealthy")
        )
        logger.info(f"Verification ({phase}) for {incident.id}: {'healthy' if healthy else 'unhealthy'}")
        return bool(healthy)
