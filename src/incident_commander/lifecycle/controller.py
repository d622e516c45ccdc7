"""
Incident lifecycle controller.

Owns every incident from detection to a terminal state. Each incident runs
in its own asyncio task through::

    DETECTED -> PLANNING -> AWAITING_APPROVAL -> EXECUTING -> VERIFYING
             -> (SELF_CORRECTING) -> RESOLVED | FAILED | REJECTED

Every transition is appended to the shared audit chain. The only state
shared between incidents is the audit chain and the approval gate's
registry, both internally locked.

Example:
    >>> controller = IncidentController.from_config(CommanderConfig.load())
    >>> report = await controller.handle_alarm({"AlarmName": "HighErrorAlarm"})
    >>> report.incident.state
    <IncidentState.RESOLVED: 'RESOLVED'>
"""

import asyncio
import functools
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from ..approval import ApprovalGate
from ..audit import (
    AuditChain,
    AuditEntry,
    AuditEvent,
    ChainVerification,
    FileAuditSink,
    LoggingAuditSink,
    RecentEventsView,
)
from ..circuit_breaker import CircuitBreaker, CircuitBreakerError
from ..config import CommanderConfig
from ..constants import (
    DEFAULT_PLANNER_FAILURE_THRESHOLD,
    DEFAULT_PLANNER_RECOVERY_SECONDS,
    DEFAULT_PLANNER_TIMEOUT_SECONDS,
    DEFAULT_PROVIDER,
    DEFAULT_RETAINED_INCIDENTS,
    DEFAULT_SETTLE_SECONDS,
    DEFAULT_TARGET,
)
from ..dispatch import ActionDispatcher, ResourceBackend, SecurityPolicy, validate_plan
from ..exceptions import (
    AuditChainLoadError,
    IncidentNotFoundError,
    InvalidPlanError,
    LifecycleError,
    PlanningError,
    PlanParseError,
    PolicyError,
    SecurityVetoError,
)
from ..logging_context import LoggingContext, get_logger
from ..metrics import (
    get_metrics_text,
    track_active_incidents,
    track_approval_decision,
    track_incident_duration,
    track_incident_total,
    track_planner_fallback,
)
from ..models import (
    ActionResult,
    Alarm,
    Decision,
    DecisionReason,
    Incident,
    IncidentReport,
    IncidentState,
    ProposedPlan,
    RemediationPlan,
    StateChange,
    utcnow,
)
from ..planning import HTTPPlanner, Planner, RuleBasedPlanner, derive_severity
from ..supervision import Supervisor, Verifier
from .states import check_transition

logger = get_logger(__name__)

ACTOR = "orchestrator"


@dataclass
class _IncidentRecord:
    incident: Incident
    plan: Optional[RemediationPlan] = None
    decision: Optional[Decision] = None
    results: List[ActionResult] = field(default_factory=list)
    history: List[StateChange] = field(default_factory=list)
    task: Optional[asyncio.Task] = None
    started: float = field(default_factory=time.monotonic)
    abort_requested: bool = False


class IncidentController:
    """
    Top-level state machine, one instance per process.

    ``approve``, ``deny`` and the query methods may be called from any
    thread. ``submit``, ``abort`` and ``shutdown`` must be called on the
    event loop that runs the incidents.
    """

    def __init__(
        self,
        dispatcher: Optional[ActionDispatcher] = None,
        gate: Optional[ApprovalGate] = None,
        audit: Optional[AuditChain] = None,
        planner: Optional[Planner] = None,
        verifier: Optional[Verifier] = None,
        policy: Optional[SecurityPolicy] = None,
        planner_timeout_seconds: float = DEFAULT_PLANNER_TIMEOUT_SECONDS,
        planner_breaker: Optional[CircuitBreaker] = None,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        default_provider: str = DEFAULT_PROVIDER,
        default_target: str = DEFAULT_TARGET,
        recent_events: Optional[RecentEventsView] = None,
        retained_incidents: int = DEFAULT_RETAINED_INCIDENTS,
    ):
        """
        Initialize controller.

        Args:
            dispatcher: Action dispatcher (default: AWS/AZURE/GCP over an in-memory backend)
            gate: Approval gate (default: autonomous)
            audit: Audit chain shared by all incidents
            planner: Planning collaborator; None means rule-based planning only
            verifier: Post-condition check for the supervisor loop
            policy: Security policy for plan validation (default: the dispatcher's)
            planner_timeout_seconds: Bound on one planner call
            planner_breaker: Circuit breaker around the planner
            settle_seconds: Delay before each verification
            default_provider: Provider for plans that name none
            default_target: Target for plans that name none
            recent_events: Bounded view of recent audit entries
            retained_incidents: Finished incidents kept for queries; older
                ones are dropped from memory (their audit entries stay)
        """
        if retained_incidents <= 0:
            raise ValueError(f"retained_incidents must be positive, got {retained_incidents}")
        if dispatcher is None:
            self.policy = policy or SecurityPolicy()
            self.dispatcher = ActionDispatcher.with_defaults(policy=self.policy)
        else:
            self.policy = policy or dispatcher.policy
            self.dispatcher = dispatcher
        self.gate = gate or ApprovalGate()
        self.audit = audit if audit is not None else AuditChain()
        self.recent = recent_events or RecentEventsView()
        self.audit.add_sink(self.recent)

        self.planner = planner
        self.fallback_planner = RuleBasedPlanner(default_provider, default_target)
        self.planner_timeout_seconds = planner_timeout_seconds
        self.breaker = planner_breaker or CircuitBreaker(
            failure_threshold=DEFAULT_PLANNER_FAILURE_THRESHOLD,
            timeout=DEFAULT_PLANNER_RECOVERY_SECONDS,
            name="planner",
        )
        self.supervisor = Supervisor(self.dispatcher, verifier, self.audit, settle_seconds)
        self.default_provider = default_provider
        self.default_target = default_target

        self._incidents: Dict[str, _IncidentRecord] = {}
        # Terminal incident ids, oldest first
        self._finished: Deque[str] = deque()
        self.retained_incidents = retained_incidents
        self._lock = Lock()
        self._sequence = itertools.count(1)
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: CommanderConfig,
        planner: Optional[Planner] = None,
        backend: Optional[ResourceBackend] = None,
        verifier: Optional[Verifier] = None,
    ) -> "IncidentController":
        """
        Wire a controller from configuration.

        An ``HTTPPlanner`` is created when ``planner_url`` is set and no
        planner is passed in.
        """
        config.validate()
        policy = SecurityPolicy.from_rules(config.denied_targets)

        audit = cls._open_audit_chain(config.audit_log_file)

        if planner is None and config.planner_url:
            planner = HTTPPlanner(config.planner_url, timeout=config.planner_timeout_seconds)

        return cls(
            dispatcher=ActionDispatcher.with_defaults(backend=backend, policy=policy),
            gate=ApprovalGate(config.approval_mode, config.approval_timeout_seconds),
            audit=audit,
            planner=planner,
            verifier=verifier,
            policy=policy,
            planner_timeout_seconds=config.planner_timeout_seconds,
            planner_breaker=CircuitBreaker(
                failure_threshold=config.planner_failure_threshold,
                timeout=config.planner_recovery_seconds,
                name="planner",
            ),
            settle_seconds=config.verification_settle_seconds,
            default_provider=config.default_provider,
            default_target=config.default_target,
            recent_events=RecentEventsView(config.recent_events_limit),
            retained_incidents=config.retained_incidents,
        )

    @staticmethod
    def _open_audit_chain(audit_log_file: Optional[str]) -> AuditChain:
        """
        Chain mirrored to the log stream and, if configured, a JSONL file.

        An existing, intact file is loaded first so the chain continues
        across restarts instead of restarting from the genesis hash.

        Raises:
            AuditChainLoadError: If the existing file cannot be read or is broken
        """
        if not audit_log_file:
            return AuditChain(sinks=[LoggingAuditSink()])

        path = Path(audit_log_file)
        if path.is_file() and path.stat().st_size > 0:
            chain = AuditChain.load_jsonl(audit_log_file)
            verification = chain.verify()
            if not verification.valid:
                raise AuditChainLoadError(
                    f"Refusing to extend {audit_log_file}: chain broken at index "
                    f"{verification.broken_at_index}"
                )
            logger.info(f"Continuing audit chain from {audit_log_file} ({len(chain)} entries)")
        else:
            chain = AuditChain()
        chain.add_sink(LoggingAuditSink())
        chain.add_sink(FileAuditSink(audit_log_file))
        return chain

    # Ingest

    def submit(self, payload: Any) -> str:
        """
        Register an alarm and start handling it in a new task.

        Returns:
            The new incident id

        Raises:
            LifecycleError: If the controller has been shut down
        """
        if self._closed:
            raise LifecycleError("Controller is shut down; not accepting alarms")
        loop = asyncio.get_running_loop()
        record = self._create(payload)
        incident_id = record.incident.id
        record.task = loop.create_task(self._run(record), name=f"incident-{incident_id}")
        record.task.add_done_callback(functools.partial(self._on_task_done, record))
        return incident_id

    async def handle_alarm(self, payload: Any) -> IncidentReport:
        """Handle one alarm to a terminal state and return its report."""
        return await self.wait(self.submit(payload))

    async def wait(self, incident_id: str) -> IncidentReport:
        """
        Wait until ``incident_id`` is terminal.

        Cancelling the caller does not cancel the incident.
        """
        record = self._get(incident_id)
        task = record.task
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self._report(record)

    def _create(self, payload: Any) -> _IncidentRecord:
        alarm = Alarm.from_payload(payload)
        severity = derive_severity(alarm)
        incident_id = f"inc-{utcnow().strftime('%Y%m%d%H%M%S')}-{next(self._sequence)}"
        incident = Incident(
            id=incident_id,
            payload=alarm.raw,
            alarm=alarm,
            alarm_name=alarm.name,
            severity=severity,
        )
        record = _IncidentRecord(
            incident=incident,
            history=[StateChange(state=IncidentState.DETECTED, at=incident.created_at, detail=alarm.name)],
        )
        with self._lock:
            self._incidents[incident_id] = record
            self.audit.append(
                AuditEvent(ACTOR, incident_id, "incident:detected", f"{alarm.name} severity={severity.value}")
            )
            active = self._active_count()
        track_active_incidents(active)
        logger.info(f"Incident {incident_id} detected: {alarm.name} ({severity.value})")
        return record

    # Lifecycle

    async def _run(self, record: _IncidentRecord) -> None:
        incident = record.incident
        with LoggingContext(incident_id=incident.id, alarm_name=incident.alarm_name):
            try:
                await self._drive(record)
            except asyncio.CancelledError:
                self._fail(record, "aborted by operator" if record.abort_requested else "cancelled")
                raise
            except SecurityVetoError as e:
                if incident.state == IncidentState.PLANNING:
                    self._fail(record, str(e), IncidentState.REJECTED)
                else:
                    self._fail(record, str(e))
            except PolicyError as e:
                logger.error(f"Policy error: {e}")
                self._fail(record, str(e))
            except Exception as e:
                logger.exception(f"Unexpected error handling {incident.id}")
                self._fail(record, f"Unexpected error: {e}")

    async def _drive(self, record: _IncidentRecord) -> None:
        incident = record.incident
        self._transition(record, IncidentState.PLANNING, f"planning for {incident.alarm_name}")

        plan = await self._plan(incident.alarm)
        record.plan = plan
        self.audit.append(
            AuditEvent(
                "planner",
                incident.id,
                "plan:validated",
                f"{plan.action.value} {plan.provider}/{plan.target} "
                f"confidence={plan.confidence:.2f} source={plan.source}",
            )
        )

        self._transition(
            record,
            IncidentState.AWAITING_APPROVAL,
            f"{self.gate.mode.value} approval for {plan.action.value}",
        )
        decision = await self.gate.request_approval(incident.id, plan)
        record.decision = decision
        track_approval_decision(decision.reason.value, decision.approved)

        if not decision.approved:
            if record.abort_requested:
                detail = "ABORTED by operator before approval"
            elif decision.reason == DecisionReason.TIMEOUT:
                detail = f"TIMED_OUT: no decision within {self.gate.timeout_seconds}s"
            else:
                detail = "DENIED by operator"
            self._transition(record, IncidentState.REJECTED, detail)
            return

        await self.supervisor.run(
            incident,
            plan,
            functools.partial(self._transition, record),
            record.results,
        )

    def _transition(self, record: _IncidentRecord, new: IncidentState, detail: Optional[str] = None) -> None:
        incident = record.incident
        with self._lock:
            current = incident.state
            check_transition(current, new)
            incident.state = new
            record.history.append(StateChange(state=new, detail=detail))
            if new.is_terminal:
                incident.reason = detail
                incident.resolved_at = utcnow()
            self.audit.append(
                AuditEvent(ACTOR, incident.id, f"transition:{current.value}->{new.value}", detail or "ok")
            )
            if new.is_terminal:
                self._retire(incident.id)
            active = self._active_count()

        logger.info(f"{current.value} -> {new.value}" + (f": {detail}" if detail else ""))
        if new.is_terminal:
            track_incident_total(new.value)
            track_incident_duration(time.monotonic() - record.started, new.value)
            track_active_incidents(active)

    def _retire(self, incident_id: str) -> None:
        # Caller holds the lock.
        self._finished.append(incident_id)
        while len(self._finished) > self.retained_incidents:
            evicted = self._finished.popleft()
            self._incidents.pop(evicted, None)
            logger.debug(f"Dropped finished incident {evicted} from memory")

    def _fail(self, record: _IncidentRecord, reason: str, state: IncidentState = IncidentState.FAILED) -> None:
        if record.incident.state.is_terminal:
            return
        self._transition(record, state, reason)

    def _on_task_done(self, record: _IncidentRecord, task: asyncio.Task) -> None:
        # A task cancelled before its first step never ran _run's handlers
        if task.cancelled() and not record.incident.state.is_terminal:
            self._fail(record, "aborted before start")

    # Planning

    async def _plan(self, alarm: Alarm) -> RemediationPlan:
        proposed = await self._propose(alarm)
        try:
            return self._validate(proposed)
        except (PlanParseError, InvalidPlanError) as e:
            if proposed.source == "fallback":
                raise
            logger.warning(f"Discarding {proposed.source} plan: {e}")
            track_planner_fallback("invalid_plan")
            return self._validate(
                self.fallback_planner.plan(alarm, cause=f"planner output rejected: {e}")
            )

    def _validate(self, proposed: ProposedPlan) -> RemediationPlan:
        return validate_plan(proposed, self.policy, self.default_provider, self.default_target)

    async def _propose(self, alarm: Alarm) -> ProposedPlan:
        if self.planner is None:
            track_planner_fallback("no_planner")
            return self.fallback_planner.plan(alarm, cause="no planning collaborator")

        try:
            return await self.breaker.call(self._bounded_propose, alarm)
        except CircuitBreakerError as e:
            cause, label = str(e), "circuit_open"
        except asyncio.TimeoutError:
            cause, label = f"planner timed out after {self.planner_timeout_seconds}s", "timeout"
        except PlanningError as e:
            cause, label = str(e), "planner_error"
        except Exception as e:
            logger.exception("Planning collaborator raised unexpectedly")
            cause, label = f"planner crashed: {e}", "planner_error"

        logger.warning(f"Falling back to rule-based plan: {cause}")
        track_planner_fallback(label)
        return self.fallback_planner.plan(alarm, cause=cause)

    async def _bounded_propose(self, alarm: Alarm) -> ProposedPlan:
        return await asyncio.wait_for(self.planner.propose(alarm), timeout=self.planner_timeout_seconds)

    # Operator interface

    def approve(self, incident_id: str) -> bool:
        """Approve the pending plan for ``incident_id``. No-op without one."""
        return self.gate.approve(incident_id)

    def deny(self, incident_id: str) -> bool:
        """Deny the pending plan for ``incident_id``. No-op without one."""
        return self.gate.deny(incident_id)

    def abort(self, incident_id: str) -> bool:
        """
        Stop an incident.

        A pending approval is released (the incident is REJECTED); otherwise
        the running task is cancelled (the incident is FAILED).

        Returns:
            True if something was aborted
        """
        record = self._get(incident_id)
        if record.incident.state.is_terminal:
            return False
        record.abort_requested = True
        if self.gate.cancel(incident_id):
            logger.warning(f"Aborted {incident_id} while awaiting approval")
            return True
        if record.task is not None and not record.task.done():
            record.task.cancel()
            logger.warning(f"Aborted {incident_id} in {record.incident.state.value}")
            return True
        return False

    async def shutdown(self) -> None:
        """Stop accepting alarms and cancel running incidents, then flush the audit sinks."""
        self._closed = True
        with self._lock:
            records = list(self._incidents.values())
        for record in records:
            if self.gate.is_pending(record.incident.id):
                record.abort_requested = True
        released = self.gate.close()
        # Let released waiters reach REJECTED before cancelling the rest
        await asyncio.sleep(0)

        tasks = [r.task for r in records if r.task is not None and not r.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.audit.close()
        logger.info(f"Shutdown complete: {released} approvals released, {len(tasks)} incidents cancelled")

    # Query surface

    def _get(self, incident_id: str) -> _IncidentRecord:
        with self._lock:
            record = self._incidents.get(incident_id)
        if record is None:
            raise IncidentNotFoundError(f"Unknown incident: {incident_id}")
        return record

    def _active_count(self) -> int:
        return sum(1 for r in self._incidents.values() if not r.incident.state.is_terminal)

    def snapshot(self, incident_id: str) -> IncidentReport:
        """
        Read-only copy of an incident's current report.

        Raises:
            IncidentNotFoundError: If the id is unknown or was dropped by retention
        """
        return self._report(self._get(incident_id))

    def _report(self, record: _IncidentRecord) -> IncidentReport:
        hashes = [entry.hash for entry in self.audit.entries(resource=record.incident.id)]
        with self._lock:
            report = IncidentReport(
                incident=record.incident,
                plan=record.plan,
                decision=record.decision,
                results=list(record.results),
                history=list(record.history),
                audit_hashes=hashes,
            )
            return report.model_copy(deep=True)

    def list_incidents(self, state: Optional[IncidentState] = None) -> List[Incident]:
        with self._lock:
            incidents = [r.incident for r in self._incidents.values()]
            if state is not None:
                incidents = [i for i in incidents if i.state == state]
            return [i.model_copy(deep=True) for i in incidents]

    def audit_log(self, incident_id: Optional[str] = None) -> List[AuditEntry]:
        return self.audit.entries(resource=incident_id)

    def verify_audit(self) -> ChainVerification:
        return self.audit.verify()

    def recent_events(self, limit: Optional[int] = None) -> List[AuditEntry]:
        return self.recent.recent(limit)

    def status(self) -> Dict[str, Any]:
        """Summary for status reporting."""
        with self._lock:
            by_state: Dict[str, int] = {}
            for record in self._incidents.values():
                key = record.incident.state.value
                by_state[key] = by_state.get(key, 0) + 1
            total = len(self._incidents)
        return {
            "incidents": total,
            "by_state": by_state,
            "approval_mode": self.gate.mode.value,
            "pending_approvals": [r.incident_id for r in self.gate.pending_requests()],
            "audit": {"entries": len(self.audit), **self.verify_audit().to_dict()},
            "planner": self.breaker.get_stats() if self.planner is not None else None,
            "metrics": get_metrics_text(),
        }
