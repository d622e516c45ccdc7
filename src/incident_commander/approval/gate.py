"""
Approval gate deciding whether a remediation plan may execute.

In AUTONOMOUS mode every plan is approved immediately. In COPILOT mode the
caller is suspended on a future until an operator approves or denies, or a
timer fires. Whichever settles the future first wins; every later attempt is
a no-op, so each request resolves exactly once.

Example:
    >>> gate = ApprovalGate(mode="copilot", timeout_seconds=300)
    >>> decision = await gate.request_approval("inc-1", plan)   # suspends
    >>> gate.approve("inc-1")                                   # from elsewhere
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional, Union

from ..constants import DEFAULT_APPROVAL_TIMEOUT_SECONDS
from ..exceptions import DuplicateApprovalError
from ..models import (
    ApprovalRequest,
    ApprovalStatus,
    Decision,
    DecisionReason,
    RemediationPlan,
)

logger = logging.getLogger(__name__)


class ApprovalMode(str, Enum):
    """Gate operating mode."""
    AUTONOMOUS = "autonomous"
    COPILOT = "copilot"


@dataclass
class _PendingApproval:
    request: ApprovalRequest
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    deadline: float
    timer: Optional[asyncio.TimerHandle] = None


class ApprovalGate:
    """
    Registry of pending approval requests, one per incident.

    The registry is guarded by a lock so ``approve``/``deny`` may be called
    from any thread (e.g. a web server worker) while incidents wait on the
    event loop.
    """

    def __init__(
        self,
        mode: Union[ApprovalMode, str] = ApprovalMode.AUTONOMOUS,
        timeout_seconds: float = DEFAULT_APPROVAL_TIMEOUT_SECONDS,
    ):
        """
        Initialize approval gate.

        Args:
            mode: ``autonomous`` or ``copilot``
            timeout_seconds: Hard upper bound on a copilot wait
        """
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.mode = ApprovalMode(mode.lower() if isinstance(mode, str) else mode)
        self.timeout_seconds = timeout_seconds
        self._pending: Dict[str, _PendingApproval] = {}
        self._lock = Lock()
        logger.info(f"Approval gate initialized in '{self.mode.value}' mode")

    async def request_approval(self, incident_id: str, plan: RemediationPlan) -> Decision:
        """
        Ask whether ``plan`` may execute for ``incident_id``.

        Returns:
            Decision with reason AUTO, HUMAN or TIMEOUT

        Raises:
            DuplicateApprovalError: If a request for the incident is already pending
        """
        if self.mode == ApprovalMode.AUTONOMOUS:
            logger.info(f"Auto-approved {plan.action.value} for {incident_id}")
            return Decision(approved=True, reason=DecisionReason.AUTO, status=ApprovalStatus.APPROVED)

        loop = asyncio.get_running_loop()
        with self._lock:
            if incident_id in self._pending:
                raise DuplicateApprovalError(f"Approval already pending for {incident_id}")
            pending = _PendingApproval(
                request=ApprovalRequest(incident_id=incident_id, plan=plan),
                future=loop.create_future(),
                loop=loop,
                deadline=time.monotonic() + self.timeout_seconds,
            )
            self._pending[incident_id] = pending

        pending.timer = loop.call_later(
            self.timeout_seconds, self._settle, pending, ApprovalStatus.TIMED_OUT
        )
        logger.info(
            f"Awaiting approval for {incident_id}: {plan.action.value} on "
            f"{plan.provider}/{plan.target} (timeout {self.timeout_seconds}s)"
        )

        try:
            status = await pending.future
        finally:
            pending.timer.cancel()
            with self._lock:
                if self._pending.get(incident_id) is pending:
                    del self._pending[incident_id]

        if status == ApprovalStatus.TIMED_OUT:
            logger.warning(f"Approval for {incident_id} timed out; not executing")
            return Decision(approved=False, reason=DecisionReason.TIMEOUT, status=status)
        return Decision(
            approved=status == ApprovalStatus.APPROVED,
            reason=DecisionReason.HUMAN,
            status=status,
        )

    def approve(self, incident_id: str) -> bool:
        """Approve the pending request. Returns False when there is nothing to approve."""
        return self._decide(incident_id, ApprovalStatus.APPROVED)

    def deny(self, incident_id: str) -> bool:
        """Deny the pending request. Returns False when there is nothing to deny."""
        return self._decide(incident_id, ApprovalStatus.DENIED)

    def cancel(self, incident_id: str) -> bool:
        """Release a waiter with TIMED_OUT semantics (incident aborted)."""
        with self._lock:
            pending = self._pending.get(incident_id)
        if pending is None:
            return False
        logger.info(f"Approval request for {incident_id} cancelled")
        self._schedule(pending, ApprovalStatus.TIMED_OUT)
        return True

    def close(self) -> int:
        """Release every outstanding waiter. Returns how many were released."""
        with self._lock:
            pending = list(self._pending.values())
        for item in pending:
            self._schedule(item, ApprovalStatus.TIMED_OUT)
        if pending:
            logger.info(f"Released {len(pending)} pending approval(s) on shutdown")
        return len(pending)

    def is_pending(self, incident_id: str) -> bool:
        with self._lock:
            return incident_id in self._pending

    def pending_requests(self) -> List[ApprovalRequest]:
        """Snapshots of the currently pending requests."""
        with self._lock:
            return [p.request.model_copy() for p in self._pending.values()]

    def _decide(self, incident_id: str, status: ApprovalStatus) -> bool:
        with self._lock:
            pending = self._pending.get(incident_id)
            if pending is None:
                logger.info(f"No pending approval for {incident_id}; ignoring {status.value}")
                return False
            if pending.future.done() or time.monotonic() >= pending.deadline:
                logger.warning(f"Late {status.value} for {incident_id} ignored")
                return False
        logger.info(f"Operator decision for {incident_id}: {status.value}")
        self._schedule(pending, status)
        return True

    def _schedule(self, pending: _PendingApproval, status: ApprovalStatus) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is pending.loop:
            self._settle(pending, status)
        elif not pending.loop.is_closed():
            pending.loop.call_soon_threadsafe(self._settle, pending, status)

    @staticmethod
    def _settle(pending: _PendingApproval, status: ApprovalStatus) -> None:
        if pending.future.done():
            return
        pending.request.status = status
        pending.future.set_result(status)
