"""
Shared fixtures for Incident Commander tests.
"""
import pytest

from incident_commander.approval import ApprovalGate
from incident_commander.audit import AuditChain
from incident_commander.dispatch import ActionDispatcher, InMemoryResourceBackend
from incident_commander.lifecycle import IncidentController
from incident_commander.metrics import metrics
from incident_commander.models import ActionCommand, RemediationPlan
from incident_commander.supervision import StaticVerifier


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts with an empty metrics collector."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def make_plan():
    """Factory for validated plans."""
    def _make(action=ActionCommand.RESTART, target="checkout-fn", provider="AWS", confidence=0.9):
        return RemediationPlan(
            action=action,
            target=target,
            provider=provider,
            confidence=confidence,
            validated=True,
        )
    return _make


@pytest.fixture
def backend():
    return InMemoryResourceBackend()


@pytest.fixture
def make_controller(backend):
    """Factory for controllers with zero settle delay and short approval timeouts."""
    def _make(mode="autonomous", approval_timeout=5.0, verifier=None, **kwargs):
        kwargs.setdefault("dispatcher", ActionDispatcher.with_defaults(backend=backend))
        return IncidentController(
            gate=ApprovalGate(mode=mode, timeout_seconds=approval_timeout),
            audit=AuditChain(),
            verifier=verifier or StaticVerifier(healthy=True),
            settle_seconds=0,
            **kwargs,
        )
    return _make
