"""
Tests for the exception hierarchy.
"""
import pytest

from incident_commander import exceptions as exc
from incident_commander.circuit_breaker import CircuitBreakerError


@pytest.mark.parametrize("error,parents", [
    (exc.InvalidConfigError, (exc.ConfigurationError,)),
    (exc.PlanParseError, (exc.PlanningError,)),
    (exc.PlannerUnavailableError, (exc.PlanningError,)),
    (CircuitBreakerError, (exc.PlannerUnavailableError, exc.PlanningError)),
    (exc.SecurityVetoError, (exc.PolicyError,)),
    (exc.UnsupportedProviderError, (exc.PolicyError,)),
    (exc.UnsupportedActionError, (exc.PolicyError,)),
    (exc.InvalidPlanError, (exc.PolicyError,)),
    (exc.DuplicateApprovalError, (exc.ApprovalError,)),
    (exc.InvalidTransitionError, (exc.LifecycleError,)),
    (exc.IncidentNotFoundError, (exc.LifecycleError,)),
    (exc.ResourceNotFoundError, (exc.ProviderError,)),
    (exc.ResourceAtLimitError, (exc.ProviderError,)),
    (exc.ProviderFaultError, (exc.ProviderError,)),
    (exc.AuditChainLoadError, (exc.AuditError,)),
])
def test_hierarchy(error, parents):
    for parent in parents + (exc.CommanderError,):
        assert issubclass(error, parent)


def test_planning_and_policy_errors_are_distinct():
    assert not issubclass(exc.PlanParseError, exc.PolicyError)
    assert not issubclass(exc.SecurityVetoError, exc.PlanningError)


def test_message_preserved():
    with pytest.raises(exc.CommanderError, match="Unknown incident: inc-1"):
        raise exc.IncidentNotFoundError("Unknown incident: inc-1")
