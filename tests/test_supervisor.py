"""
Tests for the supervisor loop (execute, verify, self-correct).
"""
import pytest

from incident_commander.audit import AuditChain
from incident_commander.dispatch import ActionDispatcher, SecurityPolicy
from incident_commander.exceptions import SecurityVetoError
from incident_commander.metrics import metrics
from incident_commander.models import (
    ActionCommand,
    ActionOutcome,
    Alarm,
    Incident,
    IncidentState,
    RemediationPlan,
)
from incident_commander.supervision import (
    ResultBasedVerifier,
    ScriptedVerifier,
    StaticVerifier,
    Supervisor,
    ThresholdVerifier,
    Verifier,
)


@pytest.fixture
def incident():
    alarm = Alarm(name="HighErrorAlarm", dimensions={"FunctionName": "checkout-fn"})
    return Incident(id="inc-1", alarm=alarm, alarm_name=alarm.name)


@pytest.fixture
def recorder():
    """Collects (state, detail) pairs passed to the transition callback."""
    class Recorder:
        def __init__(self):
            self.changes = []

        def __call__(self, state, detail=None):
            self.changes.append((state, detail))

        @property
        def states(self):
            return [state for state, _ in self.changes]

    return Recorder()


def make_supervisor(backend, verifier, audit=None, policy=None, **kwargs):
    return Supervisor(
        ActionDispatcher.with_defaults(backend=backend, policy=policy),
        verifier=verifier,
        audit=audit,
        settle_seconds=0,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_primary_verified(backend, make_plan, incident, recorder):
    backend.add_resource("checkout-fn")
    supervisor = make_supervisor(backend, StaticVerifier(True))
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.RESOLVED
    assert recorder.states == [IncidentState.EXECUTING, IncidentState.VERIFYING, IncidentState.RESOLVED]
    assert [r.action for r in results] == [ActionCommand.RESTART]
    assert backend.restarts == {"checkout-fn": 1}


@pytest.mark.asyncio
async def test_aws_falls_back_to_rollback(backend, make_plan, incident, recorder):
    backend.add_resource("checkout-fn", version=3)
    verifier = ScriptedVerifier([False, True])
    supervisor = make_supervisor(backend, verifier)
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.RESOLVED
    assert recorder.states == [
        IncidentState.EXECUTING,
        IncidentState.VERIFYING,
        IncidentState.SELF_CORRECTING,
        IncidentState.RESOLVED,
    ]
    assert [r.action for r in results] == [ActionCommand.RESTART, ActionCommand.ROLLBACK]
    assert results[1].before == 3 and results[1].after == 2
    assert verifier.calls == 2


@pytest.mark.asyncio
async def test_azure_has_no_rollback(backend, make_plan, incident, recorder):
    supervisor = make_supervisor(backend, ScriptedVerifier([False]))
    results = []

    await supervisor.run(
        incident, make_plan(action=ActionCommand.INCREASE_MEMORY, provider="AZURE"), recorder, results
    )

    assert [r.action for r in results] == [ActionCommand.INCREASE_MEMORY, ActionCommand.RESTART]


@pytest.mark.asyncio
async def test_fallback_skips_primary_action(backend, make_plan, incident, recorder):
    supervisor = make_supervisor(backend, ScriptedVerifier([False]))
    results = []

    await supervisor.run(incident, make_plan(provider="AZURE"), recorder, results)

    assert [r.action for r in results] == [ActionCommand.RESTART, ActionCommand.LOG_ONLY]


@pytest.mark.asyncio
async def test_fallback_verification_fails(backend, make_plan, incident, recorder):
    verifier = StaticVerifier(False)
    supervisor = make_supervisor(backend, verifier)
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.FAILED
    assert len(results) == 2
    assert recorder.states[-2:] == [IncidentState.SELF_CORRECTING, IncidentState.FAILED]
    assert "escalate" in recorder.changes[-1][1]


@pytest.mark.asyncio
async def test_primary_failure_skips_verification(backend, make_plan, incident, recorder):
    backend.add_resource("checkout-fn")
    backend.inject_fault("checkout-fn")
    verifier = ScriptedVerifier([])
    supervisor = make_supervisor(backend, verifier)
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.FAILED
    assert recorder.states == [IncidentState.EXECUTING, IncidentState.FAILED]
    assert results[0].outcome == ActionOutcome.FAILED
    assert verifier.calls == 0


@pytest.mark.asyncio
async def test_fallback_action_failure(backend, make_plan, incident, recorder):
    backend.add_resource("checkout-fn")

    class BreakAfterPrimary(Verifier):
        async def verify(self, incident, plan, result):
            backend.inject_fault(result.target)
            return False

    supervisor = make_supervisor(backend, BreakAfterPrimary())
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.FAILED
    assert [r.outcome for r in results] == [ActionOutcome.SUCCESS, ActionOutcome.FAILED]
    assert recorder.changes[-1][1].startswith("Fallback ROLLBACK failed")


@pytest.mark.asyncio
async def test_no_fallback_available(backend, make_plan, incident, recorder):
    supervisor = make_supervisor(
        backend, StaticVerifier(False), fallback_preference=(ActionCommand.RESTART,)
    )
    results = []

    final = await supervisor.run(incident, make_plan(), recorder, results)

    assert final == IncidentState.FAILED
    assert len(results) == 1
    assert "No fallback available" in recorder.changes[-1][1]


@pytest.mark.asyncio
async def test_rejects_unvalidated_plan(backend, incident, recorder):
    supervisor = make_supervisor(backend, StaticVerifier(True))
    plan = RemediationPlan(action="RESTART", target="fn", provider="AWS", confidence=0.9)

    with pytest.raises(ValueError):
        await supervisor.run(incident, plan, recorder, [])
    assert recorder.changes == []


@pytest.mark.asyncio
async def test_policy_error_propagates(backend, make_plan, incident, recorder):
    policy = SecurityPolicy.from_rules(["RESTART:checkout-*"])
    supervisor = make_supervisor(backend, StaticVerifier(True), policy=policy)

    with pytest.raises(SecurityVetoError):
        await supervisor.run(incident, make_plan(), recorder, [])


@pytest.mark.asyncio
async def test_audit_and_metrics(backend, make_plan, incident, recorder):
    audit = AuditChain()
    supervisor = make_supervisor(backend, ScriptedVerifier([False, True]), audit=audit)

    await supervisor.run(incident, make_plan(), recorder, [])

    actions = [entry.action for entry in audit.entries(resource="inc-1")]
    assert actions == ["dispatch:primary", "verify:primary", "dispatch:fallback", "verify:fallback"]
    assert [e.actor for e in audit.entries()] == ["supervisor"] * 4
    assert audit.entries()[1].result == "unhealthy"
    assert audit.verify().valid
    assert metrics.get_counter(
        "incident_commander_actions_total",
        {"provider": "AWS", "action": "RESTART", "outcome": "SIMULATED_SUCCESS"},
    ) == 1


def test_negative_settle_rejected(backend):
    with pytest.raises(ValueError):
        Supervisor(ActionDispatcher.with_defaults(backend=backend), settle_seconds=-1)


@pytest.mark.asyncio
async def test_result_based_verifier(make_plan, incident):
    verifier = ResultBasedVerifier()
    dispatcher = ActionDispatcher.with_defaults()

    restarted = await dispatcher.dispatch("AWS", ActionCommand.RESTART, "fn")
    assert await verifier.verify(incident, make_plan(), restarted)

    at_max = restarted.model_copy(update={"message": "at_max"})
    assert not await verifier.verify(incident, make_plan(), at_max)


@pytest.mark.asyncio
async def test_threshold_verifier(make_plan, incident):
    readings = {"fn": 3.0}

    async def read_metric(target):
        return readings[target]

    dispatcher = ActionDispatcher.with_defaults()
    result = await dispatcher.dispatch("AWS", ActionCommand.RESTART, "fn")

    assert await ThresholdVerifier(read_metric, threshold=5.0).verify(incident, make_plan(), result)
    assert not await ThresholdVerifier(read_metric, threshold=5.0, higher_is_worse=False).verify(
        incident, make_plan(), result
    )
