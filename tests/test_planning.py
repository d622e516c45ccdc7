"""
Tests for rule-based planning and planning collaborators.
"""
import json

import pytest
import requests

from incident_commander.exceptions import PlannerUnavailableError, PlanParseError
from incident_commander.models import ActionCommand, Alarm, Severity
from incident_commander.planning import (
    HTTPPlanner,
    LLMPlanner,
    LLMProvider,
    LLMResponse,
    RuleBasedPlanner,
    derive_severity,
    parse_plan,
    parse_plan_text,
    root_cause_hint,
    select_action,
)


class TestRules:

    @pytest.mark.parametrize("name,expected", [
        ("HighErrorAlarm", ActionCommand.RESTART),
        ("LambdaFailureRate", ActionCommand.RESTART),
        ("HealthCheckFailed", ActionCommand.RESTART),
        ("ApiLatencyP99", ActionCommand.INCREASE_TIMEOUT),
        ("UpstreamTimeoutErrors", ActionCommand.INCREASE_TIMEOUT),
        ("MemoryPressure", ActionCommand.INCREASE_MEMORY),
        ("DiskAlmostFull", ActionCommand.LOG_ONLY),
        ("UnknownAlarm", ActionCommand.LOG_ONLY),
    ])
    def test_select_action(self, name, expected):
        assert select_action(name) == expected

    @pytest.mark.parametrize("name,expected", [
        ("CriticalDiskAlarm", Severity.CRITICAL),
        ("HighErrorAlarm", Severity.HIGH),
        ("CpuWarning", Severity.MEDIUM),
        ("Heartbeat", Severity.LOW),
    ])
    def test_severity_from_name(self, name, expected):
        assert derive_severity(Alarm(name=name)) == expected

    def test_explicit_severity_wins(self):
        alarm = Alarm(name="CriticalDiskAlarm", attributes={"severity": "low"})
        assert derive_severity(alarm) == Severity.LOW

    def test_unknown_explicit_severity_is_ignored(self):
        alarm = Alarm(name="HighErrorAlarm", attributes={"severity": "apocalyptic"})
        assert derive_severity(alarm) == Severity.HIGH

    def test_root_cause_hint(self):
        assert root_cause_hint(Alarm(name="HighErrorAlarm")) == "Application error spike detected"
        assert root_cause_hint(Alarm(name="MemoryHigh")) == "Memory usage exceeded threshold"
        assert root_cause_hint(Alarm(name="Whatever")) == "System anomaly detected"


class TestRuleBasedPlanner:

    def test_fallback_plan_uses_first_dimension(self):
        alarm = Alarm(name="HighErrorAlarm", dimensions={"FunctionName": "checkout-fn"})
        plan = RuleBasedPlanner().plan(alarm)

        assert plan.action == "RESTART"
        assert plan.target == "checkout-fn"
        assert plan.provider == "AWS"
        assert plan.source == "fallback"
        assert plan.confidence == pytest.approx(0.6)
        assert "Application error spike detected" in plan.rationale

    def test_defaults_when_alarm_names_nothing(self):
        plan = RuleBasedPlanner(default_provider="GCP", default_target="svc").plan(Alarm(name="Heartbeat"))
        assert (plan.action, plan.target, plan.provider) == ("LOG_ONLY", "svc", "GCP")

    def test_provider_from_payload_or_name(self):
        planner = RuleBasedPlanner()
        assert planner.plan(Alarm(name="x", attributes={"provider": "azure"})).provider == "AZURE"
        assert planner.plan(Alarm(name="AzureFunctionErrors")).provider == "AZURE"
        assert planner.plan(Alarm(name="GcpRunLatency")).provider == "GCP"

    def test_sns_wrapped_alarm_plans_like_direct_alarm(self):
        inner = {"AlarmName": "HighErrorAlarm", "provider": "GCP", "severity": "CRITICAL"}
        direct = Alarm.from_payload(inner)
        wrapped = Alarm.from_payload({"Type": "Notification", "Message": json.dumps(inner)})
        planner = RuleBasedPlanner()

        assert derive_severity(direct) == derive_severity(wrapped) == Severity.CRITICAL
        assert planner.plan(direct).provider == planner.plan(wrapped).provider == "GCP"

    def test_cause_is_recorded(self):
        plan = RuleBasedPlanner().plan(Alarm(name="HighErrorAlarm"), cause="planner timed out")
        assert "planner timed out" in plan.rationale

    @pytest.mark.asyncio
    async def test_propose(self):
        plan = await RuleBasedPlanner().propose(Alarm(name="MemoryHigh"))
        assert plan.action == "INCREASE_MEMORY"


class TestParsePlan:

    def test_aliases_and_nested_plan(self):
        plan = parse_plan(
            {"plan": {"command": "scale_up", "resource": "api", "cloud": "GCP",
                      "confidence": 0.7, "reasoning": "traffic spike", "costImpact": "$4/h"}},
            source="http",
        )
        assert plan.action == "scale_up"
        assert plan.target == "api"
        assert plan.provider == "GCP"
        assert plan.cost_impact == "$4/h"
        assert plan.source == "http"

    @pytest.mark.parametrize("data", [[], "RESTART", {"target": "x"}, {"action": 3}, {"action": "  "}])
    def test_malformed(self, data):
        with pytest.raises(PlanParseError):
            parse_plan(data, source="http")

    def test_confidence_out_of_range(self):
        with pytest.raises(PlanParseError):
            parse_plan({"action": "RESTART", "confidence": 7}, source="http")

    def test_parse_plan_text_strips_fences(self):
        text = 'Sure:\n```json\n{"action": "ROLLBACK", "target": "api", "confidence": 0.9}\n```'
        plan = parse_plan_text(text, source="llm")
        assert plan.action == "ROLLBACK"

    @pytest.mark.parametrize("text", ["no json here", "{broken", ""])
    def test_parse_plan_text_errors(self, text):
        with pytest.raises(PlanParseError):
            parse_plan_text(text, source="llm")


class _FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.body, str):
            return json.loads(self.body)
        return self.body


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


class TestHTTPPlanner:

    @pytest.mark.asyncio
    async def test_posts_alarm_and_parses_plan(self):
        session = _FakeSession(_FakeResponse({"action": "RESTART", "target": "fn", "confidence": 0.95}))
        planner = HTTPPlanner("http://reasoner/plan", timeout=3, session=session)

        plan = await planner.propose(Alarm(name="HighErrorAlarm", raw={"AlarmName": "HighErrorAlarm"}))

        assert plan.action == "RESTART"
        assert plan.source == "http"
        call = session.calls[0]
        assert call["url"] == "http://reasoner/plan"
        assert call["timeout"] == 3
        assert call["json"]["alarm"]["name"] == "HighErrorAlarm"
        assert call["json"]["raw"] == {"AlarmName": "HighErrorAlarm"}

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        planner = HTTPPlanner("http://reasoner/plan", session=_FakeSession(error=requests.ConnectionError("refused")))
        with pytest.raises(PlannerUnavailableError, match="refused"):
            await planner.propose(Alarm(name="x"))

    @pytest.mark.asyncio
    async def test_http_error_is_unavailable(self):
        planner = HTTPPlanner("http://reasoner/plan", session=_FakeSession(_FakeResponse({}, status=503)))
        with pytest.raises(PlannerUnavailableError):
            await planner.propose(Alarm(name="x"))

    @pytest.mark.asyncio
    async def test_non_json_body_is_parse_error(self):
        planner = HTTPPlanner("http://reasoner/plan", session=_FakeSession(_FakeResponse("<html>")))
        with pytest.raises(PlanParseError):
            await planner.propose(Alarm(name="x"))

    def test_requires_url(self):
        with pytest.raises(ValueError):
            HTTPPlanner("")


class _ScriptedLLM(LLMProvider):
    def __init__(self, content=None, error=None):
        super().__init__(model="scripted")
        self.content = content
        self.error = error
        self.messages = None

    def complete(self, messages, temperature=0.0, max_tokens=None):
        self.messages = messages
        if self.error:
            raise self.error
        return LLMResponse(content=self.content, model=self.model)


class TestLLMPlanner:

    @pytest.mark.asyncio
    async def test_parses_json_answer(self):
        llm = _ScriptedLLM('{"action": "INCREASE_MEMORY", "target": "fn", "provider": "AWS", "confidence": 0.8}')
        plan = await LLMPlanner(llm).propose(Alarm(name="MemoryHigh"))

        assert plan.action == "INCREASE_MEMORY"
        assert plan.source == "llm"
        assert llm.messages[0].role == "system"
        assert "MemoryHigh" in llm.messages[1].content

    @pytest.mark.asyncio
    async def test_provider_error_is_unavailable(self):
        planner = LLMPlanner(_ScriptedLLM(error=RuntimeError("rate limited")))
        with pytest.raises(PlannerUnavailableError, match="rate limited"):
            await planner.propose(Alarm(name="x"))

    @pytest.mark.asyncio
    async def test_prose_answer_is_parse_error(self):
        planner = LLMPlanner(_ScriptedLLM("I would restart it."))
        with pytest.raises(PlanParseError):
            await planner.propose(Alarm(name="x"))
