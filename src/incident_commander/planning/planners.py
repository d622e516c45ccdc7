"""
Planning collaborators.

A planner turns an alarm into a ``ProposedPlan``. Collaborators may be slow
or wrong; callers bound them with a timeout and a circuit breaker and fall
back to ``RuleBasedPlanner`` on any ``PlanningError``.
"""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ValidationError

from ..exceptions import PlannerUnavailableError, PlanParseError
from ..models import Alarm, ProposedPlan

logger = logging.getLogger(__name__)

# Accepted spellings for plan fields in collaborator output
FIELD_ALIASES = {
    "action": ("action", "command", "recommended_action", "recommendedAction"),
    "target": ("target", "resource", "target_resource", "targetResource"),
    "provider": ("provider", "cloud", "target_provider"),
    "confidence": ("confidence", "confidence_score"),
    "rationale": ("rationale", "reasoning", "root_cause", "rootCause"),
    "policy_citation": ("policy_citation", "policyCitation", "policy"),
    "cost_impact": ("cost_impact", "costImpact", "cost"),
}

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_plan(data: Any, source: str) -> ProposedPlan:
    """
    Build a ``ProposedPlan`` from decoded collaborator output.

    Raises:
        PlanParseError: If ``data`` is not a mapping or lacks a usable action
    """
    if isinstance(data, dict) and isinstance(data.get("plan"), dict):
        data = data["plan"]
    if not isinstance(data, dict):
        raise PlanParseError(f"Plan must be a JSON object, got {type(data).__name__}")

    fields: Dict[str, Any] = {}
    for name, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if data.get(alias) is not None:
                fields[name] = data[alias]
                break

    if not isinstance(fields.get("action"), str):
        raise PlanParseError("Plan has no action")
    for name in ("target", "provider", "rationale", "policy_citation", "cost_impact"):
        if name in fields and not isinstance(fields[name], str):
            fields[name] = str(fields[name])

    try:
        return ProposedPlan(source=source, **fields)
    except ValidationError as e:
        raise PlanParseError(f"Malformed plan: {e.errors()[0]['msg']}") from e


def parse_plan_text(text: str, source: str) -> ProposedPlan:
    """
    Parse plan JSON embedded in free text (e.g. a fenced LLM answer).

    Raises:
        PlanParseError: If no JSON object can be decoded
    """
    match = _JSON_OBJECT.search(text or "")
    if match is None:
        raise PlanParseError("No JSON object in planner output")
    try:
        data = json.loads(match.group(0))
    except ValueError as e:
        raise PlanParseError(f"Unparseable plan JSON: {e}") from e
    return parse_plan(data, source)


class Planner(ABC):
    """Interface for planning collaborators."""

    name = "planner"

    @abstractmethod
    async def propose(self, alarm: Alarm) -> ProposedPlan:
        """
        Propose a remediation for ``alarm``.

        Raises:
            PlanParseError: Output could not be turned into a plan
            PlannerUnavailableError: Collaborator could not be reached
        """
        pass


class StaticPlanner(Planner):
    """Returns a fixed plan. Useful for drills and tests."""

    name = "static"

    def __init__(self, plan: ProposedPlan):
        self.plan = plan

    async def propose(self, alarm: Alarm) -> ProposedPlan:
        return self.plan


class HTTPPlanner(Planner):
    """
    Reasoning service reached over HTTP.

    POSTs ``{"alarm": ..., "raw": ...}`` as JSON and expects a plan object
    back. The blocking requests call runs in a worker thread.

    Example:
        >>> planner = HTTPPlanner("http://reasoner.internal/plan", timeout=5)
    """

    name = "http"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        if not url:
            raise ValueError("HTTPPlanner requires a url")
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self.session = session or requests.Session()

    def _post(self, body: Dict[str, Any]) -> Any:
        try:
            response = self.session.post(
                self.url, json=body, headers=self.headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise PlannerUnavailableError(f"Planner request to {self.url} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise PlanParseError(f"Planner returned non-JSON body: {e}") from e

    async def propose(self, alarm: Alarm) -> ProposedPlan:
        body = {
            "alarm": alarm.model_dump(mode="json", exclude={"raw"}),
            "raw": alarm.raw,
        }
        data = await asyncio.to_thread(self._post, body)
        return parse_plan(data, source=self.name)


class LLMMessage(BaseModel):
    """A message in an LLM conversation."""
    role: str  # "system", "user", or "assistant"
    content: str


class LLMResponse(BaseModel):
    """Response from an LLM."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None


class LLMProvider(ABC):
    """
    Abstract completion interface.

    Concrete vendors implement ``complete``; it may block, and is called from a
    worker thread.
    """

    def __init__(self, model: str, api_key: Optional[str] = None, **kwargs: Any):
        self.model = model
        self.api_key = api_key
        self.kwargs = kwargs

    @abstractmethod
    def complete(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.0,
        max_tokens: Optional[int] = None
    ) -> LLMResponse:
        """Generate a completion for ``messages``."""
        pass

    def create_system_message(self, content: str) -> LLMMessage:
        return LLMMessage(role="system", content=content)

    def create_user_message(self, content: str) -> LLMMessage:
        return LLMMessage(role="user", content=content)


SYSTEM_PROMPT = """You are an SRE remediation planner.
Given a cloud alarm, answer with a single JSON object and nothing else:
{"action": one of RESTART, SCALE_UP, INCREASE_MEMORY, INCREASE_TIMEOUT, ROLLBACK, LOG_ONLY,
 "target": resource identifier,
 "provider": AWS, AZURE or GCP,
 "confidence": number between 0 and 1,
 "rationale": short explanation,
 "policy_citation": optional policy reference,
 "cost_impact": optional cost estimate}
Never propose destructive actions such as deleting databases or terminating instances."""


class LLMPlanner(Planner):
    """Asks a language model for a plan and parses its JSON answer."""

    name = "llm"

    def __init__(self, provider: LLMProvider, max_tokens: Optional[int] = 512):
        self.provider = provider
        self.max_tokens = max_tokens

    def build_messages(self, alarm: Alarm) -> List[LLMMessage]:
        alarm_json = json.dumps(alarm.model_dump(mode="json", exclude={"raw"}), indent=2)
        return [
            self.provider.create_system_message(SYSTEM_PROMPT),
            self.provider.create_user_message(f"Alarm:\n{alarm_json}"),
        ]

    async def propose(self, alarm: Alarm) -> ProposedPlan:
        messages = self.build_messages(alarm)
        try:
            response = await asyncio.to_thread(
                self.provider.complete, messages, 0.0, self.max_tokens
            )
        except Exception as e:
            raise PlannerUnavailableError(f"LLM completion failed: {e}") from e
        logger.debug(f"LLM planner ({response.model}) answered: {response.content[:200]}")
        return parse_plan_text(response.content, source=self.name)
