"""
Data models for Incident Commander using Pydantic for validation.
"""
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

UNKNOWN_ALARM = "UnknownAlarm"


def _text(*values: Any) -> Optional[str]:
    """First non-empty value as a string; mappings and lists are JSON-encoded."""
    for value in values:
        if value is None or value == "":
            continue
        if isinstance(value, str):
            return value
        if isinstance(value, (dict, list)):
            try:
                return json.dumps(value, sort_keys=True, default=str)
            except (TypeError, ValueError):
                return repr(value)
        return str(value)
    return None


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Severity(str, Enum):
    """Incident severity."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentState(str, Enum):
    """Lifecycle states of an incident."""
    DETECTED = "DETECTED"
    PLANNING = "PLANNING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    EXECUTING = "EXECUTING"
    VERIFYING = "VERIFYING"
    SELF_CORRECTING = "SELF_CORRECTING"
    RESOLVED = "RESOLVED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (IncidentState.RESOLVED, IncidentState.FAILED, IncidentState.REJECTED)


class ActionCommand(str, Enum):
    """Remediation action vocabulary."""
    RESTART = "RESTART"
    SCALE_UP = "SCALE_UP"
    INCREASE_MEMORY = "INCREASE_MEMORY"
    INCREASE_TIMEOUT = "INCREASE_TIMEOUT"
    ROLLBACK = "ROLLBACK"
    LOG_ONLY = "LOG_ONLY"

    @classmethod
    def parse(cls, value: Any) -> Optional["ActionCommand"]:
        """Return the command for ``value`` or None if it is not in the vocabulary."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class Provider(str, Enum):
    """Registered cloud providers."""
    AWS = "AWS"
    AZURE = "AZURE"
    GCP = "GCP"


class ApprovalStatus(str, Enum):
    """Status of an approval request."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    TIMED_OUT = "TIMED_OUT"


class DecisionReason(str, Enum):
    """Why the approval gate decided the way it did."""
    AUTO = "AUTO"
    HUMAN = "HUMAN"
    TIMEOUT = "TIMEOUT"


class ActionOutcome(str, Enum):
    """Outcome of a dispatched action."""
    SUCCESS = "SUCCESS"
    SIMULATED_SUCCESS = "SIMULATED_SUCCESS"
    FAILED = "FAILED"

    @property
    def executed(self) -> bool:
        return self != ActionOutcome.FAILED


class Alarm(BaseModel):
    """
    Normalized alarm as delivered by a detection source.

    Attributes:
        name: Alarm name (``AlarmName``)
        reason: State change reason
        description: Alarm description
        state_change_time: When the alarm fired
        dimensions: Trigger dimensions in payload order
        raw: Original payload, including any SNS envelope
        attributes: The alarm document itself (the envelope's ``Message``
            when the payload was wrapped, else the payload)
    """
    name: str = UNKNOWN_ALARM
    reason: Optional[str] = None
    description: Optional[str] = None
    state_change_time: Optional[datetime] = None
    dimensions: Dict[str, str] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("state_change_time", mode="before")
    @classmethod
    def parse_state_change_time(cls, v: Any) -> Optional[datetime]:
        """Parse timestamps in any format dateutil understands."""
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            try:
                return date_parser.parse(v)
            except (ValueError, OverflowError):
                return None
        return None

    @property
    def target_hint(self) -> Optional[str]:
        """First trigger dimension value, if any."""
        for value in self.dimensions.values():
            if value:
                return value
        return None

    @classmethod
    def from_payload(cls, payload: Any) -> "Alarm":
        """
        Build an alarm from a raw detection payload.

        Accepts a CloudWatch-style alarm mapping, an SNS envelope whose
        ``Message`` field is a JSON document, or the JSON text of either.
        Malformed payloads produce an ``UnknownAlarm`` instead of raising.

        Example:
            >>> Alarm.from_payload({"AlarmName": "HighErrorAlarm"}).name
            'HighErrorAlarm'
        """
        data = payload
        if isinstance(data, (bytes, str)):
            try:
                data = json.loads(data)
            except (TypeError, ValueError) as e:
                logger.warning(f"Unparseable alarm payload: {e}")
                return cls(raw={"body": payload if isinstance(payload, str) else repr(payload)})

        if not isinstance(data, dict):
            logger.warning(f"Alarm payload must be a mapping, got {type(data).__name__}")
            return cls()

        raw = {str(k): v for k, v in data.items()}
        message = data.get("Message")
        if isinstance(message, str):
            try:
                inner = json.loads(message)
            except ValueError:
                inner = None
            if isinstance(inner, dict):
                data = inner
        attributes = {str(k): v for k, v in data.items()}

        dimensions: Dict[str, str] = {}
        trigger = data.get("Trigger")
        trigger_dims = trigger.get("Dimensions") if isinstance(trigger, dict) else None
        if isinstance(trigger_dims, list):
            for index, dim in enumerate(trigger_dims):
                if not isinstance(dim, dict):
                    continue
                value = dim.get("value", dim.get("Value"))
                if value is None:
                    continue
                name = dim.get("name", dim.get("Name")) or f"dimension_{index}"
                dimensions[str(name)] = str(value)
        elif trigger_dims is not None:
            logger.warning(f"Ignoring Trigger.Dimensions of type {type(trigger_dims).__name__}")
        extra = data.get("dimensions")
        if isinstance(extra, dict):
            for key, value in extra.items():
                dimensions.setdefault(str(key), str(value))

        name = _text(data.get("AlarmName"), data.get("alarm_name"), data.get("name")) or UNKNOWN_ALARM
        try:
            return cls(
                name=name,
                reason=_text(data.get("NewStateReason"), data.get("StateReason"), data.get("reason")),
                description=_text(data.get("AlarmDescription"), data.get("description")),
                state_change_time=data.get("StateChangeTime"),
                dimensions=dimensions,
                raw=raw,
                attributes=attributes,
            )
        except ValidationError as e:
            logger.warning(f"Alarm {name} failed validation, keeping name only: {e}")
            return cls(name=name, raw=raw, attributes=attributes)


class ProposedPlan(BaseModel):
    """
    Unvalidated plan as produced by a planning collaborator.

    ``action`` stays a free string here so that vetoed or unknown commands
    can be told apart during validation.
    """
    action: str
    target: Optional[str] = None
    provider: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rationale: str = ""
    policy_citation: Optional[str] = None
    cost_impact: Optional[str] = None
    source: str = "planner"

    @field_validator("action")
    @classmethod
    def strip_action(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("action must be a non-empty string")
        return v


class RemediationPlan(BaseModel):
    """Validated, immutable remediation plan."""
    model_config = ConfigDict(frozen=True)

    action: ActionCommand
    target: str
    provider: str
    confidence: float = Field(ge=0.0, le=1.0)
    rationale: str = ""
    policy_citation: Optional[str] = None
    cost_impact: Optional[str] = None
    source: str = "planner"
    validated: bool = False

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().upper()


class Incident(BaseModel):
    """One detected abnormal condition requiring remediation."""
    id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    alarm: Alarm
    alarm_name: str
    severity: Severity = Severity.LOW
    state: IncidentState = IncidentState.DETECTED
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None
    reason: Optional[str] = None


class ApprovalRequest(BaseModel):
    """Pending request for a human decision on a plan."""
    incident_id: str
    plan: RemediationPlan
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)


class Decision(BaseModel):
    """Approval gate decision."""
    model_config = ConfigDict(frozen=True)

    approved: bool
    reason: DecisionReason
    status: ApprovalStatus


class ActionResult(BaseModel):
    """Result of dispatching one action to a provider capability."""
    provider: str
    action: ActionCommand
    target: str
    outcome: ActionOutcome
    before: Optional[Any] = None
    after: Optional[Any] = None
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class StateChange(BaseModel):
    """One visited lifecycle state."""
    state: IncidentState
    at: datetime = Field(default_factory=utcnow)
    detail: Optional[str] = None


class IncidentReport(BaseModel):
    """Terminal (or in-flight) summary of one incident."""
    incident: Incident
    plan: Optional[RemediationPlan] = None
    decision: Optional[Decision] = None
    results: List[ActionResult] = Field(default_factory=list)
    history: List[StateChange] = Field(default_factory=list)
    audit_hashes: List[str] = Field(default_factory=list)

    @property
    def states(self) -> List[IncidentState]:
        return [change.state for change in self.history]

    @property
    def reason(self) -> Optional[str]:
        return self.incident.reason
