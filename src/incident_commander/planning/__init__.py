"""
Planning: collaborators that propose plans and the rule-based fallback.
"""

from .planners import (
    HTTPPlanner,
    LLMMessage,
    LLMPlanner,
    LLMProvider,
    LLMResponse,
    Planner,
    StaticPlanner,
    parse_plan,
    parse_plan_text,
)
from .rules import RuleBasedPlanner, derive_severity, root_cause_hint, select_action

__all__ = [
    "Planner",
    "StaticPlanner",
    "HTTPPlanner",
    "LLMPlanner",
    "LLMProvider",
    "LLMMessage",
    "LLMResponse",
    "parse_plan",
    "parse_plan_text",
    "RuleBasedPlanner",
    "derive_severity",
    "root_cause_hint",
    "select_action",
]
