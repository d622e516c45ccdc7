"""
Incident Commander: audited, human-gated remediation of infrastructure incidents.
"""
from .version import __version__, VERSION_INFO, get_version, get_version_info
from .logging_context import (
    get_logger,
    set_context,
    get_context,
    clear_context,
    LoggingContext,
)
from .metrics import get_metrics_text
from .config import CommanderConfig
from .audit import AuditChain, AuditEvent
from .approval import ApprovalGate, ApprovalMode
from .dispatch import ActionDispatcher, SecurityPolicy, InMemoryResourceBackend
from .supervision import Supervisor
from .lifecycle import IncidentController

__all__ = [
    "__version__",
    "VERSION_INFO",
    "get_version",
    "get_version_info",
    "get_logger",
    "set_context",
    "get_context",
    "clear_context",
    "LoggingContext",
    "get_metrics_text",
    "CommanderConfig",
    "AuditChain",
    "AuditEvent",
    "ApprovalGate",
    "ApprovalMode",
    "ActionDispatcher",
    "SecurityPolicy",
    "InMemoryResourceBackend",
    "Supervisor",
    "IncidentController",
]
