"""
Action dispatch across cloud providers.

Classes:
    ActionDispatcher: Routes (provider, action, target) through a closed capability table
    SecurityPolicy: Static deny-list checks
    ResourceBackend: Interface capabilities use to touch resources
    InMemoryResourceBackend: Simulated resource backend
"""

from .policy import SecurityPolicy, DenyRule, validate_plan, BLOCKED_ACTION_NAMES
from .capabilities import (
    ResourceBackend,
    InMemoryResourceBackend,
    ProviderLimits,
    PROVIDER_ACTIONS,
    PROVIDER_LIMITS,
    build_capability_table,
)
from .dispatcher import ActionDispatcher

__all__ = [
    "ActionDispatcher",
    "SecurityPolicy",
    "DenyRule",
    "validate_plan",
    "BLOCKED_ACTION_NAMES",
    "ResourceBackend",
    "InMemoryResourceBackend",
    "ProviderLimits",
    "PROVIDER_ACTIONS",
    "PROVIDER_LIMITS",
    "build_capability_table",
]
