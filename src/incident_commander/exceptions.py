"""
Custom exception types for Incident Commander.

Input errors are recovered locally by the controller, policy errors end an
incident, and provider errors are mapped to degraded action results by the
capability layer.
"""


class CommanderError(Exception):
    """Base exception for all Incident Commander errors."""
    pass


# Configuration errors
class ConfigurationError(CommanderError):
    """Base exception for configuration errors."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration."""
    pass


# Planning errors
class PlanningError(CommanderError):
    """Base exception for planning collaborator errors."""
    pass


class PlanParseError(PlanningError):
    """Planning collaborator returned malformed output."""
    pass


class PlannerUnavailableError(PlanningError):
    """Planning collaborator is missing, failing, or circuit-broken."""
    pass


# Policy errors
class PolicyError(CommanderError):
    """Base exception for policy violations. Never retried."""
    pass


class SecurityVetoError(PolicyError):
    """Action/target pair matched the deny-list."""
    pass


class UnsupportedProviderError(PolicyError):
    """No capability table is registered for the provider."""
    pass


class UnsupportedActionError(PolicyError):
    """Provider capability set does not include the action."""
    pass


class InvalidPlanError(PolicyError):
    """Plan is missing a required parameter."""
    pass


# Approval errors
class ApprovalError(CommanderError):
    """Base exception for approval gate errors."""
    pass


class DuplicateApprovalError(ApprovalError):
    """An approval request is already pending for the incident."""
    pass


# Lifecycle errors
class LifecycleError(CommanderError):
    """Base exception for lifecycle controller errors."""
    pass


class InvalidTransitionError(LifecycleError):
    """State machine transition not allowed."""
    pass


class IncidentNotFoundError(LifecycleError):
    """Incident not found."""
    pass


# Provider (resource backend) errors
class ProviderError(CommanderError):
    """Base exception for resource backend errors."""
    pass


class ResourceNotFoundError(ProviderError):
    """Target resource does not exist."""
    pass


class ResourceAtLimitError(ProviderError):
    """Target resource is already at its configured maximum."""
    pass


class ProviderFaultError(ProviderError):
    """Underlying infrastructure call failed."""
    pass


# Audit errors
class AuditError(CommanderError):
    """Base exception for audit chain errors."""
    pass


class AuditChainLoadError(AuditError):
    """Persisted audit chain could not be read."""
    pass


__all__ = [
    "CommanderError",
    "ConfigurationError",
    "InvalidConfigError",
    "PlanningError",
    "PlanParseError",
    "PlannerUnavailableError",
    "PolicyError",
    "SecurityVetoError",
    "UnsupportedProviderError",
    "UnsupportedActionError",
    "InvalidPlanError",
    "ApprovalError",
    "DuplicateApprovalError",
    "LifecycleError",
    "InvalidTransitionError",
    "IncidentNotFoundError",
    "ProviderError",
    "ResourceNotFoundError",
    "ResourceAtLimitError",
    "ProviderFaultError",
    "AuditError",
    "AuditChainLoadError",
]
