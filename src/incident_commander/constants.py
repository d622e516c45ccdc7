"""
Shared defaults for Incident Commander.
"""

ENV_PREFIX = "INCIDENT_COMMANDER_"

# Approval gate
DEFAULT_APPROVAL_TIMEOUT_SECONDS = 300
VALID_APPROVAL_MODES = ("autonomous", "copilot")

# Planning collaborator
DEFAULT_PLANNER_TIMEOUT_SECONDS = 10
DEFAULT_PLANNER_FAILURE_THRESHOLD = 3
DEFAULT_PLANNER_RECOVERY_SECONDS = 60
FALLBACK_PLAN_CONFIDENCE = 0.6

# Supervisor loop
DEFAULT_SETTLE_SECONDS = 2.0

# Dispatch defaults
DEFAULT_PROVIDER = "AWS"
DEFAULT_TARGET = "unknown-resource"

# Audit
GENESIS_HASH = "0" * 64
DEFAULT_RECENT_EVENTS_LIMIT = 500

# Lifecycle
DEFAULT_RETAINED_INCIDENTS = 1000

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
