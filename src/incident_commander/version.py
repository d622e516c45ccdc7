"""
Version information for Incident Commander.

This module provides a single source of truth for version information
across the entire codebase.
"""

__version__ = "2.1.0"

VERSION_INFO = {
    "version": __version__,
    "api_version": "v1",
    "platform": "AURA",
    "name": "incident-commander",
    "full_name": "AURA Incident Commander - Remediation Orchestration Engine",
}


def get_version() -> str:
    """Return the current version string."""
    return __version__


def get_version_info() -> dict:
    """Return detailed version information."""
    return VERSION_INFO.copy()
