"""
Supervisor loop and verification strategies.
"""

from .supervisor import FALLBACK_PREFERENCE, Supervisor
from .verifiers import ResultBasedVerifier, ScriptedVerifier, StaticVerifier, ThresholdVerifier, Verifier

__all__ = [
    "Supervisor",
    "FALLBACK_PREFERENCE",
    "Verifier",
    "StaticVerifier",
    "ScriptedVerifier",
    "ResultBasedVerifier",
    "ThresholdVerifier",
]
