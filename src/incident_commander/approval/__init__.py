"""
Human-in-the-loop approval gate.
"""

from .gate import ApprovalGate, ApprovalMode

__all__ = ["ApprovalGate", "ApprovalMode"]
