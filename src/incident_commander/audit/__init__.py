"""
Tamper-evident audit trail for Incident Commander.

Classes:
    AuditChain: Append-only, hash-linked ledger
    AuditEvent: Input to ``AuditChain.append``
    AuditEntry: Stored, hashed ledger record
    AuditSink: Best-effort mirror of every entry
"""

from .chain import AuditChain, AuditEntry, AuditEvent, ChainVerification, compute_hash
from .sinks import AuditSink, LoggingAuditSink, FileAuditSink, RecentEventsView

__all__ = [
    "AuditChain",
    "AuditEntry",
    "AuditEvent",
    "ChainVerification",
    "compute_hash",
    "AuditSink",
    "LoggingAuditSink",
    "FileAuditSink",
    "RecentEventsView",
]
