"""
Hash-linked audit chain.

Every entry stores the SHA-256 digest of its own fields plus the previous
entry's digest. Editing any stored entry breaks verification at that index.
Corrections are made by appending a compensating entry.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence, TYPE_CHECKING

from ..constants import GENESIS_HASH
from ..exceptions import AuditChainLoadError

if TYPE_CHECKING:
    from .sinks import AuditSink

logger = logging.getLogger(__name__)

HASHED_FIELDS = ("timestamp", "actor", "resource", "action", "result", "previous_hash")


@dataclass(frozen=True)
class AuditEvent:
    """
    Something worth recording.

    Attributes:
        actor: Who caused it (orchestrator, operator, planner, ...)
        resource: What it concerns, usually an incident id
        action: What happened, e.g. ``transition:PLANNING->AWAITING_APPROVAL``
        result: Outcome or reason text
    """
    actor: str
    resource: str
    action: str
    result: str = "success"


@dataclass(frozen=True)
class AuditEntry:
    """Stored ledger record. Never mutated once written."""
    timestamp: str
    actor: str
    resource: str
    action: str
    result: str
    previous_hash: str
    hash: str

    def hashed_fields(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in HASHED_FIELDS}

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class ChainVerification:
    """Result of walking the chain."""
    valid: bool
    broken_at_index: Optional[int] = None
    length: int = 0

    def to_dict(self) -> Dict:
        data = {"valid": self.valid, "length": self.length}
        if self.broken_at_index is not None:
            data["broken_at_index"] = self.broken_at_index
        return data


def compute_hash(fields: Dict[str, str]) -> str:
    """SHA-256 over the canonical JSON form of the hashed fields."""
    payload = json.dumps(
        {name: fields[name] for name in HASHED_FIELDS},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_entries(entries: Sequence[AuditEntry]) -> ChainVerification:
    """
    Walk ``entries`` and report the first broken link.

    An index is broken when its ``previous_hash`` differs from the prior
    entry's ``hash`` (the genesis hash for index 0) or when recomputing its
    hash does not give the stored value.
    """
    expected_previous = GENESIS_HASH
    for index, entry in enumerate(entries):
        if entry.previous_hash != expected_previous:
            return ChainVerification(valid=False, broken_at_index=index, length=len(entries))
        if compute_hash(entry.hashed_fields()) != entry.hash:
            return ChainVerification(valid=False, broken_at_index=index, length=len(entries))
        expected_previous = entry.hash
    return ChainVerification(valid=True, length=len(entries))


class AuditChain:
    """
    Append-only, hash-linked event ledger.

    Appends are serialized by a lock so that concurrent incidents interleave
    in a single global order without breaking the links. Registered sinks get
    a copy of every entry; a failing sink is logged and otherwise ignored.

    Example:
        >>> chain = AuditChain()
        >>> chain.append(AuditEvent("orchestrator", "inc-1", "incident.detected"))
        '...'
        >>> chain.verify().valid
        True
    """

    def __init__(self, sinks: Optional[Iterable["AuditSink"]] = None):
        self._entries: List[AuditEntry] = []
        self._sinks: List["AuditSink"] = list(sinks or [])
        self._lock = Lock()

    def add_sink(self, sink: "AuditSink") -> None:
        """Register an additional best-effort sink."""
        with self._lock:
            self._sinks.append(sink)

    def append(self, event: AuditEvent) -> str:
        """
        Append an event and return the new entry's hash.

        Args:
            event: Event to record

        Returns:
            Hex SHA-256 digest of the stored entry
        """
        with self._lock:
            previous_hash = self._entries[-1].hash if self._entries else GENESIS_HASH
            fields = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "actor": event.actor,
                "resource": event.resource,
                "action": event.action,
                "result": event.result,
                "previous_hash": previous_hash,
            }
            entry = AuditEntry(hash=compute_hash(fields), **fields)
            self._entries.append(entry)
            self._mirror(entry)
        return entry.hash

    def _mirror(self, entry: AuditEntry) -> None:
        for sink in self._sinks:
            try:
                sink.emit(entry)
            except Exception as e:
                logger.warning(f"Audit sink {sink.__class__.__name__} failed: {e}")

    def close(self) -> None:
        """Flush and close every sink. The chain itself stays readable."""
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            close = getattr(sink, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.warning(f"Closing audit sink {sink.__class__.__name__} failed: {e}")

    def verify(self) -> ChainVerification:
        """Verify the whole chain."""
        return verify_entries(self.entries())

    def entries(self, resource: Optional[str] = None) -> List[AuditEntry]:
        """
        Snapshot of stored entries in append order.

        Args:
            resource: Only return entries for this resource
        """
        with self._lock:
            snapshot = list(self._entries)
        if resource is not None:
            snapshot = [e for e in snapshot if e.resource == resource]
        return snapshot

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def head(self) -> str:
        """Hash of the latest entry (genesis hash when empty)."""
        with self._lock:
            return self._entries[-1].hash if self._entries else GENESIS_HASH

    @classmethod
    def load_jsonl(cls, file_path: str) -> "AuditChain":
        """
        Rebuild a chain from a JSONL file written by ``FileAuditSink``.

        Entries are loaded as stored; call ``verify()`` to check them.

        Raises:
            AuditChainLoadError: If the file is missing or a line is invalid
        """
        path = Path(file_path)
        if not path.is_file():
            raise AuditChainLoadError(f"Audit log not found: {path}")

        chain = cls()
        with path.open("r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    data = json.loads(line)
                    chain._entries.append(AuditEntry(**data))
                except (ValueError, TypeError) as e:
                    raise AuditChainLoadError(f"Invalid audit entry at line {line_no}: {e}") from e
        logger.info(f"Loaded {len(chain._entries)} audit entries from {path}")
        return chain
