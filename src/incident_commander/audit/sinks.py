"""
Best-effort sinks that mirror audit entries outside the chain.

Sinks never take part in the chain's correctness: the chain catches and
logs any error they raise. ``emit`` is called under the chain lock, so
sinks must not block; ``FileAuditSink`` hands lines to a writer thread.
"""

import atexit
import json
import logging
import queue
from abc import ABC, abstractmethod
from collections import deque
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from threading import Lock
from typing import Deque, List, Optional

from ..constants import DEFAULT_RECENT_EVENTS_LIMIT
from .chain import AuditEntry

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Abstract base class for audit sinks."""

    @abstractmethod
    def emit(self, entry: AuditEntry) -> None:
        """Receive a copy of a freshly appended entry."""
        pass

    def close(self) -> None:
        """Release resources; entries emitted afterwards may be dropped."""
        pass


class LoggingAuditSink(AuditSink):
    """Writes every entry to a log stream as one JSON line."""

    def __init__(self, logger_name: str = "incident_commander.audit.stream", level: int = logging.INFO):
        self.stream = logging.getLogger(logger_name)
        self.level = level

    def emit(self, entry: AuditEntry) -> None:
        self.stream.log(self.level, entry.to_json())


class FileAuditSink(AuditSink):
    """
    File-based audit sink.

    Stores entries in JSONL format, one per line, so the chain can be
    reloaded with ``AuditChain.load_jsonl`` and verified offline.

    ``emit`` only enqueues the line; a ``QueueListener`` thread owns the
    open file and writes lines in append order. ``close`` drains the queue
    and closes the file, and runs at interpreter exit if not called.
    """

    def __init__(self, file_path: str = "audit.jsonl"):
        """
        Initialize file sink.

        Args:
            file_path: Path to audit log file
        """
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        self._file_handler = logging.FileHandler(self.file_path, mode="a", encoding="utf-8")
        self._file_handler.setFormatter(logging.Formatter("%(message)s"))
        self._queue: "queue.SimpleQueue[logging.LogRecord]" = queue.SimpleQueue()
        self._handler = QueueHandler(self._queue)
        self._listener = QueueListener(self._queue, self._file_handler)
        self._listener.start()
        self._lock = Lock()
        self._closed = False
        atexit.register(self.close)
        logger.info(f"File audit sink initialized: {self.file_path}")

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, entry: AuditEntry) -> None:
        if self._closed:
            raise RuntimeError(f"File audit sink {self.file_path} is closed")
        record = logging.makeLogRecord({
            "name": "incident_commander.audit.file",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": entry.to_json(),
        })
        self._handler.handle(record)

    def close(self) -> None:
        """Write every queued entry, then close the file."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._listener.stop()
        self._file_handler.close()
        atexit.unregister(self.close)


class RecentEventsView(AuditSink):
    """
    Bounded projection of the most recent entries.

    Old entries are evicted from the view only; the chain keeps everything.
    """

    def __init__(self, limit: int = DEFAULT_RECENT_EVENTS_LIMIT):
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        self._events: Deque[AuditEntry] = deque(maxlen=limit)
        self._lock = Lock()

    @property
    def limit(self) -> int:
        return self._events.maxlen

    def emit(self, entry: AuditEntry) -> None:
        with self._lock:
            self._events.append(entry)

    def recent(self, limit: Optional[int] = None) -> List[AuditEntry]:
        """Most recent entries, oldest first."""
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def to_json(self) -> str:
        return json.dumps([e.to_dict() for e in self.recent()])
