"""
In-memory registry of sync runs.

Process-wide, no persistence and no eviction: a restart forgets every run.
All access goes through one ``threading.Lock`` because pipeline stages
hop between the event loop and worker threads (``asyncio.to_thread``).
Readers get deep copies, so a returned run is always fully formed and
never changes underneath the caller.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from lakesync.utils import utcnow

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    EXPORTING = "EXPORTING"
    IMPORTING = "IMPORTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED)


# Allowed next states: one step forward, or straight to FAILED
_TRANSITIONS = {
    SyncStatus.PENDING: {SyncStatus.EXPORTING, SyncStatus.FAILED},
    SyncStatus.EXPORTING: {SyncStatus.IMPORTING, SyncStatus.FAILED},
    SyncStatus.IMPORTING: {SyncStatus.COMPLETED, SyncStatus.FAILED},
    SyncStatus.COMPLETED: set(),
    SyncStatus.FAILED: set(),
}


@dataclass
class SyncRun:
    id: str
    status: SyncStatus = SyncStatus.PENDING
    external_run_id: Optional[int] = None
    logs: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


def format_log(message: str) -> str:
    return f"[{utcnow().isoformat()}] {message}"


class RunStore:
    """Keyed map of SyncRun records. Mutators ignore unknown ids."""

    def __init__(self):
        self._runs: dict[str, SyncRun] = {}
        self._lock = threading.Lock()

    def create_run(self, run_id: str) -> SyncRun:
        with self._lock:
            existing = self._runs.get(run_id)
            if existing is not None:
                logger.warning(f"Run {run_id} already exists; keeping the original")
                return copy.deepcopy(existing)
            run = SyncRun(id=run_id, logs=[format_log("Run created")])
            self._runs[run_id] = run
            return copy.deepcopy(run)

    def get_run(self, run_id: str) -> Optional[SyncRun]:
        with self._lock:
            run = self._runs.get(run_id)
            return copy.deepcopy(run) if run is not None else None

    def list_runs(self) -> list[SyncRun]:
        """All runs, newest first."""
        with self._lock:
            runs = [copy.deepcopy(r) for r in reversed(self._runs.values())]
        return sorted(runs, key=lambda r: r.created_at, reverse=True)

    def update_status(
        self, run_id: str, status: SyncStatus, message: Optional[str] = None
    ) -> bool:
        """Move a run one step forward (or to FAILED). Any other transition
        is refused and returns False. ``message`` is appended as a log
        line in the same critical section as the transition."""
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return False
            if status not in _TRANSITIONS[run.status]:
                logger.warning(
                    f"Refusing status change {run.status.value} -> {status.value} for run {run_id}"
                )
                return False
            run.status = status
            if message:
                run.logs.append(format_log(message))
            if status.is_terminal:
                run.completed_at = utcnow()
            return True

    def set_external_run_id(self, run_id: str, external_run_id: int) -> None:
        with self._lock:
            run = self._runs.get(run_id)
            if run is not None:
                run.external_run_id = external_run_id

    def add_log(self, run_id: str, message: str) -> None:
        with self._lock:
            run = self._runs.get(run_id)
            if run is not None:
                run.logs.append(format_log(message))


run_store = RunStore()
