"""Queue and log state persisted as a single JSON checkpoint."""

import copy
import logging
import threading
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..models import JobStatus, LogEntry, QueueJob
from ..utils.checkpoint_tracker import CheckpointTracker
from .base import JobStore, LogSink

logger = logging.getLogger(__name__)


class QueueStore(CheckpointTracker, JobStore, LogSink):
    """Process-wide durable store holding the ``jobs`` and ``logs`` collections.

    Every mutation runs under one lock, re-reads the checkpoint under the
    cross-process writer lock and ends with an atomic checkpoint write, so
    readers only ever observe whole transitions and a second process sharing
    the file never loses the other's jobs.
    """

    def __init__(self, checkpoint_file: Optional[Path] = None):
        self.lock = threading.RLock()
        self.jobs: "OrderedDict[str, QueueJob]" = OrderedDict()
        self.logs: List[LogEntry] = []
        super().__init__(checkpoint_file)
        if self.checkpoint_file:
            logger.info(
                f"Loaded {len(self.jobs)} jobs and {len(self.logs)} log entries "
                f"from {self.checkpoint_file}"
            )

    @classmethod
    def in_data_dir(cls, data_dir: Path) -> "QueueStore":
        return cls(Path(data_dir) / "queue.json")

    def _get_default_state(self) -> Dict[str, Any]:
        return {"jobs": [], "logs": []}

    def _deserialize_state(self, data: Dict[str, Any]) -> None:
        self.jobs = OrderedDict()
        for job_data in data.get("jobs", []):
            job = QueueJob.from_dict(job_data)
            self.jobs[job.job_id] = job
        self.logs = [LogEntry.from_dict(e) for e in data.get("logs", [])]

    def _serialize_state(self) -> Dict[str, Any]:
        return {
            "jobs": [job.to_dict() for job in self.jobs.values()],
            "logs": [entry.to_dict() for entry in self.logs],
        }

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group reads and writes so no other thread or process interleaves."""
        with self.lock, self.exclusive():
            yield

    def _mutate(self, change: Callable[[], Any]) -> Any:
        """Apply ``change`` to the latest state and persist; roll back in memory if persisting fails."""
        with self.transaction():
            jobs_before = OrderedDict(self.jobs)
            logs_before = list(self.logs)
            result = change()
            try:
                self.save()
            except Exception:
                self.jobs = jobs_before
                self.logs = logs_before
                raise
            return result

    # ---- JobStore ----

    def upsert(self, job: QueueJob) -> None:
        stored = copy.deepcopy(job)

        def change():
            self.jobs[stored.job_id] = stored

        self._mutate(change)

    def get(self, job_id: str) -> Optional[QueueJob]:
        with self.lock:
            self.refresh()
            job = self.jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def list_all(self) -> List[QueueJob]:
        with self.lock:
            self.refresh()
            return [copy.deepcopy(job) for job in self.jobs.values()]

    def list_by_status(self, *statuses: JobStatus) -> List[QueueJob]:
        with self.lock:
            self.refresh()
            return [copy.deepcopy(j) for j in self.jobs.values() if j.status in statuses]

    def delete(self, job_id: str) -> None:
        def change():
            self.jobs.pop(job_id, None)

        self._mutate(change)

    def record(self, job: QueueJob, entry: Optional[LogEntry] = None) -> None:
        stored = copy.deepcopy(job)

        def change():
            if entry is not None:
                self.logs.append(entry)
            self.jobs[stored.job_id] = stored

        self._mutate(change)

    def claim(
        self, select: Callable[[List[QueueJob]], Optional[QueueJob]], mark: Callable[[QueueJob], None]
    ) -> Optional[QueueJob]:
        """Pick a job with ``select`` and apply ``mark`` to it in one locked write.

        ``select`` sees copies of the pending jobs and may run twice: once as a
        cheap check without the writer lock, then again on the latest state.
        """
        if select(self.list_by_status(JobStatus.PENDING)) is None:
            return None

        def change():
            pending = [copy.deepcopy(j) for j in self.jobs.values() if j.status == JobStatus.PENDING]
            chosen = select(pending)
            if chosen is None:
                return None
            mark(chosen)
            self.jobs[chosen.job_id] = chosen
            return copy.deepcopy(chosen)

        return self._mutate(change)

    # ---- LogSink ----

    def append(self, entry: LogEntry) -> None:
        self._mutate(lambda: self.logs.append(entry))

    def read_all(self) -> List[LogEntry]:
        with self.lock:
            self.refresh()
            return list(self.logs)

    def clear(self) -> None:
        def change():
            self.logs = []

        self._mutate(change)

    # ---- Observer helpers ----

    def snapshot(self) -> Tuple[List[QueueJob], List[LogEntry]]:
        """Consistent copy of both collections."""
        with self.lock:
            self.refresh()
            return [copy.deepcopy(j) for j in self.jobs.values()], list(self.logs)

    def get_stats(self) -> Dict[str, int]:
        with self.lock:
            self.refresh()
            stats = {status.value: 0 for status in JobStatus}
            for job in self.jobs.values():
                stats[job.status.value] += 1
            stats["total"] = len(self.jobs)
            stats["logs"] = len(self.logs)
        return stats
