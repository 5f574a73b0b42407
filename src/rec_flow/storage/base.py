"""Storage interfaces the enrichment queue depends on."""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import JobStatus, LogEntry, QueueJob


class LogSink(ABC):
    """Durable append/read/clear log capability."""

    @abstractmethod
    def append(self, entry: LogEntry) -> None:
        """Append one entry. Visible to a subsequent read_all in this process."""
        pass

    @abstractmethod
    def read_all(self) -> List[LogEntry]:
        """All entries in append order."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Truncate the log. Never touches jobs."""
        pass


class JobStore(ABC):
    """Durable job collection keyed by job id, kept in enqueue order."""

    @abstractmethod
    def upsert(self, job: QueueJob) -> None:
        pass

    @abstractmethod
    def get(self, job_id: str) -> Optional[QueueJob]:
        pass

    @abstractmethod
    def list_all(self) -> List[QueueJob]:
        pass

    @abstractmethod
    def delete(self, job_id: str) -> None:
        pass

    def list_by_status(self, *statuses: JobStatus) -> List[QueueJob]:
        return [job for job in self.list_all() if job.status in statuses]

    def record(self, job: QueueJob, entry: Optional[LogEntry] = None) -> None:
        """Persist a job transition together with its log entry.

        Stores that implement both interfaces should override this to make
        the pair a single write.
        """
        if entry is not None and isinstance(self, LogSink):
            self.append(entry)
        self.upsert(job)
