"""Durable enrichment queue and its cooperative worker loop.

The queue:
1. Accepts candidates and coalesces duplicate submissions
2. Hands eligible jobs to workers, one active attempt per job
3. Verifies each job under a per-job timeout
4. Records every transition together with one log entry
5. Retries transient failures with capped exponential backoff
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .models import (
    JobStatus,
    LogEntry,
    LogType,
    ProviderUnavailable,
    QueueJob,
    RecFlowError,
    RecommendationCandidate,
    SimilarityResult,
    StoreUnavailable,
    VerificationError,
    VerifiedContentItem,
)
from .scoring import SimilarityScorer
from .storage.queue_store import QueueStore
from .verifier import MetadataVerifier

logger = logging.getLogger(__name__)


class EnrichmentQueue:
    """Owns the job lifecycle on top of a ``QueueStore``."""

    def __init__(
        self,
        store: QueueStore,
        verifier: Optional[MetadataVerifier],
        config: Optional[Dict[str, Any]] = None,
        scorer: Optional[SimilarityScorer] = None,
        clock: Callable[[], float] = time.time,
    ):
        config = config or {}
        self.store = store
        self.verifier = verifier
        self.scorer = scorer or SimilarityScorer()
        self.clock = clock

        self.max_attempts = config.get("max_attempts", 3)
        self.backoff_base = config.get("backoff_base", 1.0)
        self.backoff_cap = config.get("backoff_cap", 60.0)
        self.job_timeout = config.get("job_timeout", 15.0)
        self.workers = config.get("workers", 1)
        self.poll_interval = config.get("poll_interval", 0.5)
        self.result_ttl = timedelta(hours=config.get("result_ttl_hours", 48))

        self.running = False

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc)

    def backoff_delay(self, attempts: int) -> float:
        return min(self.backoff_cap, self.backoff_base * 2**attempts)

    # ---- Observer API ----

    def enqueue(self, candidate: Union[RecommendationCandidate, Mapping[str, Any]]) -> QueueJob:
        """Add a pending job, or return the job already covering this candidate."""
        if not isinstance(candidate, RecommendationCandidate):
            candidate = RecommendationCandidate.from_dict(candidate)

        identity = candidate.identity
        now = self._now()
        with self.store.transaction():
            for job in self.store.list_all():
                if job.payload.identity != identity:
                    continue
                if job.status in (JobStatus.PENDING, JobStatus.PROCESSING):
                    logger.debug(f"Coalesced {identity!r} into in-flight job {job.job_id}")
                    return job
                if (
                    job.status == JobStatus.SUCCEEDED
                    and job.finished_at
                    and now - job.finished_at <= self.result_ttl
                ):
                    logger.debug(f"Reusing recent result of job {job.job_id} for {identity!r}")
                    return job

            job = QueueJob(
                job_id=str(uuid.uuid4()),
                payload=candidate,
                enqueued_at=now,
                available_at=self.clock(),
            )
            self.store.upsert(job)

        logger.info(f"Enqueued {candidate.title!r} as job {job.job_id}")
        return job

    def get_snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        jobs, logs = self.store.snapshot()
        return {
            "jobs": [job.to_dict() for job in jobs],
            "logs": [entry.to_dict() for entry in logs],
        }

    def clear_logs(self) -> None:
        self.store.clear()
        logger.info("Cleared pipeline log")

    def stats(self) -> Dict[str, int]:
        return self.store.get_stats()

    def consume_terminal(self) -> List[QueueJob]:
        """Remove succeeded/failed jobs from the store and hand them to the caller."""
        with self.store.transaction():
            terminal = self.store.list_by_status(JobStatus.SUCCEEDED, JobStatus.FAILED)
            for job in terminal:
                self.store.delete(job.job_id)
        if terminal:
            logger.info(f"Archived {len(terminal)} terminal jobs")
        return terminal

    def results(self) -> List[VerifiedContentItem]:
        """Verified items of all succeeded jobs, in enqueue order."""
        return [
            VerifiedContentItem.from_dict(job.result)
            for job in self.store.list_by_status(JobStatus.SUCCEEDED)
            if job.result
        ]

    def rank(self, reference: VerifiedContentItem, use_keywords: bool = False) -> List[SimilarityResult]:
        return self.scorer.score(reference, self.results(), use_keywords)

    # ---- Worker side ----

    def recover(self) -> int:
        """Return jobs interrupted mid-attempt to pending. Attempts are kept."""
        recovered = 0
        with self.store.transaction():
            for job in self.store.list_by_status(JobStatus.PROCESSING):
                job.status = JobStatus.PENDING
                job.available_at = self.clock()
                job.updated_at = self._now()
                entry = LogEntry.create(
                    f"Recovered interrupted job for {job.payload.title!r} "
                    f"(attempts so far: {job.attempts})",
                    LogType.INFO,
                    job.job_id,
                )
                self.store.record(job, entry)
                recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} jobs left processing by a previous run")
        return recovered

    def claim(self) -> Optional[QueueJob]:
        """Move the first eligible pending job to processing.

        Runs without awaiting, so no other worker can observe the job as
        pending once it has been picked.
        """
        now = self.clock()

        def select(pending: List[QueueJob]) -> Optional[QueueJob]:
            eligible = [job for job in pending if job.available_at <= now]
            if not eligible:
                return None
            # min() keeps the earliest enqueued job among equal available_at
            return min(eligible, key=lambda job: job.available_at)

        def mark(job: QueueJob) -> None:
            job.status = JobStatus.PROCESSING
            job.updated_at = self._now()

        return self.store.claim(select, mark)

    async def drain_once(self) -> Optional[QueueJob]:
        """Process at most one job. Returns it in its new state, or None if idle."""
        if self.verifier is None:
            raise RecFlowError("queue was built without a verifier and cannot process jobs")

        job = self.claim()
        if job is None:
            return None

        logger.debug(f"Processing job {job.job_id} ({job.payload.title!r})")
        try:
            item = await asyncio.wait_for(self.verifier.verify(job.payload), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            return self._fail(job, ProviderUnavailable(f"timed out after {self.job_timeout}s"))
        except VerificationError as e:
            return self._fail(job, e)
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error verifying job {job.job_id}")
            return self._fail(job, e)

        return self._complete(job, item)

    def _complete(self, job: QueueJob, item: VerifiedContentItem) -> QueueJob:
        job.status = JobStatus.SUCCEEDED
        job.result = item.to_dict()
        job.last_error = None
        job.error_kind = None
        job.updated_at = job.finished_at = self._now()

        year = f" ({item.year})" if item.year else ""
        note = " [low confidence]" if item.low_confidence else ""
        entry = LogEntry.create(
            f"Verified {item.title!r}{year} as {item.id}{note}", LogType.SUCCESS, job.job_id
        )
        self.store.record(job, entry)
        return job

    def _fail(self, job: QueueJob, error: Exception) -> QueueJob:
        # Anything that is not a known verification error is treated as transient
        permanent = isinstance(error, VerificationError) and error.permanent

        job.attempts += 1
        job.last_error = str(error)
        job.error_kind = type(error).__name__
        job.updated_at = self._now()
        title = job.payload.title or job.payload.id or job.job_id

        if not permanent and job.attempts < self.max_attempts:
            delay = self.backoff_delay(job.attempts)
            job.status = JobStatus.PENDING
            job.available_at = self.clock() + delay
            entry = LogEntry.create(
                f"Retrying {title!r} in {delay:.1f}s "
                f"(attempt {job.attempts}/{self.max_attempts}): {error}",
                LogType.INFO,
                job.job_id,
            )
            logger.warning(f"Job {job.job_id} failed transiently: {error}")
        else:
            job.status = JobStatus.FAILED
            job.finished_at = job.updated_at
            entry = LogEntry.create(
                f"Failed to verify {title!r}: {job.error_kind}: {error}",
                LogType.ERROR,
                job.job_id,
            )
            logger.info(f"Job {job.job_id} failed after {job.attempts} attempt(s): {error}")

        self.store.record(job, entry)
        return job

    async def _worker_loop(self, worker_index: int):
        logger.debug(f"Worker {worker_index} started")
        while self.running:
            job = await self.drain_once()
            if job is None:
                await asyncio.sleep(self.poll_interval)
        logger.debug(f"Worker {worker_index} stopped")

    async def run(self, workers: Optional[int] = None):
        """Run W workers until ``stop()``. A ``StoreUnavailable`` halts all of them."""
        count = max(1, workers or self.workers)
        self.running = True
        logger.info(f"Starting {count} enrichment worker(s)")

        tasks = [asyncio.create_task(self._worker_loop(i)) for i in range(count)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            self.running = False
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        finally:
            self.running = False

    def stop(self):
        """Stop claiming new jobs. In-flight attempts finish or time out."""
        self.running = False

    async def run_until_idle(self) -> int:
        """Drain until no pending job remains. Returns the number of attempts made."""
        processed = 0
        while True:
            job = await self.drain_once()
            if job is not None:
                processed += 1
                continue

            pending = self.store.list_by_status(JobStatus.PENDING)
            if not pending:
                return processed
            wait = min(job.available_at for job in pending) - self.clock()
            await asyncio.sleep(max(0.0, min(wait, self.poll_interval)))
