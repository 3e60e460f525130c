"""In-process upload job table with a concurrency ceiling.

All mutations happen on the event loop, so the table needs no locking.
Queued jobs are admitted oldest first whenever any job changes status.
"""

import asyncio
from collections import Counter
from typing import Dict, List, Optional

from resource_agent.jobs.dispatcher import JobDispatcher
from resource_agent.jobs.executor import UploadExecutor
from resource_agent.jobs.models import JobStatus, UploadStatus
from resource_agent.jobs.upload_job import UploadJob
from resource_agent.logging_config import get_logger
from resource_agent.protocol.messages import InvalidUriError, is_valid_uri

logger = get_logger(name=__name__)

SHUTDOWN_GRACE_SEC = 5.0


class UploadJobTable(JobDispatcher):
    """Upload jobs keyed by URI, admitted FIFO under ``max_concurrent_uploads``."""

    def __init__(self, locator, executor: UploadExecutor, max_concurrent_uploads: Optional[int] = 0):
        self._locator = locator
        self._executor = executor
        self._max_concurrent_uploads = max_concurrent_uploads or 0
        self._jobs: Dict[str, UploadJob] = {}
        self._stopping = False

    @property
    def max_concurrent_uploads(self) -> int:
        return self._max_concurrent_uploads

    def set_max_concurrent_uploads(self, value: Optional[int]) -> None:
        self._max_concurrent_uploads = value or 0
        self._process_queued_jobs()

    async def submit(
        self, uri: str, request_id: Optional[str] = None, timeout_msec: float = 0
    ) -> UploadStatus:
        if not is_valid_uri(uri):
            raise InvalidUriError("Invalid URI")
        logger.info("Upload request: {}", uri)

        existing = self._jobs.get(uri)
        if existing is not None and existing.is_running:
            return existing.status

        job = UploadJob(uri, executor=self._executor, request_id=request_id)
        await job.initialize(self._locator)
        job.on_status_change(self._on_job_status_change)

        if job.status.status is not JobStatus.NOT_FOUND:
            current = self._store(job)
            if current is not job:
                # another request started this URI while we were resolving
                return current.status

        if job.status.status is JobStatus.QUEUED:
            self._process_queued_jobs()
            # fast uploads can report completion in the response itself
            await job.wait_for_completed(timeout_msec)
        return job.status

    def cancel(self, request_id: str) -> bool:
        for job in self._jobs.values():
            if job.request_id == request_id and job.status.status.in_progress:
                return job.cancel()
        logger.debug("No in-progress job for request {}", request_id)
        return False

    def get_status(self, uri: str) -> Optional[UploadStatus]:
        job = self._jobs.get(uri)
        return job.status if job is not None else None

    def get_job(self, uri: str) -> Optional[UploadJob]:
        return self._jobs.get(uri)

    def list_jobs(self) -> List[UploadJob]:
        return list(self._jobs.values())

    def num_running(self) -> int:
        return sum(1 for job in self._jobs.values() if job.is_running)

    def status_counts(self) -> Dict[str, int]:
        return dict(Counter(job.status.status.value for job in self._jobs.values()))

    async def stop(self) -> None:
        self._stopping = True
        pending_jobs = {}
        for job in list(self._jobs.values()):
            job.cancel("canceled")
            if job.task is not None and not job.task.done():
                pending_jobs[job.task] = job
        if not pending_jobs:
            return
        _, pending = await asyncio.wait(pending_jobs, timeout=SHUTDOWN_GRACE_SEC)
        for task in pending:
            job = pending_jobs[task]
            logger.warning("Upload process for {} ignored interrupt, killing", job.uri)
            job.kill()
        if pending:
            await asyncio.wait(pending, timeout=SHUTDOWN_GRACE_SEC)

    def _store(self, job: UploadJob) -> UploadJob:
        current = self._jobs.get(job.uri)
        if current is not None and current is not job:
            if current.is_running:
                return current
            if current.status.status is JobStatus.QUEUED:
                current.cancel("superseded")
        self._jobs[job.uri] = job
        return job

    def _on_job_status_change(self, job: UploadJob) -> None:
        self._process_queued_jobs()

    def _process_queued_jobs(self) -> None:
        """Promote queued jobs, oldest first, until the ceiling is reached."""
        if self._stopping:
            return
        queued = sorted(
            (j for j in self._jobs.values() if j.status.status is JobStatus.QUEUED),
            key=lambda j: j.timestamp_created,
        )
        for job in queued:
            if self.num_running() >= self._max_concurrent_uploads:
                break
            # an earlier start may already have promoted this job re-entrantly
            if job.status.status is not JobStatus.QUEUED:
                continue
            logger.info("Starting upload: {}", job.uri)
            job.start_upload()
