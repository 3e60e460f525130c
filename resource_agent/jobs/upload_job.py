"""Upload job: lifecycle of one content URI.

    created --resolve--> queued --admit--> running --> completed | error
            \\--------> not-found        \\--cancel--> error("canceled")

Status changes are delivered synchronously to registered observers, in
registration order, before the transition returns.
"""

import asyncio
import time
from typing import Callable, List, Optional

from resource_agent.jobs.executor import UploadExecutor, UploadProcess
from resource_agent.jobs.models import FileInfo, JobStatus, UploadStatus
from resource_agent.logging_config import get_logger

logger = get_logger(name=__name__)

StatusObserver = Callable[["UploadJob"], None]


def now_msec() -> int:
    return int(time.time() * 1000)


class _Subscription:
    __slots__ = ("callback",)

    def __init__(self, callback: StatusObserver):
        self.callback = callback


class UploadJob:
    """Tracks the upload of a single content URI."""

    def __init__(self, uri: str, executor: UploadExecutor, request_id: Optional[str] = None):
        self.uri = uri
        self.request_id = request_id
        self.timestamp_created = time.monotonic_ns()
        self._executor = executor
        self._status: Optional[UploadStatus] = None
        self._file_info: Optional[FileInfo] = None
        self._subscriptions: List[_Subscription] = []
        self._process: Optional[UploadProcess] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> Optional[UploadStatus]:
        return self._status

    @property
    def file_info(self) -> Optional[FileInfo]:
        return self._file_info

    @property
    def is_running(self) -> bool:
        return self._status is not None and self._status.status is JobStatus.RUNNING

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def initialize(self, locator) -> None:
        """Resolve the local file; the job ends up queued or not-found."""
        timestamp_requested = now_msec()
        try:
            self._file_info = await locator.resolve(self.uri)
        except Exception as e:
            logger.warning("Lookup failed for {}: {}", self.uri, e)
            self._file_info = None

        if self._file_info is not None:
            self._set_status(UploadStatus(
                status=JobStatus.QUEUED,
                size=self._file_info.size,
                bytes_uploaded=0,
                timestamp_requested=timestamp_requested,
            ))
        else:
            self._set_status(UploadStatus(status=JobStatus.NOT_FOUND))

    # ---------------------------------------------------------------------------
    # Observers
    # ---------------------------------------------------------------------------

    def on_status_change(self, callback: StatusObserver) -> Callable[[], None]:
        """Register ``callback(job)``. Returns a disposer that unregisters it."""
        subscription = _Subscription(callback)
        self._subscriptions.append(subscription)

        def dispose() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return dispose

    async def wait_for_completed(self, timeout_msec: float) -> None:
        """Wait until the job leaves queued/running or the timeout elapses.

        Timing out only stops the wait; the job keeps going.
        """
        if self._status is None or self._status.status.terminal:
            return
        done = asyncio.get_running_loop().create_future()

        def _check(job: "UploadJob") -> None:
            if job.status.status.terminal and not done.done():
                done.set_result(None)

        dispose = self.on_status_change(_check)
        try:
            await asyncio.wait({done}, timeout=max(0.0, timeout_msec / 1000))
        finally:
            dispose()
            if not done.done():
                done.cancel()

    # ---------------------------------------------------------------------------
    # Transitions
    # ---------------------------------------------------------------------------

    def start_upload(self) -> bool:
        """Move a queued job to running and launch the upload command."""
        if self._status is None or self._status.status is not JobStatus.QUEUED:
            return False
        self._update_status(status=JobStatus.RUNNING, timestamp_started=now_msec())
        self._task = asyncio.get_running_loop().create_task(self._run_upload())
        return True

    def cancel(self, reason: str = "canceled") -> bool:
        """Fail a queued or running job and interrupt its process, if any."""
        if self._status is None or not self._status.status.in_progress:
            return False
        logger.info("Canceling file upload job for {} ({})", self.uri, reason)
        process = self._process
        self._update_status(status=JobStatus.ERROR, error=reason)
        if process is not None:
            process.cancel()
        return True

    def kill(self) -> None:
        """Force-stop the upload process if one is still attached."""
        if self._process is not None:
            self._process.kill()

    async def _run_upload(self) -> None:
        try:
            process = await self._executor.start(self._file_info.path)
        except Exception as e:
            logger.error("Could not start {} for {}: {}", self._executor.name, self.uri, e)
            self._update_status(
                status=JobStatus.ERROR,
                error=f"Error executing {self._executor.name}: {e}",
            )
            return

        self._process = process
        try:
            if not self.is_running:
                # canceled while the process was being spawned
                process.cancel()
                await process.wait()
                return
            result = await process.wait()
        except Exception as e:
            logger.error("Upload process for {} failed: {}", self.uri, e)
            self._update_status(
                status=JobStatus.ERROR,
                error=f"Error executing {self._executor.name}: {e}",
            )
            return
        finally:
            self._process = None

        if result.success:
            logger.info("Upload completed: {}", self.uri)
            self._update_status(
                status=JobStatus.COMPLETED,
                bytes_uploaded=self._file_info.size,
                timestamp_completed=now_msec(),
            )
        else:
            logger.warning("Upload failed: {} ({})", self.uri, result.diagnostic)
            self._update_status(
                status=JobStatus.ERROR,
                error=f"Error executing {self._executor.name}: {result.diagnostic}",
            )

    def _update_status(self, **changes) -> None:
        if self._status.status.terminal:
            # terminal states are final; late process exits land here
            return
        self._set_status(self._status.updated(**changes))

    def _set_status(self, status: UploadStatus) -> None:
        self._status = status
        for subscription in list(self._subscriptions):
            subscription.callback(self)

    def to_record(self) -> dict:
        record = {"uri": self.uri, "requestId": self.request_id}
        if self._status is not None:
            record.update(self._status.to_payload())
        return record
