"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional

from resource_agent.jobs.models import UploadStatus


class JobDispatcher(ABC):
    """Abstract interface the session uses to drive uploads."""

    @abstractmethod
    async def submit(
        self, uri: str, request_id: Optional[str] = None, timeout_msec: float = 0
    ) -> UploadStatus:
        """Submit an upload. Returns the status after waiting at most timeout_msec."""
        ...

    @abstractmethod
    def cancel(self, request_id: str) -> bool:
        """Cancel the job created by request_id, if it is still in progress."""
        ...

    @abstractmethod
    def get_status(self, uri: str) -> Optional[UploadStatus]:
        """Get current status of the job tracked for uri."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Cancel outstanding work on shutdown."""
        ...
