"""Content locator for the local kachery-cloud storage directory.

Files are addressed by sha1 and sharded three levels deep:

    <root>/sha1/ab/cd/ef/abcdef...          stored file
    <root>/linked_files/sha1/ab/cd/ef/...   JSON pointer to a file kept elsewhere
"""

import asyncio
import json
import os
from typing import Optional

from resource_agent.jobs.models import FileInfo
from resource_agent.logging_config import get_logger
from resource_agent.protocol.messages import uri_hash

logger = get_logger(name=__name__)


class ContentLocator:
    """Resolves content URIs to local files. Holds no mutable state."""

    def __init__(self, root_dir: str):
        self._root_dir = root_dir

    @property
    def root_dir(self) -> str:
        return self._root_dir

    def stored_path(self, sha1: str) -> str:
        return os.path.join(self._root_dir, "sha1", *_shards(sha1), sha1)

    def link_path(self, sha1: str) -> str:
        return os.path.join(self._root_dir, "linked_files", "sha1", *_shards(sha1), sha1)

    async def resolve(self, uri: str) -> Optional[FileInfo]:
        """Return the file backing ``uri``, or None when it is not available locally.

        File system access runs in the default executor so the event loop
        keeps serving other jobs and messages.
        """
        sha1 = uri_hash(uri)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._resolve_sync, sha1)

    def _resolve_sync(self, sha1: str) -> Optional[FileInfo]:
        path = self.stored_path(sha1)
        try:
            return FileInfo(path=path, size=os.stat(path).st_size)
        except OSError:
            return self._resolve_link(sha1)

    def _resolve_link(self, sha1: str) -> Optional[FileInfo]:
        link_path = self.link_path(sha1)
        if not os.path.exists(link_path):
            return None
        try:
            with open(link_path, "r", encoding="utf-8") as f:
                link = json.load(f)
            path = link["path"]
            recorded_size = link["size"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Unreadable link file {}: {}", link_path, e)
            return None
        try:
            size = os.stat(path).st_size
        except (OSError, TypeError, ValueError):
            return None
        # mtime is recorded too but deliberately not compared
        if size != recorded_size:
            logger.warning("Linked file {} changed size ({} != {})", path, size, recorded_size)
            return None
        return FileInfo(path=path, size=size)


def _shards(sha1: str):
    return sha1[0:2], sha1[2:4], sha1[4:6]
