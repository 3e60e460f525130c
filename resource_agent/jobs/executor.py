"""Async execution of the external upload command.

The command receives the resolved file path as its only extra argument and
reports success through a zero exit code.
"""

import asyncio
import shlex
import signal
from dataclasses import dataclass
from typing import List, Sequence, Union

from resource_agent.logging_config import get_logger

logger = get_logger(name=__name__)


@dataclass
class SubprocessResult:
    """Result from subprocess execution."""
    success: bool
    return_code: int
    stdout: str
    stderr: str

    @property
    def diagnostic(self) -> str:
        text = self.stderr.strip() or self.stdout.strip()
        return text or f"Command exited with code {self.return_code}"


class UploadProcess:
    """A started upload command.

    ``cancel`` is the job's cancellation token: it interrupts the process at
    most once and does nothing after the process has exited.
    """

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self._canceled = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def canceled(self) -> bool:
        return self._canceled

    def cancel(self) -> None:
        if self._canceled:
            return
        self._canceled = True
        if self._process.returncode is not None:
            return
        logger.info("Interrupting upload process {}", self._process.pid)
        try:
            self._process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            # exited between the returncode check and the signal
            pass

    def kill(self) -> None:
        if self._process.returncode is not None:
            return
        logger.warning("Killing upload process {}", self._process.pid)
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> SubprocessResult:
        stdout, stderr = await self._process.communicate()
        return_code = self._process.returncode
        return SubprocessResult(
            success=(return_code == 0),
            return_code=return_code,
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        )


class UploadExecutor:
    """Starts the upload command for a local file."""

    def __init__(self, command: Union[str, Sequence[str]]):
        if isinstance(command, str):
            self._argv: List[str] = shlex.split(command)
        else:
            self._argv = list(command)
        if not self._argv:
            raise ValueError("Upload command must not be empty")

    @property
    def name(self) -> str:
        return self._argv[0]

    async def start(self, path: str) -> UploadProcess:
        """Spawn the command for ``path``. Spawn failures propagate as OSError."""
        process = await asyncio.create_subprocess_exec(
            *self._argv, path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug("Started {} for {} (pid {})", self.name, path, process.pid)
        return UploadProcess(process)
