"""Shared fakes and fixtures for resource agent tests."""

import asyncio
import json
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Dict, List, Optional

import aiohttp
import pytest

from resource_agent.config import Settings
from resource_agent.jobs.executor import SubprocessResult
from resource_agent.jobs.models import FileInfo

SHA_A = "a" * 40
SHA_B = "b" * 40
SHA_C = "c" * 40
URI_A = f"sha1://{SHA_A}"
URI_B = f"sha1://{SHA_B}"
URI_C = f"sha1://{SHA_C}"


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class FakeLocator:
    """Resolves URIs from a dict; records every lookup."""

    def __init__(self, files: Optional[Dict[str, FileInfo]] = None, error: Optional[Exception] = None):
        self.files = files or {}
        self.error = error
        self.calls: List[str] = []

    async def resolve(self, uri: str) -> Optional[FileInfo]:
        self.calls.append(uri)
        if self.error is not None:
            raise self.error
        return self.files.get(uri)


class FakeProcess:
    """Upload process that exits when the test says so."""

    def __init__(
        self,
        path: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
        wait_error: Optional[Exception] = None,
        ignore_interrupt: bool = False,
    ):
        self.path = path
        self.cancel_calls = 0
        self.kill_calls = 0
        self.ignore_interrupt = ignore_interrupt
        self._result: asyncio.Future = asyncio.get_running_loop().create_future()
        if wait_error is not None:
            self._result.set_exception(wait_error)
        elif exit_code is not None:
            self.finish(exit_code, stderr)

    def finish(self, exit_code: int, stderr: str = "") -> None:
        if not self._result.done():
            self._result.set_result(SubprocessResult(
                success=(exit_code == 0), return_code=exit_code, stdout="", stderr=stderr,
            ))

    def cancel(self) -> None:
        self.cancel_calls += 1
        if not self.ignore_interrupt:
            self.finish(-2, "interrupted")

    def kill(self) -> None:
        self.kill_calls += 1
        self.finish(-9, "killed")

    async def wait(self) -> SubprocessResult:
        return await self._result


class FakeExecutor:
    name = "kachery-cloud-store"

    def __init__(
        self,
        exit_code: Optional[int] = None,
        start_error: Optional[Exception] = None,
        wait_errors: Optional[List[Exception]] = None,
        ignore_interrupt: bool = False,
    ):
        self.exit_code = exit_code
        self.start_error = start_error
        # consumed one per started process
        self.wait_errors = list(wait_errors or [])
        self.ignore_interrupt = ignore_interrupt
        self.processes: List[FakeProcess] = []

    @property
    def started_paths(self) -> List[str]:
        return [p.path for p in self.processes]

    def process_for(self, path: str) -> FakeProcess:
        return next(p for p in self.processes if p.path == path)

    async def start(self, path: str) -> FakeProcess:
        if self.start_error is not None:
            raise self.start_error
        wait_error = self.wait_errors.pop(0) if self.wait_errors else None
        process = FakeProcess(
            path,
            exit_code=self.exit_code,
            wait_error=wait_error,
            ignore_interrupt=self.ignore_interrupt,
        )
        self.processes.append(process)
        return process


class FakeWebSocket:
    """Stands in for an aiohttp client websocket."""

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, payload) -> None:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def feed_close(self) -> None:
        self._inbox.put_nowait(None)

    def sent_of_type(self, message_type: str) -> List[dict]:
        return [m for m in self.sent if m.get("type") == message_type]

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("websocket is closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True

    def exception(self):
        return None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        msg = await self._inbox.get()
        if msg is None:
            self.closed = True
            raise StopAsyncIteration
        return msg


class FakeConnector:
    """``connect`` callable handing out queued fake websockets in order."""

    def __init__(self, *sockets: FakeWebSocket):
        self.sockets = list(sockets)
        self.urls: List[str] = []

    def __call__(self, url: str):
        self.urls.append(url)
        ws = self.sockets.pop(0)

        @asynccontextmanager
        async def _connection():
            try:
                yield ws
            finally:
                ws.closed = True

        return _connection()


@pytest.fixture
def file_a():
    return FileInfo(path=f"/data/{SHA_A}", size=100)


@pytest.fixture
def file_b():
    return FileInfo(path=f"/data/{SHA_B}", size=200)


@pytest.fixture
def file_c():
    return FileInfo(path=f"/data/{SHA_C}", size=300)


@pytest.fixture
def locator(file_a, file_b, file_c):
    return FakeLocator({URI_A: file_a, URI_B: file_b, URI_C: file_c})


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def agent_settings():
    return Settings(
        resource_name="test-resource",
        kachery_zone=None,
        proxy_url="https://proxy.example.org",
        proxy_secret="s3cret",
        keepalive_startup_delay_sec=60.0,
        keepalive_interval_sec=60.0,
        reconnect_delay_sec=0.0,
    )
