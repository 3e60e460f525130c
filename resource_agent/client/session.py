"""Websocket session with the proxy server.

One call to ``ResourceSession.run`` is one connection attempt: connect, send
``initialize``, wait for ``acknowledgeMessageToResource``, then serve client
requests until either side closes. Retrying is left to the caller.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from enum import Enum
from typing import Optional, Set

import aiohttp

from resource_agent.config import Settings, settings as default_settings
from resource_agent.jobs.dispatcher import JobDispatcher
from resource_agent.logging_config import get_logger
from resource_agent.protocol.messages import (
    AcknowledgeMessageToResource,
    CancelRequestFromClientMessage,
    FileUploadRequest,
    FileUploadResponse,
    InitializeMessageFromResource,
    PingMessageFromResource,
    RequestFromClient,
    ResourceRequest,
    ResponseToClient,
    WireMessage,
    parse_proxy_message,
    parse_resource_request,
)

logger = get_logger(name=__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED_UNACKNOWLEDGED = "connected-unacknowledged"
    CONNECTED_ACKNOWLEDGED = "connected-acknowledged"


def websocket_url(proxy_url: str) -> str:
    return proxy_url.replace("http:", "ws:").replace("https:", "wss:")


@asynccontextmanager
async def aiohttp_connect(url: str):
    """Open a websocket with aiohttp; the connection closes on exit."""
    async with aiohttp.ClientSession() as http:
        async with http.ws_connect(url) as ws:
            yield ws


class ResourceSession:
    """Owns at most one live proxy connection at a time."""

    def __init__(
        self,
        dispatcher: JobDispatcher,
        config: Optional[Settings] = None,
        connect=aiohttp_connect,
    ):
        self._dispatcher = dispatcher
        self._settings = config or default_settings
        self._connect = connect
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._send_lock = asyncio.Lock()
        self._keepalive_task: Optional[asyncio.Task] = None
        self._request_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def resource_url(self) -> str:
        return f"{self._settings.proxy_url}/r/{self._settings.resource_name}"

    async def run(self) -> None:
        """Connect once and serve the connection until it closes."""
        if self._state is not ConnectionState.DISCONNECTED:
            logger.error("Websocket already exists.")
            return

        self._state = ConnectionState.CONNECTING
        logger.info("Connecting to {}", self._settings.proxy_url)
        try:
            async with self._connect(websocket_url(self._settings.proxy_url)) as ws:
                self._ws = ws
                self._state = ConnectionState.CONNECTED_UNACKNOWLEDGED
                logger.info("Connected")
                await self._send(InitializeMessageFromResource(
                    resource_name=self._settings.resource_name,
                    zone=self._settings.kachery_zone,
                    proxy_secret=self._settings.proxy_secret,
                ))
                await self._receive_loop(ws)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.warning("Connection to proxy failed: {}", e)
        finally:
            await self._teardown()
            logger.info("Websocket closed.")

    async def _receive_loop(self, ws) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                text = msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                text = msg.data.decode("utf-8", errors="replace")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.warning("Websocket error: {}", ws.exception())
                break
            else:
                continue
            if not self._handle_frame(text):
                await ws.close()
                break

    def _handle_frame(self, text: str) -> bool:
        """Dispatch one inbound frame. Returns False when the connection must close."""
        try:
            message = parse_proxy_message(text)
        except (ValueError, RecursionError):
            logger.error("Error parsing message. Closing.")
            return False

        if isinstance(message, AcknowledgeMessageToResource):
            self._on_acknowledged()
            return True
        if self._state is not ConnectionState.CONNECTED_ACKNOWLEDGED:
            logger.info("Unexpected, message before connection acknowledged. Closing.")
            return False

        if isinstance(message, RequestFromClient):
            task = asyncio.get_running_loop().create_task(self._handle_request_from_client(message))
            self._request_tasks.add(task)
            task.add_done_callback(self._request_tasks.discard)
        elif isinstance(message, CancelRequestFromClientMessage):
            logger.info("Cancel request from client: {}", message.request_id)
            self._dispatcher.cancel(message.request_id)
        else:
            logger.warning("Unexpected message from proxy server: {}", text)
        return True

    def _on_acknowledged(self) -> None:
        logger.info("Connection acknowledged by proxy server")
        logger.info("Resource URL: {}", self.resource_url)
        self._state = ConnectionState.CONNECTED_ACKNOWLEDGED
        if self._keepalive_task is None:
            self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive())

    async def _keepalive(self) -> None:
        await asyncio.sleep(self._settings.keepalive_startup_delay_sec)
        while self._state is ConnectionState.CONNECTED_ACKNOWLEDGED:
            try:
                await self._send(PingMessageFromResource())
            except Exception:
                logger.exception("Keepalive ping failed")
            await asyncio.sleep(self._settings.keepalive_interval_sec)

    async def _handle_request_from_client(self, message: RequestFromClient) -> None:
        request = parse_resource_request(message.request)
        if request is None:
            logger.warning("Received invalid resource request.")
            await self._respond(ResponseToClient(
                request_id=message.request_id, error="Invalid request"
            ))
            return
        try:
            response = await self._handle_request(request, message.request_id)
        except Exception as e:
            logger.warning("Error processing request {}: {}", request.type, e)
            await self._respond(ResponseToClient(
                request_id=message.request_id, error=f"Error handling request: {e}"
            ))
            return
        await self._respond(ResponseToClient(
            request_id=message.request_id,
            response=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        ))

    async def _handle_request(self, request: ResourceRequest, request_id: str) -> FileUploadResponse:
        if isinstance(request, FileUploadRequest):
            status = await self._dispatcher.submit(
                request.uri, request_id=request_id, timeout_msec=request.timeout_msec
            )
            return FileUploadResponse(status=status)
        raise ValueError(f"Unexpected request {request.type}")

    async def _respond(self, response: ResponseToClient) -> None:
        if self._state is not ConnectionState.CONNECTED_ACKNOWLEDGED:
            logger.info("Dropping response for {}: not connected", response.request_id)
            return
        await self._send(response)

    async def _send(self, message: WireMessage) -> None:
        ws = self._ws
        if ws is None:
            return
        try:
            async with self._send_lock:
                await ws.send_str(message.to_json())
        except (ConnectionError, aiohttp.ClientError) as e:
            logger.warning("Could not send {} message: {}", message.type, e)

    async def _teardown(self) -> None:
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
