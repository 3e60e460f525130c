"""Kachery resource agent - shares local content with a remote proxy.

The FastAPI app only serves a local status view; the real work is the
share loop started in the lifespan.
"""

import asyncio
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI

from resource_agent.api.v1 import health as health_api
from resource_agent.api.v1 import jobs as jobs_api
from resource_agent.api.v1.health import router as health_root_router
from resource_agent.api.v1.router import v1_router
from resource_agent.client.runner import share
from resource_agent.client.session import ResourceSession
from resource_agent.config import settings
from resource_agent.jobs.executor import UploadExecutor
from resource_agent.jobs.job_table import UploadJobTable
from resource_agent.logging_config import configure_logging, get_logger
from resource_agent.storage.locator import ContentLocator

logger = get_logger(name=__name__)


def build_job_table() -> UploadJobTable:
    return UploadJobTable(
        locator=ContentLocator(settings.kachery_cloud_dir),
        executor=UploadExecutor(settings.upload_command),
        max_concurrent_uploads=settings.max_concurrent_uploads,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging()
    logger.info("Starting resource agent '{}'", settings.resource_name)
    logger.info("Proxy: {}", settings.proxy_url)
    logger.info("Kachery cloud dir: {}", settings.kachery_cloud_dir)
    logger.info("Max concurrent uploads: {}", settings.max_concurrent_uploads)

    job_table = build_job_table()
    session = ResourceSession(job_table)
    share_task = asyncio.create_task(share(session))

    jobs_api.set_job_table(job_table)
    health_api.set_session(session, job_table)

    yield

    logger.info("Shutting down resource agent")
    share_task.cancel()
    with suppress(asyncio.CancelledError):
        await share_task
    await job_table.stop()


app = FastAPI(
    title="Kachery Resource Agent",
    description="Serves content upload requests relayed by a kachery resource proxy",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_root_router, tags=["health"])  # GET /health at root
app.include_router(v1_router)


def run() -> None:
    uvicorn.run(app, host=settings.status_host, port=settings.status_port)


if __name__ == "__main__":
    run()
