"""Keeps the resource shared: reconnects to the proxy forever with a fixed delay."""

import asyncio
from typing import Optional

from resource_agent.client.session import ResourceSession
from resource_agent.config import settings
from resource_agent.logging_config import get_logger

logger = get_logger(name=__name__)


async def share(session: ResourceSession, reconnect_delay_sec: Optional[float] = None) -> None:
    """Run connection attempts back to back until cancelled.

    Job state lives in the session's dispatcher and survives reconnects.
    """
    delay = settings.reconnect_delay_sec if reconnect_delay_sec is None else reconnect_delay_sec
    while True:
        try:
            await session.run()
        except Exception:
            logger.exception("Resource session failed")
        logger.info("Disconnected. Will try again in {} seconds.", delay)
        await asyncio.sleep(delay)
