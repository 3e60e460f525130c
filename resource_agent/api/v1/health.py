"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

router = APIRouter()

_session = None
_job_table = None


def set_session(session, job_table):
    global _session, _job_table
    _session = session
    _job_table = job_table


@router.get("/health")
async def health_check():
    """Agent liveness, proxy connection state and job counts."""
    return {
        "status": "healthy",
        "connection": _session.state.value if _session is not None else "disconnected",
        "jobs": _job_table.status_counts() if _job_table is not None else {},
        "python_version": sys.version,
        "platform": platform.platform(),
    }
