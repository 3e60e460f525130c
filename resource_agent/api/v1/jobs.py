"""Read-only view of the upload job table."""

from fastapi import APIRouter, HTTPException

router = APIRouter()

# Set by main.py during lifespan
_job_table = None


def set_job_table(job_table):
    global _job_table
    _job_table = job_table


def _require_table():
    if _job_table is None:
        raise HTTPException(status_code=503, detail="Job table not initialized")
    return _job_table


@router.get("/jobs")
async def list_jobs():
    """All tracked upload jobs, oldest first."""
    table = _require_table()
    jobs = sorted(table.list_jobs(), key=lambda j: j.timestamp_created)
    return {
        "max_concurrent_uploads": table.max_concurrent_uploads,
        "running": table.num_running(),
        "jobs": [job.to_record() for job in jobs],
    }


@router.get("/jobs/{sha1}")
async def get_job(sha1: str):
    table = _require_table()
    job = table.get_job(f"sha1://{sha1}")
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_record()
