"""Admin routes for the job scheduler.

Routes:
    GET    /api/v1/admin/jobs                 — Schedule state and recent runs
    POST   /api/v1/admin/jobs/{name}/trigger  — Run a job now
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from negotiation_engine.api.deps import Viewer, get_admin_viewer, get_scheduler
from negotiation_engine.domain.clock import utcnow
from negotiation_engine.logging_config import get_logger
from negotiation_engine.orchestration.scheduler import JobScheduler  # noqa: TC001
from negotiation_engine.schemas.operations import JobRunResponse, SchedulerHealthResponse

router = APIRouter(prefix="/api/v1/admin/jobs", tags=["Admin"])
logger = get_logger(__name__)


@router.get(
    "",
    response_model=SchedulerHealthResponse,
    summary="Scheduler health",
)
async def get_jobs(
    viewer: Viewer = Depends(get_admin_viewer),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> SchedulerHealthResponse:
    reference = utcnow()
    jobs = await scheduler.get_job_health(reference)
    return SchedulerHealthResponse.model_validate({"reference": reference, "jobs": jobs})


@router.post(
    "/{name}/trigger",
    response_model=JobRunResponse,
    summary="Run a job immediately",
)
async def trigger_job(
    name: str,
    viewer: Viewer = Depends(get_admin_viewer),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> JobRunResponse:
    """Raises JOB_ALREADY_RUNNING (409) or JOB_FAILED (500) on the obvious cases."""
    logger.info("api.job_triggered", job=name, by=viewer.user_id)
    run = await scheduler.trigger(name)
    return JobRunResponse.model_validate(run.to_dict())
