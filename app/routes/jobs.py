"""Job dashboard and manual trigger routes.

- GET  /api/v1/jobs                      - Persisted status of every job
- POST /api/v1/jobs/{task_name}/trigger  - Run a job now (202 / 404 / 409)
- GET  /api/v1/queue                     - Submission queue snapshot
"""

import structlog
from fastapi import APIRouter, HTTPException, Request, status

from app.entrypoints import Runtime
from app.schemas.jobs import JobStatusResponse, QueueSnapshotResponse, TriggerResponse
from app.services.job_runner import TriggerResult

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["jobs"])


def get_runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not running (DATABASE_URL not configured)",
        )
    return runtime


@router.get("/jobs", response_model=list[JobStatusResponse])
async def list_jobs(request: Request) -> list[JobStatusResponse]:
    runtime = get_runtime(request)
    rows = await runtime.status_store.list_all()
    return [
        JobStatusResponse.model_validate(row).model_copy(
            update={"is_running": runtime.runner.is_running(row.task_name)}
        )
        for row in rows
    ]


@router.post(
    "/jobs/{task_name}/trigger",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=TriggerResponse,
)
async def trigger_job(task_name: str, request: Request) -> TriggerResponse:
    """Start a job immediately.

    Returns:
        202 Accepted: Run started in the background
        404 Not Found: Unknown task name
        409 Conflict: The job is already running (never queued)
    """
    runtime = get_runtime(request)
    try:
        result = await runtime.runner.trigger_now(task_name)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=f"Unknown job: {task_name}") from e

    if result == TriggerResult.BUSY:
        log.info("job_trigger_rejected_busy", task_name=task_name)
        raise HTTPException(status_code=409, detail=f"Job {task_name} is already running")

    return TriggerResponse(task_name=task_name, result=result.value)


@router.get("/queue", response_model=QueueSnapshotResponse)
async def queue_snapshot(request: Request) -> QueueSnapshotResponse:
    runtime = get_runtime(request)
    return QueueSnapshotResponse(**runtime.queue.snapshot())
