# outreach_server/routers/jobs.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from daily_outreach import conf
from outreach_server.auth import verify_api_key
from outreach_server.schemas.jobs import ExecutionLogResponse, JobStatusResponse, TriggerResponse
from outreach_server.services.scheduler import OutreachScheduler, get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/users/{user_id}/outreach/job", response_model=JobStatusResponse)
def get_job_endpoint(
    user_id: int,
    logs: int = Query(10, ge=0, le=100, description="Number of recent executions to include"),
    scheduler: OutreachScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Get the scheduler job and its recent executions."""
    job_status = scheduler.get_job_status(user_id)
    if job_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No outreach job for user")

    executions = scheduler.jobs.list_logs(user_id, limit=logs) if logs else []
    return JobStatusResponse(
        **job_status,
        recent_executions=[
            ExecutionLogResponse(
                executed_at=log.executed_at,
                status=log.status,
                batch_id=log.batch_id,
                processing_time_ms=log.processing_time_ms,
                contacts_processed=log.contacts_processed,
                error_message=log.error_message,
            )
            for log in executions
        ],
    )


@router.post("/users/{user_id}/outreach/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
def trigger_job_endpoint(
    user_id: int,
    scheduler: OutreachScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Run a user's job now. Disabled in production."""
    if conf.ENVIRONMENT == "production":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Manual trigger is disabled in production")

    if scheduler.jobs.get_job(user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No outreach job for user")

    if not scheduler.run_now(user_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is already running or no worker is free")

    logger.info("Manual trigger accepted for user %s", user_id)
    return TriggerResponse(user_id=user_id, accepted=True, message="Job started")
