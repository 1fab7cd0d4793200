"""Read-only job status API router."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from src.db import get_session
from src.models.job import Job
from src.schemas.job import ExportTable, JobStatusResponse
from src.services.job_store import JobNotFoundError

router = APIRouter()


def _get_job(job_id: str, db: Session) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise JobNotFoundError(f"Job not found: {job_id}")
    return job


@router.get("/{job_id}")
def job_status(job_id: str, db: Session = Depends(get_session)) -> JobStatusResponse:
    """Return status, progress and failure details for a job."""
    return JobStatusResponse.from_job(_get_job(job_id, db))


@router.get("/{job_id}/export")
def job_export(job_id: str, db: Session = Depends(get_session)) -> ExportTable:
    """Return the assembled output tables once the job is ready for export."""
    job = _get_job(job_id, db)
    if job.status != "ready_for_export" or job.extracted_data is None:
        raise HTTPException(status_code=409, detail=f"Job is {job.status}, not ready for export")
    data: dict[str, Any] = job.extracted_data
    return ExportTable.model_validate(data)
