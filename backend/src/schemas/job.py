"""Pydantic schemas for job records and extraction output."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class FieldExtraction(BaseModel):
    """One extracted field: the value, why the model chose it, and a review flag."""

    value: str = ""
    rationale: str = ""
    needs_review: bool = False

    @field_validator("value", "rationale", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        if v is None:
            return ""
        return str(v)

    @field_validator("needs_review", mode="before")
    @classmethod
    def coerce_flag(cls, v: object) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        return bool(v)


class ExportTable(BaseModel):
    """Final output payload written to ``jobs.extracted_data``."""

    headers: list[str]
    rows: list[dict[str, str]]
    logic_headers: list[str]
    logic_rows: list[dict[str, str]]


class JobStatusResponse(BaseModel):
    id: str
    status: str
    style_count: int | None
    progress_percent: int
    current_style: str | None
    downloads_done: int = Field(0, description="Number of styles with a downloaded tech pack")
    extractions_done: int = Field(0, description="Number of styles with stored extraction results")
    successful_count: int | None
    failed_count: int | None
    error_message: str | None
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Any) -> "JobStatusResponse":
        return cls(
            id=job.id,
            status=job.status,
            style_count=job.style_count,
            progress_percent=job.progress_percent,
            current_style=job.current_style,
            downloads_done=len(job.completed_downloads or []),
            extractions_done=len(job.completed_extractions or []),
            successful_count=job.successful_count,
            failed_count=job.failed_count,
            error_message=job.error_message,
            updated_at=job.updated_at,
        )


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
