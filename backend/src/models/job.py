"""Job ORM model: the persisted record of one tech pack extraction run."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Integer, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.db import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")

# status: queued | processing | ready_for_export | failed
JOB_STATUSES = ("queued", "processing", "ready_for_export", "failed")


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable across SQLite and PostgreSQL columns."""
    return datetime.now(UTC).replace(tzinfo=None)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="queued")
    input_file_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    style_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_style: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Resume tracking: style keys whose download / extraction has succeeded.
    completed_downloads: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    completed_extractions: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    # style key -> {field_name: {value, rationale, needs_review}}; keys == completed_extractions.
    partial_extractions: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False, default=dict)
    successful_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    failed_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_data: Mapped[dict[str, Any] | None] = mapped_column(_JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, server_default=func.now()
    )
    # Heartbeat timestamp; every write through JobStore refreshes it.
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=utcnow, server_default=func.now()
    )
