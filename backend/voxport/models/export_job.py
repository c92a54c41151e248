import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from voxport.models.base import Base, TimestampMixin

# Opaque payloads: JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
Payload = JSON().with_variant(JSONB(), "postgresql")

JOB_STATUSES = ("pending", "processing", "completed", "failed")
TERMINAL_STATUSES = frozenset({"completed", "failed"})
EXPORT_KINDS = ("mp3", "mp4", "carousel")


def new_job_id() -> str:
    return f"export_{uuid.uuid4().hex}"


class ExportJob(Base, TimestampMixin):
    __tablename__ = "export_jobs"
    __table_args__ = (
        Index("idx_export_jobs_status_created", "status", "created_at"),
        Index("idx_export_jobs_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(100), primary_key=True, default=new_job_id)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, default="anonymous")
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    # Input
    audio_url: Mapped[str] = mapped_column(Text, nullable=False)
    transcript_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    template_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    manifest: Mapped[dict[str, Any] | None] = mapped_column(Payload, nullable=True)
    template_data: Mapped[dict[str, Any] | None] = mapped_column(Payload, nullable=True)
    style: Mapped[dict[str, Any] | None] = mapped_column(Payload, nullable=True)

    # Status: pending, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_stage: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Output
    output_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Error handling
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Observability
    worker_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<ExportJob {self.id} {self.kind} ({self.status})>"
