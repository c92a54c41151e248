"""Durable export job table access.

The ``export_jobs`` table is the queue: workers claim the oldest pending row
with a conditional UPDATE, so at most one worker ever moves a given job out
of ``pending``.
"""

import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from voxport.models.base import utcnow
from voxport.models.database import get_session_maker, get_sync_db
from voxport.models.export_job import (
    EXPORT_KINDS,
    JOB_STATUSES,
    TERMINAL_STATUSES,
    ExportJob,
    new_job_id,
)

logger = logging.getLogger(__name__)


class ExportJobStore:
    """Persistence and atomic dispatch for export jobs."""

    def __init__(self, session_maker: sessionmaker[Session] | None = None):
        self._session_maker = session_maker or get_session_maker()

    def submit(
        self,
        *,
        kind: str,
        audio_url: str,
        user_id: str = "anonymous",
        transcript_id: str | None = None,
        template_id: str | None = None,
        manifest: dict[str, Any] | None = None,
        template_data: dict[str, Any] | None = None,
        style: dict[str, Any] | None = None,
        job_id: str | None = None,
    ) -> str:
        """Insert a pending job and return its id."""
        if kind not in EXPORT_KINDS:
            raise ValueError(f"Invalid export kind: {kind}")

        job = ExportJob(
            id=job_id or new_job_id(),
            user_id=user_id,
            kind=kind,
            audio_url=audio_url,
            transcript_id=transcript_id,
            template_id=template_id,
            manifest=manifest,
            template_data=template_data,
            style=style or {},
            status="pending",
            progress=0,
        )
        with get_sync_db(self._session_maker) as db:
            db.add(job)

        logger.info(f"[SUBMIT] Job {job.id} queued ({kind})")
        return job.id

    def claim(self, job_id: str, worker_id: str | None = None) -> bool:
        """Flip one job from pending to processing.

        Returns False when the row is missing or another worker already
        claimed it.
        """
        with get_sync_db(self._session_maker) as db:
            return self._claim(db, job_id, worker_id)

    def claim_next(self, worker_id: str | None = None) -> ExportJob | None:
        """Claim the oldest pending job, or return None when there is none.

        A lost race also returns None; the caller retries on its next poll.
        """
        with get_sync_db(self._session_maker) as db:
            # FOR UPDATE SKIP LOCKED on PostgreSQL, no-op on SQLite
            candidate = db.execute(
                select(ExportJob.id)
                .where(ExportJob.status == "pending")
                .order_by(ExportJob.created_at, ExportJob.id)
                .limit(1)
                .with_for_update(skip_locked=True)
            ).scalar_one_or_none()

            if candidate is None:
                return None

            if not self._claim(db, candidate, worker_id):
                logger.debug(f"[CLAIM] Lost race for {candidate}")
                return None

            job = db.get(ExportJob, candidate)

        logger.info(f"[CLAIM] {worker_id or 'worker'} claimed {candidate}")
        return job

    def _claim(self, db: Session, job_id: str, worker_id: str | None) -> bool:
        now = utcnow()
        result = db.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id, ExportJob.status == "pending")
            .values(
                status="processing",
                worker_id=worker_id,
                started_at=now,
                updated_at=now,
                current_stage="Claimed",
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_status(
        self,
        job_id: str,
        status: str,
        *,
        progress: int | None = None,
        current_stage: str | None = None,
        output_key: str | None = None,
        output_url: str | None = None,
        output_size: int | None = None,
        error_message: str | None = None,
        duration_ms: int | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Write a status transition; only the fields given are changed.

        Terminal rows are never touched. With ``worker_id`` the update only
        applies while that worker still holds the job in ``processing``.

        Returns:
            True if the row was updated
        """
        if status not in JOB_STATUSES:
            raise ValueError(f"Invalid job status: {status}")

        now = utcnow()
        values: dict[str, Any] = {"status": status, "updated_at": now}
        optional = {
            "progress": progress,
            "current_stage": current_stage,
            "output_key": output_key,
            "output_url": output_url,
            "output_size": output_size,
            "error_message": error_message,
            "duration_ms": duration_ms,
        }
        values.update({k: v for k, v in optional.items() if v is not None})
        if status in TERMINAL_STATUSES:
            values["completed_at"] = now

        conditions = [ExportJob.id == job_id, ExportJob.status.not_in(sorted(TERMINAL_STATUSES))]
        if worker_id is not None:
            conditions += [ExportJob.status == "processing", ExportJob.worker_id == worker_id]

        with get_sync_db(self._session_maker) as db:
            result = db.execute(
                update(ExportJob)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated = result.rowcount == 1

        if not updated:
            logger.warning(f"[STATUS] Ignored {status} for {job_id}: job is terminal or owned elsewhere")
        return updated

    def get(self, job_id: str) -> ExportJob | None:
        with get_sync_db(self._session_maker) as db:
            return db.get(ExportJob, job_id)

    def get_status(self, job_id: str) -> dict[str, Any] | None:
        job = self.get(job_id)
        if job is None:
            return None
        return {
            "job_id": job.id,
            "status": job.status,
            "progress": job.progress,
            "output_url": job.output_url,
            "output_size": job.output_size,
            "error": job.error_message,
            "created_at": job.created_at,
            "completed_at": job.completed_at,
        }

    def list_by_user(self, user_id: str, limit: int = 20, offset: int = 0) -> list[ExportJob]:
        """Jobs for one user, newest first."""
        with get_sync_db(self._session_maker) as db:
            result = db.execute(
                select(ExportJob)
                .where(ExportJob.user_id == user_id)
                .order_by(ExportJob.created_at.desc(), ExportJob.id.desc())
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    def fail_stale(self, max_age_s: float) -> int:
        """Fail processing jobs claimed more than ``max_age_s`` ago.

        Returns:
            Number of jobs marked failed
        """
        now = utcnow()
        cutoff = now - timedelta(seconds=max_age_s)
        with get_sync_db(self._session_maker) as db:
            result = db.execute(
                update(ExportJob)
                .where(ExportJob.status == "processing", ExportJob.started_at < cutoff)
                .values(
                    status="failed",
                    error_message="Job timed out",
                    current_stage="Timed out",
                    updated_at=now,
                    completed_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount

        if count:
            logger.warning(f"[STALE] Marked {count} stale job(s) as failed")
        return count
