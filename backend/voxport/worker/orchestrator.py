"""Export worker: polls the job table and runs each claimed job to completion."""

import logging
import shutil
import threading
import time
import zipfile
from pathlib import Path
from urllib.parse import urlparse

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from voxport.config import Settings, get_settings
from voxport.exceptions import (
    InvalidManifestError,
    JobOwnershipLostError,
    MissingAudioError,
    StagingError,
    UnsupportedExportKindError,
)
from voxport.models.export_job import ExportJob
from voxport.render.encoder import FFmpegEncoder
from voxport.render.frame_renderer import RenderTask
from voxport.render.storyboard import build_carousel, build_storyboard, choose_fps
from voxport.render.worker_pool import FrameWorkerPool, render_frames
from voxport.schemas.export import Manifest, StyleTemplate
from voxport.services.job_store import ExportJobStore
from voxport.services.storage_service import StorageService
from voxport.services.template_service import TemplateService

logger = logging.getLogger(__name__)

OUTPUT_EXTENSIONS = {"mp3": "mp3", "mp4": "mp4", "carousel": "zip"}


class JobWorkspace:
    """Scratch directory for one job; every tracked file is removed on exit."""

    def __init__(self, root: Path, job_id: str):
        self.dir = Path(root) / job_id
        self._tracked: list[Path] = []

    def __enter__(self) -> "JobWorkspace":
        self.dir.mkdir(parents=True, exist_ok=True)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    @property
    def tracked(self) -> list[Path]:
        return list(self._tracked)

    def path(self, name: str) -> Path:
        path = self.dir / name
        self.track(path)
        return path

    def track(self, path: Path) -> Path:
        self._tracked.append(path)
        return path

    def cleanup(self) -> None:
        for path in self._tracked:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"[CLEANUP] Failed to remove {path}: {e}")
        shutil.rmtree(self.dir, ignore_errors=True)


class ExportWorker:
    """Claims pending export jobs and produces their artifacts.

    The render pool is owned by the caller; this class only submits to it.
    """

    def __init__(
        self,
        store: ExportJobStore,
        storage: StorageService,
        encoder: FFmpegEncoder,
        pool: FrameWorkerPool,
        templates: TemplateService | None = None,
        settings: Settings | None = None,
        worker_id: str | None = None,
        poll_interval_s: float | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.storage = storage
        self.encoder = encoder
        self.pool = pool
        self.templates = templates or TemplateService()
        self.worker_id = worker_id or self.settings.worker_id
        self.poll_interval_s = (
            poll_interval_s if poll_interval_s is not None else self.settings.worker_poll_interval_s
        )
        self.temp_dir = Path(self.settings.export_temp_dir)
        self._stop = threading.Event()
        self._last_stale_check: float | None = None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self) -> None:
        """Poll until stop() is called. Sleeps only when no job was claimed."""
        self._stop.clear()
        logger.info(f"[WORKER] {self.worker_id} polling every {self.poll_interval_s}s")

        while not self._stop.is_set():
            claimed = False
            try:
                self._sweep_stale()
                claimed = self.run_once()
            except SQLAlchemyError as e:
                logger.error(f"[WORKER] Job store error, backing off: {e}")
            except Exception:
                logger.exception("[WORKER] Unexpected error in poll loop")

            if not claimed:
                self._stop.wait(self.poll_interval_s)

        logger.info(f"[WORKER] {self.worker_id} stopped")

    def stop(self) -> None:
        self._stop.set()

    def run_once(self) -> bool:
        """Claim and process at most one job. Returns True if a job was claimed."""
        job = self.store.claim_next(self.worker_id)
        if job is None:
            return False
        self.process(job)
        return True

    def _sweep_stale(self) -> None:
        timeout_s = self.settings.stale_job_timeout_s
        if timeout_s <= 0:
            return
        now = time.monotonic()
        if (
            self._last_stale_check is not None
            and now - self._last_stale_check < self.settings.stale_check_interval_s
        ):
            return
        self._last_stale_check = now
        self.store.fail_stale(timeout_s)

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process(self, job: ExportJob) -> bool:
        """Run one claimed job; the outcome is always persisted.

        Returns:
            True if the job completed, False if it was marked failed
        """
        started = time.monotonic()
        logger.info(f"[JOB] Processing {job.id} ({job.kind})")

        try:
            with JobWorkspace(self.temp_dir, job.id) as workspace:
                output_path = self._produce(job, workspace)

                self._progress(job.id, 95, "Uploading output")
                output_size = output_path.stat().st_size
                storage_key = f"{job.id}.{OUTPUT_EXTENSIONS[job.kind]}"
                output_url = self.storage.publish(output_path, storage_key)

            duration_ms = int((time.monotonic() - started) * 1000)
            completed = self.store.update_status(
                job.id,
                "completed",
                progress=100,
                current_stage="Complete",
                output_key=storage_key,
                output_url=output_url,
                output_size=output_size,
                duration_ms=duration_ms,
                worker_id=self.worker_id,
            )
            if not completed:
                raise JobOwnershipLostError(job.id)
            logger.info(
                f"[JOB] Completed {job.id}: {output_size / 1024 / 1024:.2f} MB "
                f"in {duration_ms / 1000:.1f}s"
            )
            return True

        except JobOwnershipLostError as e:
            logger.warning(f"[JOB] Abandoned {job.id}: {e}")
            return False

        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception(f"[JOB] Failed {job.id}: {message}")
            self.store.update_status(
                job.id,
                "failed",
                current_stage="Failed",
                error_message=message,
                duration_ms=int((time.monotonic() - started) * 1000),
                worker_id=self.worker_id,
            )
            return False

    def _produce(self, job: ExportJob, workspace: JobWorkspace) -> Path:
        if job.kind == "carousel":
            return self._export_carousel(job, workspace)

        if job.kind not in ("mp3", "mp4"):
            raise UnsupportedExportKindError(job.kind)
        if not job.audio_url:
            raise MissingAudioError()

        upload = self.storage.owned_upload(job.audio_url)
        if upload is not None:
            workspace.track(upload)
        self._progress(job.id, 10, "Staging input")
        suffix = Path(urlparse(job.audio_url).path).suffix or ".webm"
        input_path = self.storage.stage_input(
            job.audio_url, workspace.path(f"{job.id}_input{suffix}")
        )
        if not self.encoder.has_audio(input_path):
            raise StagingError("Input has no audio track")

        if job.kind == "mp3":
            self._progress(job.id, 80, "Encoding audio")
            return self.encoder.transcode_audio(input_path, workspace.path(f"{job.id}.mp3"))
        return self._export_video(job, workspace, input_path)

    def _export_video(self, job: ExportJob, workspace: JobWorkspace, audio_path: Path) -> Path:
        manifest = self._load_manifest(job)
        template = self._resolve_template(job)

        self._progress(job.id, 25, "Building storyboard")
        frames = build_storyboard(
            manifest,
            template,
            total_duration_ms=self._probe_audio_ms(audio_path),
            min_frame_ms=self.settings.min_frame_ms,
        )
        tasks = [
            RenderTask(frame, template, workspace.path(f"frame_{frame.index:05d}.png"))
            for frame in frames
        ]

        self._progress(job.id, 30, f"Rendering {len(tasks)} frames")
        rendered = render_frames(self.pool, tasks, on_progress=self._render_progress(job.id))

        self._progress(job.id, 80, "Encoding video")
        concat_path = self.encoder.write_concat_list(rendered, workspace.path("frames.ffconcat"))
        return self.encoder.mux_video(
            concat_path, audio_path, workspace.path(f"{job.id}.mp4"), choose_fps(len(frames))
        )

    def _export_carousel(self, job: ExportJob, workspace: JobWorkspace) -> Path:
        manifest = self._load_manifest(job)
        template = self._resolve_template(job)

        self._progress(job.id, 25, "Laying out slides")
        slides = build_carousel(manifest, template)
        if not slides:
            raise InvalidManifestError("Carousel export requires transcript text")
        tasks = [
            RenderTask(slide, template, workspace.path(f"slide_{slide.index + 1:02d}.png"))
            for slide in slides
        ]

        self._progress(job.id, 30, f"Rendering {len(tasks)} slides")
        rendered = render_frames(self.pool, tasks, on_progress=self._render_progress(job.id))

        self._progress(job.id, 80, "Packaging slides")
        archive_path = workspace.path(f"{job.id}.zip")
        prefix = f"voxport_{manifest.transcript_id or job.id}_{template.aspect}"
        with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as archive:
            for frame in rendered:
                archive.write(frame.path, f"{prefix}_{frame.index + 1}.png")
        return archive_path

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_manifest(self, job: ExportJob) -> Manifest:
        if not job.manifest:
            raise InvalidManifestError(f"{job.kind} export requires a manifest")
        try:
            manifest = Manifest.model_validate(job.manifest)
        except ValidationError as e:
            raise InvalidManifestError(f"Manifest is invalid: {e.error_count()} error(s)") from e
        if not manifest.segments:
            raise InvalidManifestError("Manifest has no segments")
        return manifest

    def _resolve_template(self, job: ExportJob) -> StyleTemplate:
        return self.templates.resolve(job.template_id, job.template_data, job.style)

    def _probe_audio_ms(self, audio_path: Path) -> int | None:
        try:
            return self.encoder.probe_duration_ms(audio_path)
        except RuntimeError as e:
            logger.warning(f"[STORYBOARD] Could not probe audio length, using manifest end: {e}")
            return None

    def _progress(self, job_id: str, progress: int, stage: str) -> None:
        """Record a milestone; stop the job if this worker no longer owns it."""
        if not self.store.update_status(
            job_id, "processing", progress=progress, current_stage=stage, worker_id=self.worker_id
        ):
            raise JobOwnershipLostError(job_id)

    def _render_progress(self, job_id: str):
        """Map render completion onto 30-70, writing at most every 5 points."""
        last = {"progress": 30}

        def callback(done: int, total: int) -> None:
            progress = 30 + int(40 * done / total)
            if progress - last["progress"] >= 5 or done == total:
                last["progress"] = progress
                self._progress(job_id, progress, f"Rendered {done}/{total} frames")

        return callback
