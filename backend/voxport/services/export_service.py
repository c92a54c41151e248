"""Export submission: validates a request and records a pending job.

Every rejection here happens before a row is written, so invalid requests
never reach a worker.
"""

import logging

from voxport.config import Settings, get_settings
from voxport.exceptions import (
    DurationLimitError,
    InvalidManifestError,
    MissingAudioError,
    UnsupportedExportKindError,
    UploadTooLargeError,
)
from voxport.models.export_job import EXPORT_KINDS, new_job_id
from voxport.schemas.export import ExportRequest, ExportSubmitResponse
from voxport.services.job_store import ExportJobStore
from voxport.services.storage_service import StorageService
from voxport.services.template_service import TemplateService

logger = logging.getLogger(__name__)

ESTIMATED_SECONDS = {
    "mp3": 60,
    "mp4": 180,
    "carousel": 2,
}


def status_url_for(job_id: str) -> str:
    return f"/api/export/{job_id}/status"


def _template_id(request: ExportRequest) -> str | None:
    if request.template_id:
        return request.template_id
    return request.manifest.template_id if request.manifest else None


class ExportService:
    def __init__(
        self,
        store: ExportJobStore,
        storage: StorageService,
        templates: TemplateService | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.storage = storage
        self.templates = templates or TemplateService()
        self.settings = settings or get_settings()

    def validate(self, request: ExportRequest, audio_bytes: bytes | None = None) -> None:
        """Raise an InputError subclass if the request cannot become a job."""
        if request.kind not in EXPORT_KINDS:
            raise UnsupportedExportKindError(request.kind)

        if request.kind in ("mp3", "mp4") and not request.audio_url and not audio_bytes:
            raise MissingAudioError()

        if audio_bytes is not None:
            limit = self.settings.max_upload_size_mb * 1024 * 1024
            if len(audio_bytes) > limit:
                raise UploadTooLargeError(
                    f"Uploaded audio exceeds {self.settings.max_upload_size_mb} MB"
                )

        if request.kind in ("mp4", "carousel"):
            manifest = request.manifest
            if manifest is None or not manifest.segments:
                raise InvalidManifestError(
                    f"{request.kind.upper()} export requires manifest with segment timing"
                )

        if request.kind == "mp4":
            end_ms = request.manifest.end_ms
            if end_ms > self.settings.max_export_duration_ms:
                raise DurationLimitError(end_ms, self.settings.max_export_duration_ms)

        template_id = _template_id(request)
        if request.kind != "mp3" or template_id or request.template or request.style:
            # Unknown template ids and bad styles fail here rather than in the worker
            self.templates.resolve(template_id, request.template, request.style)

    def submit(self, request: ExportRequest, audio_bytes: bytes | None = None) -> ExportSubmitResponse:
        self.validate(request, audio_bytes)

        job_id = new_job_id()
        audio_url = request.audio_url or ""
        if audio_bytes is not None:
            audio_url = self.storage.save_upload(job_id, audio_bytes)

        self.store.submit(
            job_id=job_id,
            kind=request.kind,
            audio_url=audio_url,
            user_id=request.user_id,
            transcript_id=request.transcript_id
            or (request.manifest.transcript_id if request.manifest else None),
            template_id=_template_id(request),
            manifest=request.manifest.model_dump() if request.manifest else None,
            template_data=request.template.model_dump() if request.template else None,
            style=request.style,
        )

        logger.info(f"[SUBMIT] Export enqueued: {job_id} ({request.kind}, user={request.user_id})")
        return ExportSubmitResponse(
            job_id=job_id,
            estimated_seconds=ESTIMATED_SECONDS[request.kind],
            status_url=status_url_for(job_id),
        )
