"""Custom exceptions for the voxport export pipeline.

Input errors are raised synchronously at submission and never create a job.
Stage errors (staging, rendering, encoding) are raised inside the worker and
converted into a persisted ``failed`` status by the orchestrator.
"""


class VoxportError(Exception):
    """Base exception for all voxport errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


# =============================================================================
# Input Errors (400) - rejected at submission
# =============================================================================


class InputError(VoxportError):
    """Base class for submission-time validation errors."""

    status_code = 400
    code = "INVALID_INPUT"


class UnsupportedExportKindError(InputError):
    code = "UNSUPPORTED_EXPORT_KIND"
    message = "Unsupported export kind"

    def __init__(self, kind: str | None = None):
        message = f"Invalid export kind: {kind}" if kind else self.message
        super().__init__(message)


class InvalidManifestError(InputError):
    code = "INVALID_MANIFEST"
    message = "Manifest is invalid"


class InvalidStyleError(InputError):
    code = "INVALID_STYLE"
    message = "Style overrides are invalid"


class DurationLimitError(InputError):
    code = "DURATION_LIMIT_EXCEEDED"
    message = "Export too long"

    def __init__(self, duration_ms: int, limit_ms: int):
        self.duration_ms = duration_ms
        self.limit_ms = limit_ms
        allowed_s = (limit_ms - 5000) // 1000 if limit_ms > 5000 else limit_ms // 1000
        super().__init__(
            f"Export too long ({duration_ms / 1000:.1f}s). "
            f"Maximum {allowed_s} seconds allowed."
        )


class MissingAudioError(InputError):
    code = "MISSING_AUDIO"
    message = "Either audio_url or audio file is required"


class UploadTooLargeError(InputError):
    code = "UPLOAD_TOO_LARGE"
    status_code = 413
    message = "Uploaded audio exceeds the size limit"


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class ResourceNotFoundError(VoxportError):
    status_code = 404


class JobNotFoundError(ResourceNotFoundError):
    code = "JOB_NOT_FOUND"
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class TemplateNotFoundError(ResourceNotFoundError):
    code = "TEMPLATE_NOT_FOUND"
    message = "Template not found"

    def __init__(self, template_id: str | None = None):
        message = f"Template not found: {template_id}" if template_id else self.message
        super().__init__(message)


# =============================================================================
# Pipeline Stage Errors - persisted as job failures
# =============================================================================


class PipelineError(VoxportError):
    """Base class for errors raised while processing a claimed job."""

    code = "PIPELINE_ERROR"


class StagingError(PipelineError):
    code = "STAGING_FAILED"
    message = "Input staging failed"


class FrameRenderError(PipelineError):
    code = "FRAME_RENDER_FAILED"
    message = "Frame rendering failed"

    def __init__(self, frame_index: int, reason: str | None = None):
        self.frame_index = frame_index
        message = f"Frame {frame_index} failed to render"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class EncodingError(PipelineError):
    code = "ENCODING_FAILED"
    message = "FFmpeg encoding failed"


class EncoderTimeoutError(EncodingError):
    code = "ENCODER_TIMEOUT"
    message = "FFmpeg timed out"

    def __init__(self, timeout_s: float, operation: str = "encode"):
        self.timeout_s = timeout_s
        super().__init__(f"FFmpeg {operation} timed out after {timeout_s:g}s")


class JobOwnershipLostError(PipelineError):
    """The job left ``processing`` under this worker (stale sweep or another writer)."""

    code = "JOB_OWNERSHIP_LOST"
    message = "Job is no longer owned by this worker"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} is no longer owned by this worker")
