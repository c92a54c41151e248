"""Export API endpoints.

Submission only records a pending job; rendering and encoding happen in the
worker process, which clients follow through the status endpoint.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Query, Request, status
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from voxport.api.deps import Exports, JobStore, Templates
from voxport.exceptions import (
    InvalidManifestError,
    JobNotFoundError,
    UnsupportedExportKindError,
)
from voxport.models.export_job import EXPORT_KINDS
from voxport.schemas.export import (
    ExportJobSummary,
    ExportRequest,
    ExportStatusResponse,
    ExportSubmitResponse,
    StyleTemplate,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# Wire names accepted from the web client
FIELD_ALIASES = {
    "audioUrl": "audio_url",
    "transcriptId": "transcript_id",
    "templateId": "template_id",
    "userId": "user_id",
}
JSON_FORM_FIELDS = ("manifest", "template", "style")


def _parse_json_field(name: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise InvalidManifestError(f"Field '{name}' is not valid JSON: {e.msg}")


def _build_request(data: dict[str, Any]) -> ExportRequest:
    fields = {FIELD_ALIASES.get(k, k): v for k, v in data.items() if v not in (None, "")}

    kind = fields.get("kind")
    if kind not in EXPORT_KINDS:
        raise UnsupportedExportKindError(kind)

    for name in JSON_FORM_FIELDS:
        if name in fields:
            fields[name] = _parse_json_field(name, fields[name])

    try:
        return ExportRequest.model_validate(fields)
    except ValidationError as e:
        first = e.errors()[0]
        loc = " -> ".join(str(x) for x in first.get("loc", []))
        raise InvalidManifestError(f"{loc}: {first.get('msg')}" if loc else first.get("msg"))


@router.post(
    "/request",
    response_model=ExportSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_export(request: Request, service: Exports) -> ExportSubmitResponse:
    """
    Create an export job.

    Accepts either a JSON body with ``audioUrl`` or multipart form data with
    an ``audio`` file upload.
    """
    audio_bytes: bytes | None = None
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        data: dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == "audio":
                    audio_bytes = await value.read()
            else:
                data[key] = value
    else:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            raise InvalidManifestError("Request body is not valid JSON")
        if not isinstance(data, dict):
            raise InvalidManifestError("Request body must be a JSON object")

    export_request = _build_request(data)
    source = f"upload ({len(audio_bytes)} bytes)" if audio_bytes is not None else export_request.audio_url
    logger.info(f"[API] Export request: kind={export_request.kind} audio={source}")
    return await run_in_threadpool(service.submit, export_request, audio_bytes)


@router.get("/templates", response_model=list[StyleTemplate])
def list_templates(templates: Templates) -> list[StyleTemplate]:
    """Built-in style templates."""
    return templates.list_templates()


@router.get("/{job_id}/status", response_model=ExportStatusResponse)
def get_export_status(job_id: str, store: JobStore) -> ExportStatusResponse:
    job_status = store.get_status(job_id)
    if job_status is None:
        raise JobNotFoundError(job_id)
    return ExportStatusResponse(**job_status)


@router.get("/user/{user_id}", response_model=list[ExportJobSummary])
def list_user_exports(
    user_id: str,
    store: JobStore,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[ExportJobSummary]:
    """List a user's export jobs, newest first."""
    jobs = store.list_by_user(user_id, limit=limit, offset=offset)
    return [ExportJobSummary.model_validate(job) for job in jobs]
