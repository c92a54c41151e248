from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from voxport.services.export_service import ExportService
from voxport.services.job_store import ExportJobStore
from voxport.services.storage_service import StorageService, get_storage_service
from voxport.services.template_service import TemplateService


@lru_cache
def get_job_store() -> ExportJobStore:
    return ExportJobStore()


@lru_cache
def get_storage() -> StorageService:
    return get_storage_service()


@lru_cache
def get_template_service() -> TemplateService:
    return TemplateService()


def get_export_service(
    store: Annotated[ExportJobStore, Depends(get_job_store)],
    storage: Annotated[StorageService, Depends(get_storage)],
    templates: Annotated[TemplateService, Depends(get_template_service)],
) -> ExportService:
    return ExportService(store, storage, templates)


JobStore = Annotated[ExportJobStore, Depends(get_job_store)]
Exports = Annotated[ExportService, Depends(get_export_service)]
Templates = Annotated[TemplateService, Depends(get_template_service)]
