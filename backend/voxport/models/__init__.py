from voxport.models.base import Base
from voxport.models.export_job import ExportJob

__all__ = [
    "Base",
    "ExportJob",
]
