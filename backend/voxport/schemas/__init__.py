from voxport.schemas.export import (
    ExportJobSummary,
    ExportRequest,
    ExportStatusResponse,
    ExportSubmitResponse,
    Manifest,
    Segment,
    StyleTemplate,
    Word,
)

__all__ = [
    "ExportJobSummary",
    "ExportRequest",
    "ExportStatusResponse",
    "ExportSubmitResponse",
    "Manifest",
    "Segment",
    "StyleTemplate",
    "Word",
]
