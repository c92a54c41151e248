from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ExportKind = Literal["mp3", "mp4", "carousel"]
JobStatus = Literal["pending", "processing", "completed", "failed"]
Aspect = Literal["portrait", "square", "landscape"]


class Word(BaseModel):
    """A single timed word. Accepts camelCase keys and ``word`` for ``text``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str = Field(validation_alias="word")
    start_ms: int = Field(ge=0, validation_alias="startMs")
    end_ms: int = Field(ge=0, validation_alias="endMs")

    @model_validator(mode="after")
    def _check_bounds(self) -> "Word":
        if self.end_ms < self.start_ms:
            raise ValueError(f"word '{self.text}' ends before it starts")
        return self


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str | None = None
    text: str = ""
    start_ms: int = Field(ge=0, validation_alias="startMs")
    end_ms: int = Field(ge=0, validation_alias="endMs")
    words: tuple[Word, ...] | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "Segment":
        if self.end_ms < self.start_ms:
            raise ValueError(f"segment {self.start_ms}-{self.end_ms} ends before it starts")
        return self

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def tokens(self) -> list[str]:
        """Display tokens: timed words when present, otherwise split text."""
        if self.words:
            return [w.text for w in self.words]
        return self.text.split()


class Manifest(BaseModel):
    """Timing manifest produced by the transcript collaborator."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    transcript_id: str | None = Field(default=None, validation_alias="transcriptId")
    template_id: str | None = Field(default=None, validation_alias="templateId")
    aspect: Aspect | None = None
    duration_ms: int | None = Field(default=None, ge=0, validation_alias="durationMs")
    segments: tuple[Segment, ...] = ()

    @property
    def end_ms(self) -> int:
        """End of the last segment (0 for an empty manifest)."""
        return self.segments[-1].end_ms if self.segments else 0

    @property
    def total_duration_ms(self) -> int:
        return max(self.duration_ms or 0, self.end_ms)


# =============================================================================
# Style template
# =============================================================================


class BackgroundSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["solid", "gradient"] = "gradient"
    colors: tuple[str, ...] = ("#0A0A0A", "#17112A", "#0A0A0A")


class TypographySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    font_family: str = "Inter"
    font_size_px: int = 42
    font_weight: int = 700
    line_height: float = 1.15
    text_color: str = "#FFFFFF"
    highlight_color: str = "#7C5DFA"
    muted_color: str = "#A1A1AA"


class LayoutSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_lines: int = Field(default=4, ge=1)
    max_chars_per_line: int = Field(default=18, ge=4)
    padding_px: int = Field(default=64, ge=0)


class WatermarkSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = "VOXPORT"
    position: Literal["top-left", "top-right", "bottom-left", "bottom-right", "center", "none"] = "bottom-right"
    opacity: float = Field(default=0.8, ge=0.0, le=1.0)


class StyleTemplate(BaseModel):
    """Immutable per-job visual configuration."""

    model_config = ConfigDict(frozen=True)

    id: str = "custom"
    name: str = "Custom"
    aspect: Aspect = "portrait"
    highlight_mode: Literal["word", "segment"] = "word"
    animation: Literal["none", "pop", "fade"] = "none"
    background: BackgroundSpec = Field(default_factory=BackgroundSpec)
    typography: TypographySpec = Field(default_factory=TypographySpec)
    layout: LayoutSpec = Field(default_factory=LayoutSpec)
    watermark: WatermarkSpec = Field(default_factory=WatermarkSpec)


# =============================================================================
# Submission / status
# =============================================================================


class ExportRequest(BaseModel):
    kind: ExportKind
    audio_url: str | None = None
    transcript_id: str | None = None
    template_id: str | None = None
    template: StyleTemplate | None = None
    manifest: Manifest | None = None
    style: dict[str, Any] | None = None
    user_id: str = "anonymous"


class ExportSubmitResponse(BaseModel):
    job_id: str
    estimated_seconds: int
    status_url: str


class ExportStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    progress: int
    output_url: str | None
    output_size: int | None
    error: str | None
    created_at: datetime
    completed_at: datetime | None


class ExportJobSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: str
    status: str
    progress: int
    output_url: str | None
    output_size: int | None
    created_at: datetime
    completed_at: datetime | None
