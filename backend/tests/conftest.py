"""
Pytest fixtures for voxport backend tests.

Every test gets its own SQLite database and scratch directories under
tmp_path, so no PostgreSQL server is needed.

CI/CD Note:
Tests that shell out to ffmpeg are marked with @pytest.mark.requires_ffmpeg
and skip themselves when the binaries are not on PATH.
Run `pytest -m "not requires_ffmpeg"` to deselect them explicitly.
"""

import shutil
import subprocess
from pathlib import Path

import pytest

from voxport.config import Settings
from voxport.models.base import Base
from voxport.models.database import create_db_engine, create_session_maker
from voxport.schemas.export import Manifest, StyleTemplate
from voxport.services.job_store import ExportJobStore
from voxport.services.storage_service import LocalStorageService
from voxport.services.template_service import TemplateService


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring the ffmpeg/ffprobe binaries",
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


@pytest.fixture
def ffmpeg_available() -> None:
    """Skip the requesting test when ffmpeg is not installed."""
    if not _ffmpeg_available():
        pytest.skip("ffmpeg/ffprobe not available")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'voxport.db'}",
        export_temp_dir=str(tmp_path / "scratch"),
        export_output_dir=str(tmp_path / "exports"),
        export_public_url="http://exports.test",
        use_local_storage=True,
        worker_id="test-worker",
        worker_poll_interval_s=0.01,
        stale_job_timeout_s=0,
        render_scale=0.25,
        render_pool_size=2,
    )


@pytest.fixture
def engine(settings: Settings):
    engine = create_db_engine(settings.database_url)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> ExportJobStore:
    return ExportJobStore(create_session_maker(engine))


@pytest.fixture
def storage(settings: Settings) -> LocalStorageService:
    return LocalStorageService(settings)


@pytest.fixture
def templates() -> TemplateService:
    return TemplateService()


@pytest.fixture
def portrait_template(templates: TemplateService) -> StyleTemplate:
    return templates.get_template("voxport-pulse-portrait")


@pytest.fixture
def plain_template() -> StyleTemplate:
    """Portrait template without animation."""
    return StyleTemplate(id="plain", name="Plain", aspect="portrait", animation="none")


@pytest.fixture
def sample_manifest() -> Manifest:
    """Three segments over 5 seconds, with word timing, as the web client sends it."""
    return Manifest.model_validate(
        {
            "transcriptId": "tt_sample",
            "templateId": "voxport-pulse-portrait",
            "aspect": "portrait",
            "segments": [
                {
                    "id": "s1",
                    "startMs": 0,
                    "endMs": 1500,
                    "text": "hello there friends",
                    "words": [
                        {"word": "hello", "startMs": 0, "endMs": 400},
                        {"word": "there", "startMs": 450, "endMs": 900},
                        {"word": "friends", "startMs": 950, "endMs": 1500},
                    ],
                },
                {
                    "id": "s2",
                    "startMs": 1600,
                    "endMs": 3200,
                    "text": "this is voxport",
                    "words": [
                        {"word": "this", "startMs": 1600, "endMs": 2000},
                        {"word": "is", "startMs": 2000, "endMs": 2300},
                        {"word": "voxport", "startMs": 2400, "endMs": 3200},
                    ],
                },
                {
                    "id": "s3",
                    "startMs": 3300,
                    "endMs": 5000,
                    "text": "see you soon",
                },
            ],
        }
    )


@pytest.fixture
def sine_audio(tmp_path: Path, ffmpeg_available) -> Path:
    """A 5 second mono tone (WAV) generated with ffmpeg."""
    output_path = tmp_path / "input" / "tone.wav"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    subprocess.run(
        [
            "ffmpeg", "-y",
            "-f", "lavfi",
            "-i", "sine=frequency=440:duration=5",
            "-ac", "1",
            "-ar", "44100",
            str(output_path),
        ],
        capture_output=True,
        check=True,
    )
    return output_path
