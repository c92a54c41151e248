import logging
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from voxport.config import Settings, get_settings
from voxport.exceptions import StagingError

logger = logging.getLogger(__name__)

UPLOADS_DIRNAME = "uploads"


def _local_path_from_ref(ref: str) -> Path | None:
    """Return a filesystem path for file:// URLs and bare paths, else None."""
    parsed = urlparse(ref)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if not parsed.scheme:
        return Path(ref)
    return None


class StorageService:
    """Input staging and durable output placement shared by both backends."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.temp_dir = Path(self.settings.export_temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Uploads and staging
    # ------------------------------------------------------------------

    @property
    def uploads_dir(self) -> Path:
        path = self.temp_dir / UPLOADS_DIRNAME
        path.mkdir(parents=True, exist_ok=True)
        return path

    def save_upload(self, job_id: str, data: bytes, suffix: str = ".webm") -> str:
        """Persist uploaded audio bytes and return a file:// reference to them."""
        path = self.uploads_dir / f"{job_id}_upload{suffix}"
        path.write_bytes(data)
        logger.info(f"[UPLOAD] Saved {len(data)} bytes for {job_id}: {path}")
        return path.resolve().as_uri()

    def owned_upload(self, audio_ref: str) -> Path | None:
        """Path of an upload this service wrote for a job, if ``audio_ref`` is one."""
        path = _local_path_from_ref(audio_ref)
        if path is None:
            return None
        try:
            path.resolve().relative_to(self.uploads_dir.resolve())
        except ValueError:
            return None
        return path

    def stage_input(self, audio_ref: str, dest: Path) -> Path:
        """Fetch the input audio into ``dest``.

        HTTP(S) references are downloaded with httpx; file:// references
        and bare paths are copied.

        Raises:
            StagingError: If the reference cannot be fetched
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        local = _local_path_from_ref(audio_ref)

        try:
            if local is not None:
                if not local.exists():
                    raise StagingError(f"Input file not found: {local}")
                shutil.copyfile(local, dest)
            else:
                self._download(audio_ref, dest)
        except StagingError:
            dest.unlink(missing_ok=True)
            raise
        except (OSError, httpx.HTTPError) as e:
            dest.unlink(missing_ok=True)
            raise StagingError(f"Download failed: {e}") from e

        logger.info(f"[STAGE] Staged input: {dest} ({dest.stat().st_size} bytes)")
        return dest

    def _download(self, url: str, dest: Path) -> None:
        with httpx.stream(
            "GET",
            url,
            timeout=self.settings.download_timeout_s,
            follow_redirects=True,
        ) as response:
            if response.status_code != 200:
                raise StagingError(
                    f"Download failed: {response.status_code} {response.reason_phrase}"
                )
            with open(dest, "wb") as f:
                for chunk in response.iter_bytes():
                    f.write(chunk)

    # ------------------------------------------------------------------
    # Output relocation
    # ------------------------------------------------------------------

    def publish(self, local_path: Path, storage_key: str) -> str:
        """Move a finished artifact into durable storage and return its public URL."""
        raise NotImplementedError


class LocalStorageService(StorageService):
    """Durable output in a local directory served under ``export_public_url``."""

    def __init__(self, settings: Settings | None = None) -> None:
        super().__init__(settings)
        self.output_dir = Path(self.settings.export_output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def get_public_url(self, storage_key: str) -> str:
        base_url = self.settings.export_public_url.rstrip("/")
        return f"{base_url}/exports/{storage_key}"

    def get_file_path(self, storage_key: str) -> Path:
        return self.output_dir / storage_key

    def publish(self, local_path: Path, storage_key: str) -> str:
        target = self.get_file_path(storage_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(local_path), str(target))
        logger.info(f"[PUBLISH] Moved {local_path.name} -> {target}")
        return self.get_public_url(storage_key)


class GCSStorageService(StorageService):
    """Google Cloud Storage for production outputs."""

    def __init__(self, settings: Settings | None = None, client=None) -> None:
        super().__init__(settings)
        self._client = client
        self._bucket = None

    @property
    def client(self):
        if self._client is None:
            from google.cloud import storage

            if self.settings.gcs_project_id:
                self._client = storage.Client(project=self.settings.gcs_project_id)
            else:
                self._client = storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        return f"https://storage.googleapis.com/{self.settings.gcs_bucket_name}/{storage_key}"

    def publish(self, local_path: Path, storage_key: str) -> str:
        blob = self.bucket.blob(storage_key)
        blob.upload_from_filename(str(local_path))
        local_path.unlink(missing_ok=True)
        logger.info(f"[PUBLISH] Uploaded {local_path.name} -> gs://{self.settings.gcs_bucket_name}/{storage_key}")
        return self.get_public_url(storage_key)


def get_storage_service(settings: Settings | None = None) -> StorageService:
    """Get the storage backend selected by ``use_local_storage``."""
    settings = settings or get_settings()
    if settings.use_local_storage:
        return LocalStorageService(settings)
    return GCSStorageService(settings)
