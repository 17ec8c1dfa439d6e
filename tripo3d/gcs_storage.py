"""
Mirror downloaded task artifacts into a Google Cloud Storage bucket.

Objects are stored at <prefix><task_id>/<filename>. Credentials come from
Application Default Credentials; on local dev we typically set
GOOGLE_APPLICATION_CREDENTIALS pointing to the service-account JSON file.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from google.cloud import storage  # type: ignore[import]


logger = logging.getLogger(__name__)


class GCSArtifactStore:
    """Uploads task artifacts to a bucket and hands out signed URLs."""

    def __init__(
        self,
        bucket_name: str,
        base_prefix: str = "tripo/",
        client: Optional[storage.Client] = None,
    ):
        self.bucket_name = bucket_name
        # Ensure prefix ends with a trailing slash if non-empty
        if base_prefix and not base_prefix.endswith("/"):
            base_prefix = base_prefix + "/"
        self.base_prefix = base_prefix

        # Lazily created client & bucket (reused across uploads)
        self._client = client
        self._bucket: Optional[storage.Bucket] = None

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client()
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def blob_name(self, task_id: str, filename: str) -> str:
        return f"{self.base_prefix}{task_id}/{filename}"

    def upload_artifact(self, task_id: str, local_path: Path) -> str:
        """Upload one downloaded file and return its object name."""
        if not local_path.exists():
            raise FileNotFoundError(f"Local artifact not found: {local_path}")

        name = self.blob_name(task_id, local_path.name)
        self.bucket.blob(name).upload_from_filename(str(local_path))
        logger.info("Uploaded %s to gs://%s/%s", local_path.name, self.bucket_name, name)
        return name

    def upload_artifacts(self, task_id: str, paths: Iterable[Path]) -> List[str]:
        return [self.upload_artifact(task_id, Path(p)) for p in paths]

    def generate_signed_url(self, blob_name: str, expiration_seconds: int = 3600) -> str:
        """
        Generate a time-limited signed URL for downloading an artifact directly from GCS.
        """
        blob = self.bucket.blob(blob_name)
        if not blob.exists():
            raise FileNotFoundError(f"GCS object not found: gs://{self.bucket_name}/{blob_name}")
        return blob.generate_signed_url(expiration=timedelta(seconds=expiration_seconds))

    def list_task_artifacts(self, task_id: str) -> List[Dict[str, object]]:
        """
        List the files stored for a task, as {"filename", "size"} dicts.

        "Directory" placeholder objects are skipped.
        """
        prefix = self.blob_name(task_id, "")
        files = []
        for blob in self.client.list_blobs(self.bucket_name, prefix=prefix):
            if blob.name.endswith("/"):
                continue
            filename = blob.name[len(prefix):]
            if not filename:
                continue
            files.append({"filename": filename, "size": blob.size})
        return files
