"""
Tripo3D API client.

I reference the official doc from here:
https://platform.tripo3d.ai/docs

Workflow we support here:
First, create a text-to-model or image-to-model task
Second, poll the task status (or watch it over WebSocket) until it finishes
Third, download the model files listed in the finished task
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List, Optional, Sequence, Union

import httpx

from tripo3d import s3_upload
from tripo3d.config import ClientConfig
from tripo3d.downloader import DEFAULT_CONCURRENCY, ArtifactDownloader
from tripo3d.errors import DecodeFailure, ValidationFailure
from tripo3d.poller import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WAIT_TIMEOUT,
    Clock,
    LoggingProgressListener,
    ProgressSink,
    RetryPolicy,
    TaskPoller,
)
from tripo3d.schema import (
    MAX_PROMPT_LENGTH,
    UUID_RE,
    Balance,
    FileContent,
    GenerationOptions,
    S3Object,
    StsToken,
    Task,
    unwrap_envelope,
)
from tripo3d.transport import HttpTransport
from tripo3d.watcher import SessionFactory, TaskWatcher


logger = logging.getLogger(__name__)


def _validate_prompt(prompt: str) -> str:
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationFailure("prompt must not be empty")
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationFailure(f"prompt is longer than {MAX_PROMPT_LENGTH} characters")
    return prompt.strip()


def _options_payload(options: Optional[GenerationOptions]) -> dict:
    if options is None:
        return {}
    options.validate()
    return options.to_payload()


class TripoClient:
    """Async client for the Tripo3D API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        config: Optional[ClientConfig] = None,
        transport: Optional[HttpTransport] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        ws_session_factory: Optional[SessionFactory] = None,
        s3_client_factory: Optional[Callable[[StsToken, Optional[str]], Any]] = None,
    ):
        # Fails here, not on first request, when no key can be found
        if config is None:
            config = ClientConfig.from_env(api_key=api_key, base_url=base_url)
        self.config = config
        self.transport = transport or HttpTransport(config, http_transport=http_transport)
        self.watcher = TaskWatcher(config, session_factory=ws_session_factory)
        self._s3_client_factory = s3_client_factory or s3_upload.s3_client_for

    async def _create_task(self, payload: dict) -> str:
        body = await self.transport.request("POST", "task", json=payload)
        data = unwrap_envelope(body)

        # The task id is the response from the API
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not isinstance(task_id, str) or not task_id:
            raise DecodeFailure(f"Unexpected response from Tripo API: {body}")
        logger.info("Created %s task %s", payload.get("type"), task_id)
        return task_id

    async def text_to_3d(self, prompt: str, options: Optional[GenerationOptions] = None) -> str:
        """
        Create a text-to-model task and return its task id.
        """
        payload = {"type": "text_to_model", "prompt": _validate_prompt(prompt)}
        payload.update(_options_payload(options))
        return await self._create_task(payload)

    submit_text_to_3d = text_to_3d

    async def upload_file(self, path: Union[str, Path]) -> str:
        """
        Upload a local image as multipart form data and return its file token.
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationFailure(f"Image file not found: {file_path}")

        mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        with open(file_path, "rb") as f:
            files = {"file": (file_path.name, f, mime_type)}
            body = await self.transport.request("POST", "upload/sts", files=files)

        data = unwrap_envelope(body)
        token = data.get("image_token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise DecodeFailure(f"Upload response has no image_token: {body}")
        logger.info("Uploaded %s -> %s", file_path.name, token)
        return token

    async def upload_file_s3(self, path: Union[str, Path]) -> FileContent:
        """
        Upload a local image straight to the provider's S3 bucket.

        Fetches temporary credentials from upload/sts/token, PUTs the file with
        boto3 and returns a FileContent pointing at the stored object. Pass it
        to image_to_3d as the image.
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise ValidationFailure(f"Image file not found: {file_path}")

        body = await self.transport.request("POST", "upload/sts/token", json={"format": "jpeg"})
        token = StsToken.from_payload(unwrap_envelope(body))

        s3_client = self._s3_client_factory(token, self.config.s3_endpoint_url)
        # boto3 is blocking; keep the event loop free while the file goes up
        await asyncio.to_thread(s3_upload.put_file, s3_client, token, file_path)

        extension = file_path.suffix[1:].lower() or "jpeg"
        return FileContent(type=extension, object=S3Object(bucket=token.bucket, key=token.key))

    async def _file_content(self, image: Union[str, Path, FileContent]) -> FileContent:
        """
        Turn an image argument into the file object the task endpoint expects.

        Accepts a public http(s) URL, a file token from a previous upload, a
        FileContent (e.g. from upload_file_s3), or a path to a local file
        (which is uploaded first).
        """
        if isinstance(image, FileContent):
            return image
        if isinstance(image, Path):
            image_str = str(image)
        elif isinstance(image, str):
            image_str = image.strip()
        else:
            raise ValidationFailure(f"image must be a URL, file token or path, got {type(image).__name__}")
        if not image_str:
            raise ValidationFailure("image must not be empty")

        if image_str.startswith(("http://", "https://")):
            return FileContent(type="jpeg", url=image_str)
        if UUID_RE.match(image_str):
            return FileContent(type="jpeg", file_token=image_str)

        path = Path(image_str)
        if not path.is_file():
            raise ValidationFailure(f"Image file not found: {image_str}")
        token = await self.upload_file(path)
        extension = path.suffix[1:].lower() or "jpeg"
        return FileContent(type=extension, file_token=token)

    async def image_to_3d(
        self,
        image: Union[str, Path, FileContent],
        options: Optional[GenerationOptions] = None,
    ) -> str:
        """
        Create an image-to-model task and return its task id.
        """
        extra = _options_payload(options)
        file_content = await self._file_content(image)
        payload = {"type": "image_to_model", "file": file_content.to_payload()}
        payload.update(extra)
        return await self._create_task(payload)

    submit_image_to_3d = image_to_3d

    async def get_task(self, task_id: str) -> Task:
        """
        Fetch the current snapshot of a task.
        """
        if not isinstance(task_id, str) or not task_id.strip():
            raise ValidationFailure("task_id must not be empty")
        body = await self.transport.request("GET", f"task/{task_id.strip()}")
        return Task.from_payload(unwrap_envelope(body))

    async def get_balance(self) -> Balance:
        body = await self.transport.request("GET", "user/balance")
        return Balance.from_payload(unwrap_envelope(body))

    async def wait_for_task(
        self,
        task_id: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: Optional[float] = DEFAULT_WAIT_TIMEOUT,
        verbose: bool = False,
        progress: Optional[ProgressSink] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Optional[Clock] = None,
    ) -> Task:
        """
        Poll a task until it finishes or times out.

        Returns the final task object; a failed task is returned, not raised.
        With verbose=True and no explicit listener, each poll is logged.
        """
        if progress is None and verbose:
            progress = LoggingProgressListener()
        poller = TaskPoller(
            self.get_task,
            task_id,
            poll_interval=poll_interval,
            timeout=timeout,
            progress=progress,
            retry=retry,
            clock=clock,
        )
        task = await poller.wait()
        logger.info("Task %s finished with status %s", task.task_id, task.raw_status)
        return task

    async def download_task_models(
        self,
        task: Task,
        dest_dir: Union[str, Path],
        names: Optional[Sequence[str]] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> List[Path]:
        """
        Download all model files of a finished task into dest_dir.
        """
        downloader = ArtifactDownloader(self.transport, concurrency=concurrency)
        return await downloader.download_task(task, dest_dir, names=names)

    def watch_task(self, task_id: str) -> AsyncIterator[Task]:
        return self.watcher.watch_task(task_id)

    def watch_all_tasks(self, since: Optional[datetime] = None) -> AsyncIterator[Task]:
        return self.watcher.watch_all(since)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.transport.close()

    async def __aenter__(self) -> "TripoClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
