"""
Payload definitions for the Tripo3D API.

Responses come wrapped in an envelope:

    {"code": 0, "data": {...}}

A task object looks like:

    {
        "task_id": str,
        "type": "text_to_model" | "image_to_model" | ...,
        "status": "queued" | "running" | "success" | "failed" | ...,
        "progress": int,
        "create_time": int,
        "output": {"model": str, "base_model": str, "pbr_model": str, "rendered_image": str},
        "result": {"pbr_model": {"type": "glb", "url": str}, ...}
    }

Tasks are frozen snapshots; to see a newer state, fetch the task again.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from tripo3d.errors import DecodeFailure, ValidationFailure


MAX_PROMPT_LENGTH = 1024

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


class TaskStatus(str, Enum):
    """Task processing status."""
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILED)

    @classmethod
    def parse(cls, raw: Any) -> "TaskStatus":
        """Map a server status string onto the five states we track."""
        value = str(raw or "").strip().lower()
        return _STATUS_ALIASES.get(value, cls.UNKNOWN)


_STATUS_ALIASES = {
    "queued": TaskStatus.QUEUED,
    "pending": TaskStatus.QUEUED,
    "running": TaskStatus.RUNNING,
    "processing": TaskStatus.RUNNING,
    "success": TaskStatus.SUCCESS,
    "failed": TaskStatus.FAILED,
    "failure": TaskStatus.FAILED,
    "cancelled": TaskStatus.FAILED,
    "banned": TaskStatus.FAILED,
    "expired": TaskStatus.FAILED,
}


@dataclass(frozen=True)
class Artifact:
    """One downloadable output file of a task"""
    name: str           # Key in the task output, e.g. "pbr_model"
    url: str            # Signed download URL
    file_type: str      # Extension without the dot, e.g. "glb"


@dataclass(frozen=True)
class Task:
    """Snapshot of a generation task"""
    task_id: str
    status: TaskStatus
    raw_status: str
    progress: int = 0
    type: Optional[str] = None
    create_time: Optional[int] = None
    artifacts: Tuple[Artifact, ...] = ()
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_payload(cls, data: Any) -> "Task":
        if not isinstance(data, Mapping):
            raise DecodeFailure(f"Task payload must be an object, got {type(data).__name__}")
        task_id = data.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise DecodeFailure(f"Task payload has no task_id: {data}")

        raw_status = str(data.get("status") or "")
        try:
            progress = int(data.get("progress") or 0)
        except (TypeError, ValueError) as exc:
            raise DecodeFailure(f"Invalid progress in task {task_id}: {data.get('progress')!r}") from exc
        progress = max(0, min(100, progress))

        create_time = data.get("create_time")
        if not isinstance(create_time, int):
            create_time = None

        return cls(
            task_id=task_id,
            status=TaskStatus.parse(raw_status),
            raw_status=raw_status,
            progress=progress,
            type=data.get("type"),
            create_time=create_time,
            artifacts=tuple(build_manifest(data.get("result"), data.get("output"))),
            error=_error_message(data),
        )


def _error_message(data: Mapping[str, Any]) -> Optional[str]:
    for key in ("error_msg", "error", "message"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, Mapping) and value.get("message"):
            return str(value["message"])
    return None


def _file_type_from_url(url: str) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix
    return suffix[1:].lower() if suffix else "bin"


def build_manifest(result: Any, output: Any) -> List[Artifact]:
    """
    Collect the downloadable files of a task.

    `result` entries ({"type": ..., "url": ...}) come first and win over
    `output` entries (plain URLs) pointing at the same file.
    """
    artifacts: List[Artifact] = []
    seen_urls = set()
    seen_names = set()

    if isinstance(result, Mapping):
        for name, entry in result.items():
            if not isinstance(entry, Mapping):
                continue
            url = entry.get("url")
            if not isinstance(url, str) or not url or url in seen_urls:
                continue
            file_type = entry.get("type") or _file_type_from_url(url)
            artifacts.append(Artifact(name=str(name), url=url, file_type=str(file_type).lower()))
            seen_urls.add(url)
            seen_names.add(str(name))

    if isinstance(output, Mapping):
        for name, url in output.items():
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                continue
            if url in seen_urls or str(name) in seen_names:
                continue
            artifacts.append(Artifact(name=str(name), url=url, file_type=_file_type_from_url(url)))
            seen_urls.add(url)
            seen_names.add(str(name))

    return artifacts


@dataclass(frozen=True)
class Balance:
    """Account credits"""
    balance: float
    frozen: float

    @classmethod
    def from_payload(cls, data: Any) -> "Balance":
        if not isinstance(data, Mapping):
            raise DecodeFailure(f"Balance payload must be an object, got {type(data).__name__}")
        try:
            return cls(balance=float(data["balance"]), frozen=float(data.get("frozen") or 0.0))
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(f"Unexpected balance payload: {data}") from exc


@dataclass(frozen=True)
class S3Object:
    """Location of a file uploaded straight to the provider's bucket"""
    bucket: str
    key: str


@dataclass(frozen=True)
class StsToken:
    """Temporary S3 credentials handed out by upload/sts/token"""
    access_key: str
    secret_key: str
    session_token: str
    bucket: str
    key: str

    @classmethod
    def from_payload(cls, data: Any) -> "StsToken":
        if not isinstance(data, Mapping):
            raise DecodeFailure(f"STS payload must be an object, got {type(data).__name__}")
        try:
            return cls(
                access_key=str(data["sts_ak"]),
                secret_key=str(data["sts_sk"]),
                session_token=str(data["session_token"]),
                bucket=str(data["resource_bucket"]),
                key=str(data["resource_uri"]),
            )
        except KeyError as exc:
            raise DecodeFailure(f"STS payload is missing {exc}") from exc


@dataclass(frozen=True)
class FileContent:
    """File reference sent with an image task: a URL, a file token or an S3 object"""
    type: str
    url: Optional[str] = None
    file_token: Optional[str] = None
    object: Optional[S3Object] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        if self.url is not None:
            payload["url"] = self.url
        if self.file_token is not None:
            payload["file_token"] = self.file_token
        if self.object is not None:
            payload["object"] = {"bucket": self.object.bucket, "key": self.object.key}
        return payload


@dataclass
class GenerationOptions:
    """
    Optional generation parameters shared by text and image tasks.

    Anything the API accepts that is not listed here can go in `extra`.
    """
    model_version: Optional[str] = None
    negative_prompt: Optional[str] = None
    face_limit: Optional[int] = None
    texture: Optional[bool] = None
    pbr: Optional[bool] = None
    texture_quality: Optional[str] = None
    style: Optional[str] = None
    auto_size: Optional[bool] = None
    seed: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        if self.face_limit is not None and (not isinstance(self.face_limit, int) or self.face_limit <= 0):
            raise ValidationFailure("face_limit must be a positive integer")
        if self.seed is not None and (not isinstance(self.seed, int) or self.seed < 0):
            raise ValidationFailure("seed must be a non-negative integer")
        if self.negative_prompt is not None and len(self.negative_prompt) > MAX_PROMPT_LENGTH:
            raise ValidationFailure(f"negative_prompt is longer than {MAX_PROMPT_LENGTH} characters")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for name in (
            "model_version",
            "negative_prompt",
            "face_limit",
            "texture",
            "pbr",
            "texture_quality",
            "style",
            "auto_size",
            "seed",
        ):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        payload.update(self.extra)
        return payload


def unwrap_envelope(body: Any) -> Any:
    """Return the `data` member of an API response envelope."""
    if not isinstance(body, Mapping) or "data" not in body:
        raise DecodeFailure(f"Unexpected response from Tripo API: {body}")
    return body["data"]
