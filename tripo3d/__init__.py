"""
Async client for the Tripo3D text/image-to-3D API.
"""

from tripo3d.config import ClientConfig, DEFAULT_API_URL
from tripo3d.downloader import ArtifactDownloader, artifact_filename
from tripo3d.errors import (
    AuthenticationMissing,
    DecodeFailure,
    HttpError,
    NetworkFailure,
    PartialDownloadFailure,
    TaskTimeout,
    TripoError,
    ValidationFailure,
)
from tripo3d.poller import (
    AsyncioClock,
    LoggingProgressListener,
    PollState,
    ProgressListener,
    RetryPolicy,
    TaskPoller,
)
from tripo3d.schema import Artifact, Balance, FileContent, GenerationOptions, S3Object, Task, TaskStatus
from tripo3d.transport import HttpTransport
from tripo3d.tripo_client import TripoClient
from tripo3d.watcher import TaskWatcher

__version__ = "0.4.0"

__all__ = [
    "Artifact",
    "ArtifactDownloader",
    "AsyncioClock",
    "AuthenticationMissing",
    "Balance",
    "ClientConfig",
    "DEFAULT_API_URL",
    "DecodeFailure",
    "FileContent",
    "GenerationOptions",
    "HttpError",
    "HttpTransport",
    "LoggingProgressListener",
    "NetworkFailure",
    "PartialDownloadFailure",
    "PollState",
    "ProgressListener",
    "RetryPolicy",
    "S3Object",
    "Task",
    "TaskPoller",
    "TaskStatus",
    "TaskTimeout",
    "TaskWatcher",
    "TripoClient",
    "TripoError",
    "ValidationFailure",
    "artifact_filename",
]
