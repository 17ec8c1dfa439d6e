"""
Exceptions raised by the Tripo3D client.

Every error the SDK raises derives from TripoError, so callers can catch the
whole family at once or pick the specific kind they care about.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from tripo3d.schema import Artifact, TaskStatus


class TripoError(Exception):
    """Base class for all SDK errors."""


class AuthenticationMissing(TripoError):
    """No API key was given and none was found in the environment."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message
            or "Tripo API key is not configured. "
            "Pass api_key explicitly or set the TRIPO_API_KEY environment variable."
        )


class NetworkFailure(TripoError):
    """The request never produced an HTTP response (DNS, connect, read, timeout)."""


class HttpError(TripoError):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, message: str, code: Optional[int] = None):
        self.status = status
        self.message = message
        self.code = code
        detail = f"HTTP {status}"
        if code is not None:
            detail += f" (code {code})"
        super().__init__(f"{detail}: {message}")


class DecodeFailure(TripoError):
    """The response body was not the JSON shape we expected."""


class ValidationFailure(TripoError, ValueError):
    """Bad local input, detected before anything is sent."""


class TaskTimeout(TripoError, TimeoutError):
    """The wait deadline passed before the task reached a terminal status."""

    def __init__(
        self,
        task_id: str,
        last_status: Optional["TaskStatus"],
        timeout: float,
    ):
        self.task_id = task_id
        self.last_status = last_status
        self.timeout = timeout
        status = last_status.value if last_status is not None else "never observed"
        super().__init__(
            f"Task {task_id} did not finish within {timeout} seconds "
            f"(last status: {status})"
        )


class PartialDownloadFailure(TripoError):
    """
    Some artifacts of a task could not be downloaded.

    The files that did download are still on disk and listed in `succeeded`;
    `failures` pairs each failed artifact with the reason it failed.
    """

    def __init__(
        self,
        succeeded: Sequence[Path],
        failures: Sequence[Tuple["Artifact", str]],
    ):
        self.succeeded: List[Path] = list(succeeded)
        self.failures: List[Tuple["Artifact", str]] = list(failures)
        names = ", ".join(f"{artifact.name} ({reason})" for artifact, reason in self.failures)
        super().__init__(
            f"{len(self.failures)} artifact(s) failed to download: {names}; "
            f"{len(self.succeeded)} succeeded"
        )
