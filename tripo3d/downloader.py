"""
Download the result files of a finished task.

Each artifact is streamed to "<task_id>_<name>.<type>" in the target
directory (names that collide after sanitizing get "_2", "_3", ...).
Downloads run concurrently, capped by a semaphore; a failed
artifact does not stop the others and all failures are reported together.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from tripo3d.errors import PartialDownloadFailure, TripoError, ValidationFailure
from tripo3d.schema import Artifact, Task
from tripo3d.transport import HttpTransport


logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def artifact_filename(task_id: str, artifact: Artifact) -> str:
    """Deterministic local file name for one artifact of a task."""
    stem = _UNSAFE_CHARS.sub("_", f"{task_id}_{artifact.name}").strip("._") or "artifact"
    ext = _UNSAFE_CHARS.sub("_", artifact.file_type).strip("._") or "bin"
    return f"{stem}.{ext}"


def unique_targets(save_path: Path, task_id: str, artifacts: Sequence[Artifact]) -> List[Path]:
    """
    One distinct path per artifact.

    Names that sanitize to the same file (e.g. "pbr model" and "pbr_model")
    get a numeric suffix in manifest order: "_2", "_3", ...
    """
    targets: List[Path] = []
    used = set()
    for artifact in artifacts:
        filename = artifact_filename(task_id, artifact)
        stem, _, ext = filename.rpartition(".")
        candidate = filename
        n = 2
        # Compare case-insensitively so case-folding filesystems cannot collide either
        while candidate.lower() in used:
            candidate = f"{stem}_{n}.{ext}"
            n += 1
        used.add(candidate.lower())
        targets.append(save_path / candidate)
    return targets


class ArtifactDownloader:
    """Streams task artifacts to disk through an HttpTransport."""

    def __init__(self, transport: HttpTransport, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValidationFailure("concurrency must be at least 1")
        self.transport = transport
        self.concurrency = concurrency

    async def _download_one(
        self,
        semaphore: asyncio.Semaphore,
        artifact: Artifact,
        file_path: Path,
    ) -> Path:
        async with semaphore:
            written = 0
            try:
                async with self.transport.stream(artifact.url) as resp:
                    with open(file_path, "wb") as f:
                        async for chunk in resp.aiter_bytes():
                            f.write(chunk)
                            written += len(chunk)
                if written == 0:
                    raise TripoError("empty response body")
            except BaseException:
                file_path.unlink(missing_ok=True)
                raise
            logger.info("Downloaded %s (%d bytes) to %s", artifact.name, written, file_path)
            return file_path

    async def download(
        self,
        task_id: str,
        artifacts: Sequence[Artifact],
        dest_dir: Union[str, Path],
    ) -> List[Path]:
        """
        Download every artifact into dest_dir and return the paths, in manifest order.

        Raises PartialDownloadFailure if any artifact failed; the files that did
        download stay on disk and are listed on the exception.
        """
        save_path = Path(dest_dir)
        save_path.mkdir(parents=True, exist_ok=True)
        if not artifacts:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        targets = unique_targets(save_path, task_id, artifacts)
        results = await asyncio.gather(
            *(self._download_one(semaphore, a, p) for a, p in zip(artifacts, targets)),
            return_exceptions=True,
        )

        succeeded: List[Path] = []
        failures: List[Tuple[Artifact, str]] = []
        for artifact, result in zip(artifacts, results):
            if isinstance(result, Exception):
                reason = str(result) if isinstance(result, (TripoError, OSError)) else f"{type(result).__name__}: {result}"
                logger.error("Error downloading %s from %s: %s", artifact.name, artifact.url, reason)
                failures.append((artifact, reason))
            elif isinstance(result, BaseException):
                # cancellation and interpreter exits are not download failures
                raise result
            else:
                succeeded.append(result)

        if failures:
            raise PartialDownloadFailure(succeeded, failures)
        return succeeded

    async def download_task(
        self,
        task: Task,
        dest_dir: Union[str, Path],
        names: Optional[Sequence[str]] = None,
    ) -> List[Path]:
        """Download a task's manifest, optionally restricted to some artifact names."""
        artifacts = list(task.artifacts)
        if names is not None:
            wanted = set(names)
            artifacts = [a for a in artifacts if a.name in wanted]
        return await self.download(task.task_id, artifacts, dest_dir)
