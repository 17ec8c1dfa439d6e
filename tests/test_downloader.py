import asyncio
from contextlib import asynccontextmanager

import pytest

from fake_server import FILES_URL
from tripo3d.downloader import ArtifactDownloader, artifact_filename, unique_targets
from tripo3d.errors import NetworkFailure, PartialDownloadFailure, ValidationFailure
from tripo3d.schema import Artifact, Task, TaskStatus


def make_task(*artifacts: Artifact) -> Task:
    return Task(
        task_id="task-9",
        status=TaskStatus.SUCCESS,
        raw_status="success",
        progress=100,
        artifacts=tuple(artifacts),
    )


def download(client, task, dest, **kwargs):
    async def scenario():
        async with client:
            return await client.download_task_models(task, dest, **kwargs)
    return asyncio.run(scenario())


def test_filename_is_deterministic_and_safe():
    artifact = Artifact("pbr model/v2", "https://x/y", "GLB?")
    assert artifact_filename("a/b", artifact) == "a_b_pbr_model_v2.GLB"
    assert artifact_filename("a/b", artifact) == artifact_filename("a/b", artifact)


def test_all_reachable_artifacts_are_written(client, fake_api, tmp_path):
    names = ["pbr_model", "base_model", "rendered_image", "model"]
    artifacts = []
    for i, name in enumerate(names):
        fake_api.state.files[f"{name}.bin"] = f"payload {i}".encode() * 100
        artifacts.append(Artifact(name, FILES_URL + f"{name}.bin", "glb"))

    dest = tmp_path / "nested" / "out"
    paths = download(client, make_task(*artifacts), dest)

    assert len(paths) == len(names)
    assert [p.name for p in paths] == [f"task-9_{n}.glb" for n in names]
    for i, path in enumerate(paths):
        assert path.parent == dest
        assert path.stat().st_size > 0
        assert path.read_bytes() == f"payload {i}".encode() * 100


def test_one_unreachable_artifact_is_reported(client, fake_api, tmp_path):
    fake_api.state.files["ok.glb"] = b"model"
    good = Artifact("pbr_model", FILES_URL + "ok.glb", "glb")
    bad = Artifact("base_model", FILES_URL + "missing.glb", "glb")

    with pytest.raises(PartialDownloadFailure) as excinfo:
        download(client, make_task(good, bad), tmp_path)

    error = excinfo.value
    assert error.succeeded == [tmp_path / "task-9_pbr_model.glb"]
    assert [artifact for artifact, _ in error.failures] == [bad]
    assert "404" in error.failures[0][1]
    assert "base_model" in str(error)
    assert (tmp_path / "task-9_pbr_model.glb").read_bytes() == b"model"
    assert not (tmp_path / "task-9_base_model.glb").exists()


def test_empty_body_counts_as_failure(client, fake_api, tmp_path):
    fake_api.state.files["empty.glb"] = b""
    artifact = Artifact("model", FILES_URL + "empty.glb", "glb")

    with pytest.raises(PartialDownloadFailure) as excinfo:
        download(client, make_task(artifact), tmp_path)

    assert excinfo.value.failures[0][1] == "empty response body"
    assert list(tmp_path.iterdir()) == []


def test_selected_names_only(client, fake_api, tmp_path):
    fake_api.state.files["a.glb"] = b"a"
    fake_api.state.files["b.webp"] = b"b"
    task = make_task(
        Artifact("pbr_model", FILES_URL + "a.glb", "glb"),
        Artifact("rendered_image", FILES_URL + "b.webp", "webp"),
    )

    paths = download(client, task, tmp_path, names=["pbr_model"])

    assert [p.name for p in paths] == ["task-9_pbr_model.glb"]


def test_empty_manifest_creates_directory_and_returns_nothing(client, tmp_path):
    dest = tmp_path / "models"
    assert download(client, make_task(), dest) == []
    assert dest.is_dir()


class SlowTransport:
    """Serves fixed bytes and records how many streams are open at once."""

    def __init__(self, fail_urls=(), broken_urls=()):
        self.open = 0
        self.peak = 0
        self.fail_urls = set(fail_urls)
        self.broken_urls = set(broken_urls)

    @asynccontextmanager
    async def stream(self, url):
        if url in self.fail_urls:
            raise NetworkFailure(f"GET {url} failed: connection reset")
        if url in self.broken_urls:
            raise ValueError(f"Invalid URL {url!r}")
        self.open += 1
        self.peak = max(self.peak, self.open)
        try:
            yield self
            await asyncio.sleep(0)
        finally:
            self.open -= 1

    async def aiter_bytes(self):
        await asyncio.sleep(0.01)
        yield b"data"


def test_concurrency_is_bounded(tmp_path):
    transport = SlowTransport()
    artifacts = [Artifact(f"part_{i}", f"https://cdn/{i}.glb", "glb") for i in range(8)]
    downloader = ArtifactDownloader(transport, concurrency=2)

    paths = asyncio.run(downloader.download("t", artifacts, tmp_path))

    assert len(paths) == 8
    assert transport.peak == 2


def test_network_failure_does_not_stop_siblings(tmp_path):
    artifacts = [Artifact(f"part_{i}", f"https://cdn/{i}.glb", "glb") for i in range(3)]
    transport = SlowTransport(fail_urls={"https://cdn/1.glb"})

    with pytest.raises(PartialDownloadFailure) as excinfo:
        asyncio.run(ArtifactDownloader(transport).download("t", artifacts, tmp_path))

    assert [p.name for p in excinfo.value.succeeded] == ["t_part_0.glb", "t_part_2.glb"]
    assert excinfo.value.failures[0][0].name == "part_1"
    assert "connection reset" in excinfo.value.failures[0][1]


def test_concurrency_must_be_positive():
    with pytest.raises(ValidationFailure):
        ArtifactDownloader(SlowTransport(), concurrency=0)


def test_names_that_sanitize_alike_get_distinct_files(client, fake_api, tmp_path):
    fake_api.state.files["spaced.glb"] = b"spaced"
    fake_api.state.files["underscored.glb"] = b"underscored"
    task = make_task(
        Artifact("pbr model", FILES_URL + "spaced.glb", "glb"),
        Artifact("pbr_model", FILES_URL + "underscored.glb", "glb"),
    )

    paths = download(client, task, tmp_path)

    assert [p.name for p in paths] == ["task-9_pbr_model.glb", "task-9_pbr_model_2.glb"]
    assert paths[0].read_bytes() == b"spaced"
    assert paths[1].read_bytes() == b"underscored"


def test_failed_twin_does_not_delete_its_sibling(client, fake_api, tmp_path):
    fake_api.state.files["ok.glb"] = b"model"
    task = make_task(
        Artifact("pbr model", FILES_URL + "ok.glb", "glb"),
        Artifact("pbr_model", FILES_URL + "missing.glb", "glb"),
    )

    with pytest.raises(PartialDownloadFailure) as excinfo:
        download(client, task, tmp_path)

    assert excinfo.value.succeeded == [tmp_path / "task-9_pbr_model.glb"]
    assert (tmp_path / "task-9_pbr_model.glb").read_bytes() == b"model"


def test_unique_targets_ignore_case(tmp_path):
    artifacts = [Artifact("Model", "https://cdn/a", "glb"), Artifact("model", "https://cdn/b", "GLB")]
    assert [p.name for p in unique_targets(tmp_path, "t", artifacts)] == ["t_Model.glb", "t_model_2.GLB"]


def test_unexpected_error_is_collected_with_the_others(tmp_path):
    artifacts = [Artifact(f"part_{i}", f"https://cdn/{i}.glb", "glb") for i in range(3)]
    transport = SlowTransport(broken_urls={"https://cdn/2.glb"})

    with pytest.raises(PartialDownloadFailure) as excinfo:
        asyncio.run(ArtifactDownloader(transport).download("t", artifacts, tmp_path))

    assert [p.name for p in excinfo.value.succeeded] == ["t_part_0.glb", "t_part_1.glb"]
    [(artifact, reason)] = excinfo.value.failures
    assert artifact.name == "part_2"
    assert reason.startswith("ValueError: Invalid URL")
