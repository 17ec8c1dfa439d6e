"""
Shared fixtures: a fake Tripo3D server, a client wired to it, and a fake clock.
"""

import sys
from pathlib import Path
from typing import List

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from fake_server import API_KEY, BASE_URL, create_app
from tripo3d.config import API_KEY_ENV, API_URL_ENV, REQUEST_TIMEOUT_ENV, ClientConfig
from tripo3d.tripo_client import TripoClient


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Keep the developer's real key and .env out of the tests."""
    for name in (API_KEY_ENV, API_URL_ENV, REQUEST_TIMEOUT_ENV):
        # setenv first so values written by load_dotenv are undone afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fake_api():
    return create_app()


@pytest.fixture
def config():
    return ClientConfig(api_key=API_KEY, base_url=BASE_URL)


@pytest.fixture
def client(fake_api, config):
    return TripoClient(config=config, http_transport=httpx.ASGITransport(app=fake_api))


@pytest.fixture
def clock():
    return FakeClock()
