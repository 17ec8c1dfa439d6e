import pytest

from tripo3d.config import DEFAULT_API_URL, ClientConfig
from tripo3d.errors import AuthenticationMissing, ValidationFailure
from tripo3d.tripo_client import TripoClient


def test_missing_key_fails_client_construction():
    with pytest.raises(AuthenticationMissing):
        TripoClient()


def test_blank_key_is_missing():
    with pytest.raises(AuthenticationMissing):
        ClientConfig(api_key="   ")


def test_key_from_environment(monkeypatch):
    monkeypatch.setenv("TRIPO_API_KEY", "env-key")
    config = ClientConfig.from_env()
    assert config.api_key == "env-key"
    assert config.base_url == DEFAULT_API_URL


def test_explicit_values_win_over_environment(monkeypatch):
    monkeypatch.setenv("TRIPO_API_KEY", "env-key")
    monkeypatch.setenv("TRIPO_API_URL", "https://env.example.com/api/")
    config = ClientConfig.from_env(api_key="explicit", base_url="http://localhost:9000/v2")
    assert config.api_key == "explicit"
    assert config.base_url == "http://localhost:9000/v2/"


def test_key_from_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("TRIPO_API_KEY=from-dotenv\nTRIPO_REQUEST_TIMEOUT=12.5\n")
    config = ClientConfig.from_env()
    assert config.api_key == "from-dotenv"
    assert config.request_timeout == 12.5


def test_dotenv_loading_can_be_disabled(tmp_path):
    (tmp_path / ".env").write_text("TRIPO_API_KEY=from-dotenv\n")
    with pytest.raises(AuthenticationMissing):
        ClientConfig.from_env(load_dotenv_file=False)


def test_bad_timeout_in_environment(monkeypatch):
    monkeypatch.setenv("TRIPO_API_KEY", "k")
    monkeypatch.setenv("TRIPO_REQUEST_TIMEOUT", "soon")
    with pytest.raises(ValidationFailure):
        ClientConfig.from_env()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": "ftp://example.com/"},
        {"request_timeout": 0},
    ],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValidationFailure):
        ClientConfig(api_key="k", **kwargs)


def test_websocket_url_follows_scheme():
    assert ClientConfig("k").ws_base_url == "wss://api.tripo3d.ai/v2/openapi/"
    assert ClientConfig("k", base_url="http://localhost:8000/v2/openapi").ws_base_url == (
        "ws://localhost:8000/v2/openapi/"
    )


def test_config_is_immutable():
    config = ClientConfig("k")
    with pytest.raises(AttributeError):
        config.api_key = "other"
