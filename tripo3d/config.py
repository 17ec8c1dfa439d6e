"""
Client configuration.

The official endpoint is "https://api.tripo3d.ai/v2/openapi/".

ClientConfig is a plain immutable value. The environment is only read by
ClientConfig.from_env, which the caller (or TripoClient when no config is
given) invokes once at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from tripo3d.errors import AuthenticationMissing, ValidationFailure


DEFAULT_API_URL = "https://api.tripo3d.ai/v2/openapi/"
DEFAULT_REQUEST_TIMEOUT = 60.0

API_KEY_ENV = "TRIPO_API_KEY"
API_URL_ENV = "TRIPO_API_URL"
REQUEST_TIMEOUT_ENV = "TRIPO_REQUEST_TIMEOUT"


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings shared by the HTTP transport and the task watcher."""

    api_key: str
    base_url: str = DEFAULT_API_URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    # S3-compatible endpoint for upload_file_s3; None means AWS itself
    s3_endpoint_url: Optional[str] = None

    def __post_init__(self) -> None:
        key = (self.api_key or "").strip()
        if not key:
            raise AuthenticationMissing()
        if not self.base_url.startswith(("http://", "https://")):
            raise ValidationFailure(f"base_url must be an http(s) URL, got {self.base_url!r}")
        if self.request_timeout <= 0:
            raise ValidationFailure("request_timeout must be positive")
        # Relative paths are joined onto the base URL, so it has to end with a slash
        base = self.base_url if self.base_url.endswith("/") else self.base_url + "/"
        object.__setattr__(self, "api_key", key)
        object.__setattr__(self, "base_url", base)

    @property
    def ws_base_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):]
        return "ws://" + self.base_url[len("http://"):]

    @classmethod
    def from_env(
        cls,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        request_timeout: Optional[float] = None,
        load_dotenv_file: bool = True,
    ) -> "ClientConfig":
        """
        Build a config from explicit values, falling back to the environment.

        Explicit arguments always win. A .env file in the working directory is
        loaded first (without overriding variables that are already set).
        """
        if load_dotenv_file:
            dotenv_path = find_dotenv(usecwd=True)
            if dotenv_path:
                load_dotenv(dotenv_path)

        key = api_key or os.getenv(API_KEY_ENV, "")
        url = base_url or os.getenv(API_URL_ENV) or DEFAULT_API_URL
        if request_timeout is None:
            raw_timeout = os.getenv(REQUEST_TIMEOUT_ENV)
            try:
                request_timeout = float(raw_timeout) if raw_timeout else DEFAULT_REQUEST_TIMEOUT
            except ValueError as exc:
                raise ValidationFailure(
                    f"{REQUEST_TIMEOUT_ENV} must be a number, got {raw_timeout!r}"
                ) from exc
        return cls(api_key=key, base_url=url, request_timeout=request_timeout)
