"""Metax registry configuration values."""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass

from qvain_sync import __version__

from .env import env_flag, require_env_vars
from .http_resilience import ResilienceConfig, RetryPolicy

DATASETS_ENDPOINT = "/rest/datasets/"
REGISTRY_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = f"qvain-sync/{__version__} (python/{platform.python_version()})"


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """Holds connection settings for the Metax dataset API."""

    host: str
    resilience: ResilienceConfig
    user: str | None = None
    password: str | None = None
    disable_https: bool = False
    user_agent: str = DEFAULT_USER_AGENT

    @property
    def base_url(self) -> str:
        scheme = "http" if self.disable_https else "https"
        return f"{scheme}://{self.host}"

    @property
    def datasets_url(self) -> str:
        return self.base_url + DATASETS_ENDPOINT


def build_registry_config(
    host: str,
    *,
    user: str | None = None,
    password: str | None = None,
    disable_https: bool = False,
    insecure: bool = False,
    user_agent: str = DEFAULT_USER_AGENT,
    retry: RetryPolicy | None = None,
) -> RegistryConfig:
    scheme = "http" if disable_https else "https"
    auth = (user or "", password or "") if user or password else None
    resilience = ResilienceConfig(
        name="metax",
        base_url=f"{scheme}://{host}",
        timeout_seconds=REGISTRY_TIMEOUT_SECONDS,
        retry=retry or RetryPolicy(),
        default_headers={
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        },
        auth=auth,
        verify=not insecure,
    )
    return RegistryConfig(
        host=host,
        resilience=resilience,
        user=user,
        password=password,
        disable_https=disable_https,
        user_agent=user_agent,
    )


def get_registry_config() -> RegistryConfig:
    values = require_env_vars(("APP_METAX_API_HOST",))
    return build_registry_config(
        values["APP_METAX_API_HOST"],
        user=os.getenv("APP_METAX_API_USER") or None,
        password=os.getenv("APP_METAX_API_PASS") or None,
        disable_https=env_flag("APP_METAX_DISABLE_HTTPS"),
        insecure=env_flag("APP_METAX_INSECURE_CERTS"),
    )
