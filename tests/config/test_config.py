from __future__ import annotations

import logging
from pathlib import Path

import pytest

from qvain_sync.config import (
    ConfigurationError,
    MissingConfigurationError,
    configure_logging,
    env_flag,
    get_database_config,
    get_registry_config,
    get_storage_config,
)


def test_registry_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_METAX_API_HOST", "metax.example.org")
    monkeypatch.setenv("APP_METAX_API_USER", "qvain")
    monkeypatch.setenv("APP_METAX_API_PASS", "secret")
    monkeypatch.setenv("APP_METAX_DISABLE_HTTPS", "true")
    monkeypatch.delenv("APP_METAX_INSECURE_CERTS", raising=False)

    config = get_registry_config()

    assert config.datasets_url == "http://metax.example.org/rest/datasets/"
    assert config.resilience.base_url == "http://metax.example.org"
    assert config.resilience.auth == ("qvain", "secret")
    assert config.resilience.verify is True
    assert config.resilience.default_headers is not None
    assert config.resilience.default_headers["Accept"] == "application/json"


def test_registry_config_requires_host(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APP_METAX_API_HOST", raising=False)

    with pytest.raises(MissingConfigurationError, match="APP_METAX_API_HOST"):
        get_registry_config()


def test_registry_config_defaults_to_https_without_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_METAX_API_HOST", "metax.example.org")
    monkeypatch.delenv("APP_METAX_API_USER", raising=False)
    monkeypatch.delenv("APP_METAX_API_PASS", raising=False)
    monkeypatch.delenv("APP_METAX_DISABLE_HTTPS", raising=False)
    monkeypatch.setenv("APP_METAX_INSECURE_CERTS", "1")

    config = get_registry_config()

    assert config.base_url == "https://metax.example.org"
    assert config.resilience.auth is None
    assert config.resilience.verify is False


def test_env_flag_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QVAIN_TEST_FLAG", "maybe")

    with pytest.raises(ConfigurationError):
        env_flag("QVAIN_TEST_FLAG")


def test_database_uri_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "postgresql+psycopg://localhost/qvain")

    assert get_database_config().uri == "postgresql+psycopg://localhost/qvain"


def test_database_defaults_to_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DATABASE_URI", raising=False)
    monkeypatch.setenv("QVAIN_SYNC_DATA_DIR", str(tmp_path))

    expected = tmp_path.resolve() / "qvain.db"

    assert get_storage_config().data_dir == tmp_path
    assert get_database_config().uri == f"sqlite+pysqlite:///{expected}"


def test_configure_logging_quiets_request_lines_unless_debugging() -> None:
    configure_logging(force=True)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("alembic.runtime.migration").level == logging.WARNING

    configure_logging(level=logging.DEBUG, force=True)
    assert logging.getLogger("httpx").level == logging.DEBUG
    assert logging.getLogger().level == logging.DEBUG
