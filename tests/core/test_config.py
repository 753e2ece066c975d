"""
Unit Tests for gateway Settings
"""

import pytest

from src.core.config import DEFAULT_CORS_ORIGINS, Settings


@pytest.fixture
def clean_env(monkeypatch):
    """Remove gateway variables and stop .env files from leaking in"""
    for name in ("E2B_API_KEY", "E2B_TEMPLATE_ID", "SANDBOX_BACKEND", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("src.core.config.load_dotenv", lambda *args, **kwargs: False)
    return monkeypatch


@pytest.mark.unit
def test_defaults():
    settings = Settings()

    assert settings.e2b_api_key is None
    assert settings.sandbox_backend == "mock"
    assert settings.is_configured is False
    assert settings.cors_origins == DEFAULT_CORS_ORIGINS.split(",")


@pytest.mark.unit
def test_unknown_backend_rejected():
    with pytest.raises(ValueError) as exc_info:
        Settings(sandbox_backend="docker")

    assert "docker" in str(exc_info.value)


@pytest.mark.unit
def test_from_env_empty(clean_env):
    settings = Settings.from_env()

    assert settings.is_configured is False
    assert settings.e2b_template_id is None
    assert settings.sandbox_backend == "mock"


@pytest.mark.unit
def test_from_env_reads_variables(clean_env):
    clean_env.setenv("E2B_API_KEY", "e2b_abc")
    clean_env.setenv("E2B_TEMPLATE_ID", "angstrom-v1")
    clean_env.setenv("SANDBOX_BACKEND", " E2B ")
    clean_env.setenv("CORS_ORIGINS", "https://app.example.org, http://localhost:5173,")

    settings = Settings.from_env()

    assert settings.e2b_api_key == "e2b_abc"
    assert settings.is_configured is True
    assert settings.e2b_template_id == "angstrom-v1"
    assert settings.sandbox_backend == "e2b"
    assert settings.cors_origins == ["https://app.example.org", "http://localhost:5173"]


@pytest.mark.unit
def test_from_env_empty_key_is_unconfigured(clean_env):
    clean_env.setenv("E2B_API_KEY", "")

    assert Settings.from_env().is_configured is False
