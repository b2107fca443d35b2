from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure `backend/` is on sys.path so `import newsroom.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from newsroom.settings import Settings, reset_settings_cache  # noqa: E402

_SETTINGS_ENV = (
    "APP_ENV",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "JSON_BODY_LIMIT",
    "URLENCODED_BODY_LIMIT",
    "URLENCODED_PARAMETER_LIMIT",
    "USERS_ROUTES",
    "NEWS_ROUTES",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    # No stray .env from the working directory, no settings from the shell.
    monkeypatch.chdir(tmp_path)
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test", port=0)
