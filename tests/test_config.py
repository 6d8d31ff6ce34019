"""Tests for environment settings."""

import os
from pathlib import Path

import pytest

from nimble_effects.config import Settings, load_settings
from nimble_effects.importers.nimble_nexus.schema import NIMBLE_NEXUS_API_URL


ENV_VARS = (
    "NIMBLE_EFFECTS_LOG_LEVEL",
    "NIMBLE_NEXUS_API_URL",
    "NIMBLE_NEXUS_TIMEOUT",
    "NIMBLE_EFFECTS_COMPENDIUM_DIR",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes to os.environ directly
    for name in ENV_VARS:
        os.environ.pop(name, None)


class TestLoadSettings:
    """Test reading settings from the environment and .env files."""

    def test_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "missing.env")

        assert settings == Settings()
        assert settings.nimble_nexus_api_url == NIMBLE_NEXUS_API_URL
        assert settings.compendium_dir is None

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NIMBLE_EFFECTS_LOG_LEVEL", "debug")
        monkeypatch.setenv("NIMBLE_NEXUS_TIMEOUT", "2.5")
        monkeypatch.setenv("NIMBLE_EFFECTS_COMPENDIUM_DIR", str(tmp_path))

        settings = load_settings(tmp_path / "missing.env")

        assert settings.log_level == "DEBUG"
        assert settings.nimble_nexus_timeout == 2.5
        assert settings.compendium_dir == Path(tmp_path)

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("NIMBLE_NEXUS_API_URL=http://localhost:8080/api\n")

        settings = load_settings(env_file)
        assert settings.nimble_nexus_api_url == "http://localhost:8080/api"

    def test_invalid_value_falls_back(self, monkeypatch, tmp_path):
        monkeypatch.setenv("NIMBLE_NEXUS_TIMEOUT", "-1")
        monkeypatch.setenv("NIMBLE_EFFECTS_LOG_LEVEL", "debug")

        settings = load_settings(tmp_path / "missing.env")

        assert settings.nimble_nexus_timeout == 10.0
        assert settings.log_level == "INFO"
