"""
Runtime settings read from the environment (and a .env file, if present).
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .importers.nimble_nexus.schema import NIMBLE_NEXUS_API_URL

logger = logging.getLogger("nimble-effects")


class Settings(BaseModel):
    log_level: str = Field(default="INFO", description="Logging level for the server")
    nimble_nexus_api_url: str = Field(default=NIMBLE_NEXUS_API_URL, description="Nimble Nexus API root")
    nimble_nexus_timeout: float = Field(default=10.0, gt=0, description="HTTP timeout in seconds")
    compendium_dir: Path | None = Field(default=None, description="Directory searched for compendium effect files")


def load_settings(env_file: str | Path | None = None) -> Settings:
    """Build settings from environment variables.

    Variables: NIMBLE_EFFECTS_LOG_LEVEL, NIMBLE_NEXUS_API_URL,
    NIMBLE_NEXUS_TIMEOUT, NIMBLE_EFFECTS_COMPENDIUM_DIR. Invalid values
    fall back to the defaults with a warning.
    """
    if not load_dotenv(env_file):
        logger.debug("No .env file found, using process environment only")

    values = {
        "log_level": os.getenv("NIMBLE_EFFECTS_LOG_LEVEL", "INFO").upper(),
        "nimble_nexus_api_url": os.getenv("NIMBLE_NEXUS_API_URL", NIMBLE_NEXUS_API_URL),
        "nimble_nexus_timeout": os.getenv("NIMBLE_NEXUS_TIMEOUT", "10.0"),
        "compendium_dir": os.getenv("NIMBLE_EFFECTS_COMPENDIUM_DIR") or None,
    }

    try:
        return Settings(**values)
    except ValidationError as e:
        logger.warning(f"❌ Invalid settings in environment, using defaults: {e}")
        return Settings()


__all__ = ["Settings", "load_settings"]
