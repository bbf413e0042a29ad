"""Relay configuration via config.json and environment variables.

Uses pydantic-settings. Values come from (highest priority first):
1. HERALD_* environment variables
2. config.json (or the file passed with --config / HERALD_CONFIG_FILE)
3. Defaults below

Learn: The connection values are opaque strings — we only check that
they're present. A missing config file is created blank on first run
(see write_template) so the operator knows what to fill in.
"""

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from herald.events.types import ResolutionPolicy

DEFAULT_CONFIG_FILE = "config.json"

# Keys written to a fresh config file
TEMPLATE_KEYS = ("webhook_url", "cluster_url", "region", "token")


class Settings(BaseSettings):
    """All relay configuration."""

    # Outgoing webhook (empty = echo to console only)
    webhook_url: str = ""
    webhook_timeout: Optional[float] = None  # seconds; None = wait forever

    # Region database
    cluster_url: str = ""
    region: str = ""  # module name, e.g. "bitcraft-2"
    token: str = ""
    poll_interval: float = 2.0  # seconds between SQL polls

    # Moderation rows for players we haven't seen yet
    resolution_policy: ResolutionPolicy = ResolutionPolicy.SUBSTITUTE

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="HERALD_",
        json_file=DEFAULT_CONFIG_FILE,
        json_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, JsonConfigSettingsSource(settings_cls))

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def is_configured(self) -> bool:
        """Connection details are all present."""
        return bool(self.cluster_url and self.region and self.token)


def config_path(path: Optional[str] = None) -> Path:
    return Path(path or os.environ.get("HERALD_CONFIG_FILE") or DEFAULT_CONFIG_FILE)


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings, reading the given config file instead of ./config.json."""
    file = config_path(path)

    class _FileSettings(Settings):
        model_config = SettingsConfigDict(json_file=file)

    return _FileSettings()


def write_template(path: Optional[str] = None) -> bool:
    """Create a blank config file. Returns False if one already exists."""
    file = config_path(path)
    if file.exists():
        return False
    file.write_text(
        json.dumps({key: "" for key in TEMPLATE_KEYS}, indent=2) + "\n",
        encoding="utf-8",
    )
    return True
