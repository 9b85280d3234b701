"""Configuration models for the archiver.

Values come from an optional YAML file. The environment only fills in
credentials the file leaves unset, and command-line options override both.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from mmarchive.errors import ConfigError

ENV_ENDPOINT = "MATTERMOST_ENDPOINT"
ENV_COOKIE = "MATTERMOST_COOKIE"


class ArchiveConfig(BaseModel):
    """Main configuration for the archiver."""

    endpoint: Optional[str] = Field(default=None, description="API endpoint, e.g. https://mm.example.com/api/v4/")
    cookie: Optional[str] = Field(default=None, description="Session cookie sent with every request")
    dir: Optional[str] = Field(default=None, description="Mirror root directory")
    channel_id: Optional[str] = Field(default=None, description="Archive only this channel ID")
    per_page: int = Field(default=1000, description="Posts requested per page")
    request_timeout: Optional[float] = Field(default=None, description="HTTP timeout in seconds")
    query_limit: int = Field(default=10, description="Hits returned by a query")

    def require(self, *names: str) -> None:
        """Raise ConfigError for the first option in `names` that is unset."""
        for name in names:
            if not getattr(self, name):
                raise ConfigError(f"--{name.replace('_', '-')} not provided")

    @property
    def mirror_root(self) -> Path:
        """Mirror root as a path; call `require("dir")` first."""
        return Path(self.dir or "").expanduser()


class ConfigLoader:
    """Utility class for loading configuration from YAML files."""

    @staticmethod
    def load(path: Optional[str]) -> ArchiveConfig:
        """Load configuration from a YAML file and the environment.

        Args:
            path: Path to the YAML configuration file. A missing file yields defaults.

        Returns:
            ArchiveConfig: Loaded configuration object.
        """
        raw_data: dict = {}
        if path and Path(path).exists():
            with open(path, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f) or {}

        if not raw_data.get("endpoint") and os.getenv(ENV_ENDPOINT):
            raw_data["endpoint"] = os.getenv(ENV_ENDPOINT)
        if not raw_data.get("cookie") and os.getenv(ENV_COOKIE):
            raw_data["cookie"] = os.getenv(ENV_COOKIE)

        return ArchiveConfig(**raw_data)
