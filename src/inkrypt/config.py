"""Configuration management for inkrypt.

Loads from environment variables, .env files, and config/default.toml.

Default application data directory: ~/.inkrypt/
  vaults.json — vault registry (id -> path)
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from inkrypt.vault.models import METADATA_DIR, METADATA_FILE

INKRYPT_HOME = Path.home() / ".inkrypt"


class StorageConfig(BaseSettings):
    """Where the application keeps its own state."""

    data_dir: Path = Field(
        default_factory=lambda: INKRYPT_HOME,
        description="Application data directory holding the vault registry",
    )
    registry_file: str = "vaults.json"
    metadata_dir: str = METADATA_DIR
    metadata_file: str = METADATA_FILE

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @property
    def registry_path(self) -> Path:
        return self.data_dir / self.registry_file


class WatchConfig(BaseSettings):
    """Change notification pipeline configuration."""

    debounce_ms: int = Field(default=200, gt=0)
    pending_ttl_ms: int = Field(default=500, gt=0)  # self-write suppression window
    channel_capacity: int = Field(default=100, gt=0)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def pending_ttl_seconds(self) -> float:
        return self.pending_ttl_ms / 1000.0


class Settings(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="INKRYPT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from TOML file, with env var overrides."""
        config_path = path or Path("config/default.toml")
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls(**data)
        return cls()


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)
