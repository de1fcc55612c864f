"""Configuration management for butter-installer."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from butter_installer.core.types import Platform

logger = structlog.get_logger()


class DownloadConfig(BaseModel):
    """HTTP download configuration."""

    timeout: float = Field(
        default=45.0,
        description="Hard deadline in seconds for the server to answer"
    )
    read_timeout: float = Field(
        default=60.0,
        description="Maximum idle time in seconds between body chunks"
    )
    chunk_size: int = Field(
        default=64 * 1024,
        description="Stream chunk size in bytes"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")

    @field_validator("timeout", "read_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Validate chunk size value."""
        if v <= 0:
            raise ValueError("Chunk size must be positive")
        return v


class PatchToolConfig(BaseModel):
    """Patch tool (butler) configuration."""

    tools_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "butter-installer" / "tools",
        description="Directory holding downloaded tools"
    )
    urls: dict[Platform, str] = Field(
        default={
            Platform.WINDOWS: "https://broth.itch.zone/butler/windows-amd64/LATEST/archive/default",
            Platform.LINUX: "https://broth.itch.zone/butler/linux-amd64/LATEST/archive/default",
            Platform.DARWIN: "https://broth.itch.zone/butler/darwin-amd64/LATEST/archive/default",
        },
        description="Tool archive URL per platform"
    )
    strict_exit: bool = Field(
        default=True,
        description="Fail the install when the tool exits with a non-zero code"
    )


class RuntimeConfig(BaseModel):
    """Managed Java runtime configuration."""

    urls: dict[Platform, str] = Field(
        default={
            Platform.WINDOWS: "https://api.adoptium.net/v3/binary/latest/25/ga/windows/x64/jre/hotspot/normal/eclipse",
            Platform.LINUX: "https://api.adoptium.net/v3/binary/latest/25/ga/linux/x64/jre/hotspot/normal/eclipse",
            Platform.DARWIN: "https://api.adoptium.net/v3/binary/latest/25/ga/mac/aarch64/jre/hotspot/normal/eclipse",
        },
        description="Runtime archive URL per platform"
    )


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "butter-installer",
        description="Configuration directory"
    )
    game_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "butter-installer" / "game",
        description="Game root directory"
    )

    download: DownloadConfig = Field(default_factory=DownloadConfig)
    patch_tool: PatchToolConfig = Field(default_factory=PatchToolConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    online_patch: bool = Field(
        default=True,
        description="Run the hot-patch step after a successful install"
    )

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = Path.home() / ".config" / "butter-installer" / "config.json"

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        # Return defaults
        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
