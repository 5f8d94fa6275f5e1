"""Configuration schema for call negotiation.

Defines Pydantic models for loading and validating negotiation configuration
from YAML files and environment variables. The loaded configuration is passed
explicitly into the coordinator and its collaborators; nothing in the core
reads the environment on its own.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_STUN_SERVERS = [
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
]


class ChannelConfig(BaseModel):
    """Rendezvous channel configuration."""

    backend: str = Field(default="redis", description="Channel backend: redis or memory")
    url: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    db: int = Field(default=0, ge=0, le=15, description="Redis database number")
    app_id: str = Field(
        default="your-app-id",
        min_length=1,
        description="Application identity scoping the calls collection",
    )
    collection_template: str = Field(
        default="artifacts/{app_id}/public/data/calls",
        description="Path of the calls collection, formatted with app_id",
    )
    key_prefix: str = Field(default="rendezvous:", description="Key prefix for all records")
    connection_pool_size: int = Field(default=10, ge=1, description="Redis connection pool size")
    poll_interval_ms: int = Field(
        default=1000,
        ge=10,
        le=60000,
        description="Blocking read timeout for watch loops",
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate that the backend is supported."""
        valid_backends = ["redis", "memory"]
        if v not in valid_backends:
            raise ValueError(f"Channel backend must be one of {valid_backends}, got '{v}'")
        return v

    @field_validator("collection_template")
    @classmethod
    def validate_collection_template(cls, v: str) -> str:
        """Validate that the template only references app_id."""
        try:
            v.format(app_id="probe")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"Invalid collection_template '{v}': {e}") from e
        return v

    @property
    def collection_path(self) -> str:
        """Calls collection path for this application."""
        return self.collection_template.format(app_id=self.app_id).strip("/")


class IceServerConfig(BaseModel):
    """STUN/TURN server entry."""

    urls: list[str] = Field(min_length=1, description="Server URLs (stun:, turn:, turns:)")
    username: str | None = Field(default=None, description="TURN username")
    credential: str | None = Field(default=None, description="TURN credential")

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: list[str]) -> list[str]:
        """Validate ICE server URL schemes."""
        for url in v:
            if not url.startswith(("stun:", "turn:", "turns:")):
                raise ValueError(f"ICE server URL must use stun:, turn: or turns:, got '{url}'")
        return v


class PeerConfig(BaseModel):
    """Connection capability configuration."""

    ice_servers: list[IceServerConfig] = Field(
        default_factory=lambda: [IceServerConfig(urls=[url]) for url in DEFAULT_STUN_SERVERS],
        description="ICE servers used to discover candidates",
    )


class CaptureConfig(BaseModel):
    """Local capture configuration.

    ``source`` is handed to aiortc's MediaPlayer (a file, URL or device such as
    ``/dev/video0`` with ``format: v4l2``). When unset, synthetic audio and
    video tracks are used.
    """

    video: bool = Field(default=True, description="Capture video")
    audio: bool = Field(default=True, description="Capture audio")
    source: str | None = Field(default=None, description="Media source for MediaPlayer")
    format: str | None = Field(default=None, description="Media source format (e.g. v4l2)")
    options: dict[str, str] = Field(default_factory=dict, description="MediaPlayer options")


class NegotiationConfig(BaseModel):
    """Root negotiation configuration."""

    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    peer: PeerConfig = Field(default_factory=PeerConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    connect_timeout_s: float = Field(
        default=30.0,
        gt=0,
        description="How long the CLI waits for a connected session",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "NegotiationConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import os

        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data: dict[str, Any] = yaml.safe_load(f) or {}

        if redis_url := os.getenv("REDIS_URL"):
            data.setdefault("channel", {})["url"] = redis_url

        if app_id := os.getenv("SIGNALING_APP_ID"):
            data.setdefault("channel", {})["app_id"] = app_id

        if capture_source := os.getenv("CAPTURE_SOURCE"):
            data.setdefault("capture", {})["source"] = capture_source

        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "NegotiationConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls()
