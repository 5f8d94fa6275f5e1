"""Unit tests for negotiation configuration.

Tests configuration loading, validation, and defaults.
"""

from pathlib import Path

import pytest

from src.negotiation.config import (
    DEFAULT_STUN_SERVERS,
    CaptureConfig,
    ChannelConfig,
    IceServerConfig,
    NegotiationConfig,
    PeerConfig,
)


def test_channel_config_defaults() -> None:
    """Test channel configuration defaults."""
    config = ChannelConfig()
    assert config.backend == "redis"
    assert config.url == "redis://localhost:6379"
    assert config.db == 0
    assert config.key_prefix == "rendezvous:"
    assert config.collection_path == "artifacts/your-app-id/public/data/calls"


def test_channel_config_collection_path() -> None:
    """Test that the collection path is scoped by app id."""
    config = ChannelConfig(app_id="demo", collection_template="/apps/{app_id}/calls/")
    assert config.collection_path == "apps/demo/calls"


def test_channel_config_validation() -> None:
    """Test channel configuration validation."""
    with pytest.raises(ValueError, match="Channel backend must be one of"):
        ChannelConfig(backend="firestore")

    with pytest.raises(ValueError, match="Invalid collection_template"):
        ChannelConfig(collection_template="calls/{tenant}")

    with pytest.raises(ValueError):
        ChannelConfig(db=16)

    with pytest.raises(ValueError):
        ChannelConfig(app_id="")


def test_peer_config_defaults() -> None:
    """Test that the public STUN servers are used by default."""
    config = PeerConfig()
    assert [server.urls for server in config.ice_servers] == [[u] for u in DEFAULT_STUN_SERVERS]


def test_ice_server_validation() -> None:
    """Test ICE server URL validation."""
    server = IceServerConfig(urls=["turn:turn.example.com"], username="u", credential="p")
    assert server.username == "u"

    with pytest.raises(ValueError, match="ICE server URL"):
        IceServerConfig(urls=["http://example.com"])

    with pytest.raises(ValueError):
        IceServerConfig(urls=[])


def test_capture_config_defaults() -> None:
    """Test capture configuration defaults."""
    config = CaptureConfig()
    assert config.video is True
    assert config.audio is True
    assert config.source is None
    assert config.options == {}


def test_negotiation_config_validation() -> None:
    """Test root configuration validation."""
    assert NegotiationConfig(log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="log_level must be one of"):
        NegotiationConfig(log_level="verbose")

    with pytest.raises(ValueError):
        NegotiationConfig(connect_timeout_s=0)


class TestLoadFromYaml:
    """Test YAML loading with environment overrides."""

    @pytest.fixture(autouse=True)
    def clear_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("REDIS_URL", "SIGNALING_APP_ID", "CAPTURE_SOURCE"):
            monkeypatch.delenv(name, raising=False)

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        """Test loading a configuration file."""
        path = tmp_path / "negotiation.yaml"
        path.write_text(
            "channel:\n"
            "  backend: memory\n"
            "  app_id: demo\n"
            "peer:\n"
            "  ice_servers:\n"
            "    - urls: ['stun:stun.example.com:3478']\n"
            "log_level: warning\n"
        )

        config = NegotiationConfig.from_yaml(path)

        assert config.channel.backend == "memory"
        assert config.channel.collection_path == "artifacts/demo/public/data/calls"
        assert config.peer.ice_servers[0].urls == ["stun:stun.example.com:3478"]
        assert config.log_level == "WARNING"

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        """Test that an empty file yields the defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert NegotiationConfig.from_yaml(path) == NegotiationConfig()

    def test_env_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables override file values."""
        path = tmp_path / "negotiation.yaml"
        path.write_text("channel:\n  url: redis://file:6379\n")
        monkeypatch.setenv("REDIS_URL", "redis://env:6379")
        monkeypatch.setenv("SIGNALING_APP_ID", "env-app")
        monkeypatch.setenv("CAPTURE_SOURCE", "/dev/video0")

        config = NegotiationConfig.from_yaml(path)

        assert config.channel.url == "redis://env:6379"
        assert config.channel.app_id == "env-app"
        assert config.capture.source == "/dev/video0"

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test loading a file that does not exist."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            NegotiationConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_with_defaults(self, tmp_path: Path) -> None:
        """Test the fallback to defaults."""
        assert NegotiationConfig.from_yaml_with_defaults(None) == NegotiationConfig()
        assert NegotiationConfig.from_yaml_with_defaults(tmp_path / "nope.yaml") == (
            NegotiationConfig()
        )

    def test_shipped_config_loads(self) -> None:
        """Test that the repository's config file validates."""
        path = Path(__file__).parents[2] / "configs" / "negotiation.yaml"

        config = NegotiationConfig.from_yaml(path)

        assert config.channel.backend == "redis"
        assert len(config.peer.ice_servers) == 3
