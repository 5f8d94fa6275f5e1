"""Shared fixtures for negotiation unit tests."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from src.negotiation.capture import MediaStream
from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.config import ChannelConfig, NegotiationConfig
from tests.helpers.negotiation_fakes import FakeTrack


@pytest_asyncio.fixture
async def channel() -> AsyncIterator[InMemoryChannel]:
    """In-memory rendezvous channel, closed after the test."""
    memory_channel = InMemoryChannel()
    yield memory_channel
    await memory_channel.close()


@pytest.fixture
def config() -> NegotiationConfig:
    """Configuration using the in-memory channel backend."""
    return NegotiationConfig(channel=ChannelConfig(backend="memory"))


@pytest.fixture
def stream() -> MediaStream:
    """Active local stream with one audio and one video track."""
    return MediaStream(tracks=[FakeTrack("audio"), FakeTrack("video")])
