"""Rendezvous channel backends.

Provides the channel abstraction the coordinator signals through, with an
in-process backend and a Redis backend.
"""

from src.negotiation.channel.base import ChannelEntry, RecordData, RendezvousChannel
from src.negotiation.channel.factory import create_channel
from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.channel.redis_channel import RedisChannel

__all__ = [
    "ChannelEntry",
    "InMemoryChannel",
    "RecordData",
    "RedisChannel",
    "RendezvousChannel",
    "create_channel",
]
