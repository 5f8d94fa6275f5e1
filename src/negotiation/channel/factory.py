"""Channel construction from configuration."""

from src.negotiation.channel.base import RendezvousChannel
from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.channel.redis_channel import RedisChannel
from src.negotiation.config import ChannelConfig


async def create_channel(config: ChannelConfig) -> RendezvousChannel:
    """Create and connect the configured rendezvous channel.

    Raises:
        ChannelError: If the backend cannot be reached
    """
    if config.backend == "memory":
        return InMemoryChannel()

    channel = RedisChannel(
        redis_url=config.url,
        collection=config.collection_path,
        db=config.db,
        key_prefix=config.key_prefix,
        connection_pool_size=config.connection_pool_size,
        poll_interval_ms=config.poll_interval_ms,
    )
    await channel.connect()
    return channel
