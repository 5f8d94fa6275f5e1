"""Integration test fixtures.

Provides a throwaway Redis container for exercising the Redis rendezvous
channel against a real server.
"""

import logging
import socket
import subprocess
import time
import uuid
from collections.abc import Iterator

import pytest
import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


@pytest.fixture(scope="session")
def docker_available() -> bool:
    """Check if Docker is available on the system."""
    try:
        result = subprocess.run(  # noqa: S603, S607
            ["docker", "info"],
            capture_output=True,
            check=False,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.SubprocessError, FileNotFoundError):
        return False


@pytest.fixture(scope="module")
def redis_container(docker_available: bool) -> Iterator[str]:
    """Start a Redis container and yield its URL.

    Skips the test if Docker is not available or the container never becomes
    ready.
    """
    if not docker_available:
        pytest.skip("Docker not available")

    container_name = f"test-rendezvous-redis-{uuid.uuid4().hex[:8]}"
    redis_port = get_free_port()
    redis_url = f"redis://localhost:{redis_port}"

    logger.info(f"Starting Redis container: {container_name} on port {redis_port}")
    try:
        subprocess.run(  # noqa: S603, S607
            ["docker", "run", "-d", "--name", container_name, "-p", f"{redis_port}:6379",
             "redis:7-alpine"],
            check=True,
            capture_output=True,
        )
    except subprocess.CalledProcessError as e:
        logger.error(f"Failed to start Redis container: {e.stderr.decode()}")
        pytest.skip(f"Failed to start Redis container: {e}")

    client = redis.Redis.from_url(redis_url)
    try:
        for attempt in range(30):
            try:
                client.ping()
                logger.info(f"Redis ready at {redis_url}")
                break
            except (RedisError, OSError):
                if attempt == 29:
                    pytest.skip("Redis container did not become ready")
                time.sleep(0.5)

        yield redis_url
    finally:
        client.close()
        logger.info(f"Stopping Redis container: {container_name}")
        subprocess.run(  # noqa: S603, S607
            ["docker", "rm", "-f", container_name],
            capture_output=True,
            check=False,
        )
