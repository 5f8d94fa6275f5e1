"""Unit tests for the user-facing call client."""

import pytest

from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.client import CallClient
from src.negotiation.config import NegotiationConfig
from src.negotiation.errors import (
    CapturePermissionError,
    InvalidStateError,
    NotFoundError,
    PreconditionError,
)
from src.negotiation.session import NegotiationState
from tests.helpers.negotiation_fakes import (
    FakeCaptureDevice,
    FakePeerConnection,
    make_candidate,
    settle,
)


class PeerFactory:
    """Creates fake peers and remembers them."""

    def __init__(self, name: str, candidates: int = 1) -> None:
        self.name = name
        self.candidates = candidates
        self.created: list[FakePeerConnection] = []

    def __call__(self) -> FakePeerConnection:
        peer = FakePeerConnection(
            f"{self.name}{len(self.created)}",
            [make_candidate(self.name, i) for i in range(self.candidates)],
        )
        self.created.append(peer)
        return peer


def make_client(
    config: NegotiationConfig, channel: InMemoryChannel, name: str, deny: bool = False
) -> tuple[CallClient, PeerFactory]:
    factory = PeerFactory(name)
    return CallClient(config, channel, factory, FakeCaptureDevice(deny=deny)), factory


class TestLocalStream:
    """Test local stream acquisition."""

    async def test_start_local_stream(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that the stream is acquired once and reused."""
        client, _ = make_client(config, channel, "a")

        stream = await client.start_local_stream()
        again = await client.start_local_stream()

        assert stream is again
        assert [t.kind for t in stream.tracks] == ["audio", "video"]
        assert client.capture.acquired == 1  # type: ignore[attr-defined]

    async def test_permission_denied(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that a denied capture is surfaced as the client error."""
        client, _ = make_client(config, channel, "a", deny=True)

        with pytest.raises(CapturePermissionError):
            await client.start_local_stream()

        assert isinstance(client.error, CapturePermissionError)
        assert client.local_stream is None

    async def test_call_requires_stream(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that creating or joining without a stream is a precondition error."""
        client, factory = make_client(config, channel, "a")

        with pytest.raises(PreconditionError):
            await client.create_call()
        with pytest.raises(PreconditionError):
            await client.join_call("some-call")

        assert isinstance(client.error, PreconditionError)
        assert client.state is NegotiationState.IDLE
        assert factory.created == []


class TestCalls:
    """Test creating, joining and hanging up calls."""

    async def test_create_call(self, config: NegotiationConfig, channel: InMemoryChannel) -> None:
        """Test that a created call exposes its id and waits for an answer."""
        client, _ = make_client(config, channel, "a")
        await client.start_local_stream()

        call_id = await client.create_call()

        assert client.call_id == call_id
        assert client.state is NegotiationState.AWAITING_ANSWER
        assert client.loading is False
        assert client.error is None

    @pytest.mark.parametrize("call_id", ["", "  "])
    async def test_join_requires_call_id(
        self, config: NegotiationConfig, channel: InMemoryChannel, call_id: str
    ) -> None:
        """Test that joining needs a non-empty id."""
        client, factory = make_client(config, channel, "b")
        await client.start_local_stream()

        with pytest.raises(PreconditionError):
            await client.join_call(call_id)

        assert factory.created == []

    async def test_join_unknown_call(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that joining a missing call fails with not-found."""
        client, _ = make_client(config, channel, "b")
        await client.start_local_stream()

        with pytest.raises(NotFoundError):
            await client.join_call("does-not-exist")

        assert isinstance(client.error, NotFoundError)
        assert client.state is NegotiationState.FAILED
        assert client.loading is False

    async def test_second_call_while_in_progress(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that a live call must be hung up first."""
        client, factory = make_client(config, channel, "a")
        await client.start_local_stream()
        await client.create_call()

        with pytest.raises(InvalidStateError):
            await client.create_call()

        assert len(factory.created) == 1

    async def test_new_call_after_hang_up(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that each call gets a fresh coordinator and connection."""
        client, factory = make_client(config, channel, "a")
        await client.start_local_stream()
        first_id = await client.create_call()

        await client.hang_up()
        assert client.state is NegotiationState.CLOSED
        assert factory.created[0].closed is True

        second_id = await client.create_call()

        assert second_id != first_id
        assert len(factory.created) == 2
        assert client.state is NegotiationState.AWAITING_ANSWER
        assert client.local_stream is not None and client.local_stream.active

    async def test_retry_after_failure_clears_error(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that a failed join can be retried with a good id."""
        caller, _ = make_client(config, channel, "a")
        callee, _ = make_client(config, channel, "b")
        await caller.start_local_stream()
        await callee.start_local_stream()
        call_id = await caller.create_call()

        with pytest.raises(NotFoundError):
            await callee.join_call("wrong-id")
        await callee.join_call(call_id)

        assert callee.error is None
        assert callee.state is NegotiationState.AWAITING_CONNECTION

    async def test_full_call(self, config: NegotiationConfig, channel: InMemoryChannel) -> None:
        """Test two clients reaching connected and exchanging tracks."""
        caller, caller_peers = make_client(config, channel, "a")
        callee, callee_peers = make_client(config, channel, "b")
        remote_tracks: list[object] = []
        callee.on_remote_track(remote_tracks.append)
        await caller.start_local_stream()
        await callee.start_local_stream()

        call_id = await caller.create_call()
        await callee.join_call(call_id)
        await settle(channel)
        caller_peers.created[0].set_state("connected")
        callee_peers.created[0].set_state("connected")
        await caller.wait_connected(timeout=1.0)
        await callee.wait_connected(timeout=1.0)

        assert caller.state is NegotiationState.CONNECTED
        assert callee.state is NegotiationState.CONNECTED
        caller_peer, callee_peer = caller_peers.created[0], callee_peers.created[0]
        assert callee_peer.applied_candidates == caller_peer.local_candidates

        track = object()
        callee_peers.created[0].emit_track(track)
        assert remote_tracks == [track]

    async def test_wait_connected_without_call(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test waiting with no call in progress."""
        client, _ = make_client(config, channel, "a")

        with pytest.raises(InvalidStateError):
            await client.wait_connected(timeout=0.1)

    async def test_shutdown_stops_stream(
        self, config: NegotiationConfig, channel: InMemoryChannel
    ) -> None:
        """Test that shutdown ends the call and releases capture."""
        client, factory = make_client(config, channel, "a")
        stream = await client.start_local_stream()
        await client.create_call()

        await client.shutdown()

        assert stream.active is False
        assert all(track.stopped for track in stream.tracks)
        assert client.local_stream is None
        assert factory.created[0].closed is True
