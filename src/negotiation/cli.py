"""Command-line entry point for rendezvous calls.

Commands:
    create            Start a call as initiator and print its id
    join CALL_ID      Join an existing call as responder
    loopback          Run both roles in-process over an in-memory channel
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from src.negotiation.capture import MediaPlayerCapture
from src.negotiation.channel.base import RendezvousChannel
from src.negotiation.channel.factory import create_channel
from src.negotiation.channel.memory import InMemoryChannel
from src.negotiation.client import CallClient
from src.negotiation.config import NegotiationConfig
from src.negotiation.errors import NegotiationError
from src.negotiation.peer.aiortc_peer import AiortcPeerConnection
from src.negotiation.utils.logging import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("configs") / "negotiation.yaml"


class RemoteMediaSink:
    """Consumes remote tracks, recording them to a file when requested."""

    def __init__(self, record_path: Path | None = None) -> None:
        from aiortc.contrib.media import MediaBlackhole, MediaRecorder

        self._sink: Any = MediaRecorder(str(record_path)) if record_path else MediaBlackhole()
        self._start_task: asyncio.Task[None] | None = None

    def add_track(self, track: Any) -> None:
        self._sink.addTrack(track)
        if self._start_task is None:
            self._start_task = asyncio.get_running_loop().create_task(
                self._sink.start(), name="remote-media-sink"
            )

    async def stop(self) -> None:
        """Stop the sink, re-raising any failure from starting it."""
        if self._start_task is None:
            return
        try:
            await self._start_task
        finally:
            await self._sink.stop()


def build_client(config: NegotiationConfig, channel: RendezvousChannel) -> CallClient:
    return CallClient(
        config=config,
        channel=channel,
        peer_factory=lambda: AiortcPeerConnection(config.peer),
        capture=MediaPlayerCapture(config.capture),
    )


async def run_call(config: NegotiationConfig, call_id: str | None, record: Path | None) -> int:
    """Create (call_id None) or join a call and hold it until interrupted."""
    channel = await create_channel(config.channel)
    client = build_client(config, channel)
    sink = RemoteMediaSink(record)
    client.on_remote_track(sink.add_track)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await client.start_local_stream()
        if call_id is None:
            new_id = await client.create_call()
            print(f"Call ID: {new_id}", flush=True)
        else:
            await client.join_call(call_id)
        await client.wait_connected(timeout=config.connect_timeout_s)
        print(f"Connected ({client.state.value}); press Ctrl+C to hang up", flush=True)
        await stop.wait()
        return 0
    except TimeoutError:
        logger.error(f"No connection within {config.connect_timeout_s}s")
        return 1
    except NegotiationError as e:
        logger.error(f"Call failed: {e}", extra={"error_type": type(e).__name__})
        return 1
    finally:
        await client.shutdown()
        await channel.close()
        await sink.stop()


async def run_loopback(config: NegotiationConfig) -> int:
    """Negotiate a call between two local clients over an in-memory channel."""
    channel = InMemoryChannel()
    caller = build_client(config, channel)
    callee = build_client(config, channel)
    try:
        await caller.start_local_stream()
        await callee.start_local_stream()
        call_id = await caller.create_call()
        await callee.join_call(call_id)
        await asyncio.gather(
            caller.wait_connected(timeout=config.connect_timeout_s),
            callee.wait_connected(timeout=config.connect_timeout_s),
        )
        print(f"Loopback call {call_id} connected", flush=True)
        return 0
    except (TimeoutError, NegotiationError) as e:
        logger.error(f"Loopback call failed: {e}")
        return 1
    finally:
        await caller.shutdown()
        await callee.shutdown()
        await channel.close()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Peer-to-peer calls over a rendezvous channel")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to negotiation config YAML file",
    )
    parser.add_argument(
        "--record",
        type=Path,
        default=None,
        help="Record remote media to this file",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("create", help="Create a call and wait for the peer")
    join = commands.add_parser("join", help="Join a call by id")
    join.add_argument("call_id", help="Call ID printed by the initiator")
    commands.add_parser("loopback", help="Connect two local clients in-process")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the rendezvous call CLI."""
    load_dotenv()
    args = parse_args(argv)
    config = NegotiationConfig.from_yaml_with_defaults(args.config)
    setup_logging(config.log_level, json_format=args.json_logs)

    if args.command == "loopback":
        coro = run_loopback(config)
    else:
        coro = run_call(config, args.call_id if args.command == "join" else None, args.record)

    try:
        sys.exit(asyncio.run(coro))
    except KeyboardInterrupt:
        logger.info("Call interrupted")


if __name__ == "__main__":
    main()
