"""Connection capability backed by aiortc.

aiortc gathers all local candidates while ``setLocalDescription`` runs and
embeds them in the local SDP instead of trickling them. The adapter turns
that into the discovery event stream the negotiation core expects: after the
local description is committed, every gathered candidate is announced in
browser form, followed by an end-of-candidates signal.
"""

import logging
from collections.abc import Callable
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import SessionDescription as ParsedSdp
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from src.negotiation.config import PeerConfig
from src.negotiation.peer.base import PeerConnection
from src.negotiation.subscription import Listeners, Subscription
from src.negotiation.types import CandidatePayload, SessionDescription

logger = logging.getLogger(__name__)


def build_configuration(config: PeerConfig) -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(urls=server.urls, username=server.username, credential=server.credential)
            for server in config.ice_servers
        ]
    )


def parse_ice_candidate(payload: CandidatePayload) -> RTCIceCandidate:
    """Convert a browser-style ICE payload into an aiortc RTCIceCandidate.

    Accepts payloads like:
    { candidate: "candidate:...", sdpMid: "0", sdpMLineIndex: 0 }
    or legacy variants with keys 'id'/'label'.

    Raises:
        ValueError: If the payload is missing the candidate line or media id
    """
    cand = payload.get("candidate")
    if not cand:
        raise ValueError("ICE candidate payload missing 'candidate' field")

    if cand.startswith("candidate:"):
        cand = cand.split(":", 1)[1]

    rtc_cand = candidate_from_sdp(cand)
    rtc_cand.sdpMid = payload.get("sdpMid", payload.get("id"))
    rtc_cand.sdpMLineIndex = payload.get("sdpMLineIndex", payload.get("label"))

    if rtc_cand.sdpMid is None and rtc_cand.sdpMLineIndex is None:
        raise ValueError("ICE candidate missing sdpMid/sdpMLineIndex")

    return rtc_cand


def gathered_candidates(sdp: str) -> list[CandidatePayload]:
    """Extract candidates from a local SDP in browser form."""
    parsed = ParsedSdp.parse(sdp)
    payloads: list[CandidatePayload] = []
    for index, media in enumerate(parsed.media):
        for candidate in media.ice_candidates:
            payloads.append(
                {
                    "candidate": f"candidate:{candidate_to_sdp(candidate)}",
                    "sdpMid": media.rtp.muxId,
                    "sdpMLineIndex": index,
                }
            )
    return payloads


class AiortcPeerConnection(PeerConnection):
    """PeerConnection implementation wrapping ``aiortc.RTCPeerConnection``."""

    def __init__(self, config: PeerConfig) -> None:
        self._pc = RTCPeerConnection(configuration=build_configuration(config))
        self._candidates: Listeners[CandidatePayload | None] = Listeners("candidate")
        self._tracks: Listeners[Any] = Listeners("track")
        self._states: Listeners[str] = Listeners("connectionstatechange")

        @self._pc.on("track")
        def on_track(track: Any) -> None:
            logger.info("Remote track received", extra={"kind": track.kind})
            self._tracks.emit(track)

        @self._pc.on("connectionstatechange")
        def on_state_change() -> None:
            logger.info(
                "Connection state changed", extra={"connection_state": self._pc.connectionState}
            )
            self._states.emit(self._pc.connectionState)

    @property
    def connection_state(self) -> str:
        return str(self._pc.connectionState)

    async def create_offer(self) -> SessionDescription:
        offer = await self._pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self._pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> None:
        await self._pc.setLocalDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )
        local = self._pc.localDescription
        for payload in gathered_candidates(local.sdp):
            self._candidates.emit(payload)
        self._candidates.emit(None)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    def add_track(self, track: Any) -> None:
        self._pc.addTrack(track)

    async def add_ice_candidate(self, payload: CandidatePayload) -> None:
        await self._pc.addIceCandidate(parse_ice_candidate(payload))

    async def close(self) -> None:
        self._candidates.clear()
        self._tracks.clear()
        self._states.clear()
        await self._pc.close()

    def on_candidate(
        self, callback: Callable[[CandidatePayload | None], None]
    ) -> Subscription:
        return self._candidates.subscribe(callback)

    def on_track(self, callback: Callable[[Any], None]) -> Subscription:
        return self._tracks.subscribe(callback)

    def on_connection_state_change(self, callback: Callable[[str], None]) -> Subscription:
        return self._states.subscribe(callback)
