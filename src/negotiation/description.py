"""Local description building."""

import logging
from collections.abc import Iterable
from typing import Any

from src.negotiation.errors import InvalidStateError
from src.negotiation.peer.base import PeerConnection
from src.negotiation.types import SessionDescription

logger = logging.getLogger(__name__)


class LocalDescriptionBuilder:
    """Produces the session's single offer or answer and commits it locally.

    Tracks are attached before the description is created because the
    attached tracks shape the generated description. Renegotiation is not
    supported: only one description is ever built per session.
    """

    def __init__(self, peer: PeerConnection) -> None:
        self.peer = peer
        self.built: SessionDescription | None = None
        self._claimed: str | None = None
        self._attached: list[Any] = []

    async def build_offer(self, tracks: Iterable[Any]) -> SessionDescription:
        """Attach tracks, create an offer and set it as the local description.

        Raises:
            InvalidStateError: If a description was already built
        """
        self._claim("offer")
        self._attach(tracks)
        offer = await self.peer.create_offer()
        await self.peer.set_local_description(offer)
        self.built = offer
        return offer

    async def build_answer(self, tracks: Iterable[Any]) -> SessionDescription:
        """Attach tracks, create an answer and set it as the local description.

        Raises:
            InvalidStateError: If a description was already built
        """
        self._claim("answer")
        self._attach(tracks)
        answer = await self.peer.create_answer()
        await self.peer.set_local_description(answer)
        self.built = answer
        return answer

    def _claim(self, kind: str) -> None:
        if self._claimed is not None:
            raise InvalidStateError(
                f"Cannot build {kind}: a local description was already built for this session"
            )
        self._claimed = kind

    def _attach(self, tracks: Iterable[Any]) -> None:
        for track in tracks:
            if any(track is attached for attached in self._attached):
                continue
            self.peer.add_track(track)
            self._attached.append(track)
        logger.debug("Local tracks attached", extra={"tracks": len(self._attached)})
