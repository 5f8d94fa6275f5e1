"""Local media capture.

Capture devices produce a ``MediaStream`` of local tracks that the
description builder attaches to the connection before building an offer or
answer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from src.negotiation.config import CaptureConfig
from src.negotiation.errors import CapturePermissionError

logger = logging.getLogger(__name__)


@dataclass
class MediaStream:
    """Set of local media tracks acquired from a capture device."""

    tracks: list[Any] = field(default_factory=list)
    active: bool = True

    def stop(self) -> None:
        """Stop every track. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        for track in self.tracks:
            track.stop()


class CaptureDevice(ABC):
    """Base class for capture devices."""

    @abstractmethod
    async def acquire_stream(self, video: bool = True, audio: bool = True) -> MediaStream:
        """Acquire local tracks.

        Raises:
            CapturePermissionError: If access is denied or tracks are unavailable
        """


class MediaPlayerCapture(CaptureDevice):
    """Capture device backed by aiortc's MediaPlayer.

    Reads from a file, URL or device described by ``CaptureConfig``. Without a
    configured source, aiortc's synthetic tracks (silence and blank frames)
    are used.
    """

    def __init__(self, config: CaptureConfig) -> None:
        self.config = config
        self._player: Any = None

    async def acquire_stream(self, video: bool = True, audio: bool = True) -> MediaStream:
        if self.config.source is None:
            from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

            tracks: list[Any] = []
            if audio:
                tracks.append(AudioStreamTrack())
            if video:
                tracks.append(VideoStreamTrack())
            logger.info("Using synthetic capture tracks", extra={"tracks": len(tracks)})
            return MediaStream(tracks=tracks)

        from aiortc.contrib.media import MediaPlayer

        try:
            self._player = MediaPlayer(
                self.config.source,
                format=self.config.format,
                options=self.config.options or None,
            )
        except OSError as e:
            logger.error(f"Capture source {self.config.source} unavailable: {e}")
            raise CapturePermissionError(
                f"Could not access capture source {self.config.source}: {e}"
            ) from e

        tracks = []
        for kind, wanted, track in (
            ("audio", audio, self._player.audio),
            ("video", video, self._player.video),
        ):
            if not wanted:
                continue
            if track is None:
                raise CapturePermissionError(
                    f"Capture source {self.config.source} provides no {kind} track"
                )
            tracks.append(track)

        logger.info(
            "Capture stream acquired",
            extra={"source": self.config.source, "tracks": len(tracks)},
        )
        return MediaStream(tracks=tracks)
