"""Connection capability implementations."""

from src.negotiation.peer.aiortc_peer import AiortcPeerConnection
from src.negotiation.peer.base import PeerConnection

__all__ = ["AiortcPeerConnection", "PeerConnection"]
