"""Shared type definitions for the negotiation core."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Opaque network-reachability descriptor, passed through as produced by the
# connection capability (browser form: candidate / sdpMid / sdpMLineIndex).
CandidatePayload = dict[str, Any]
CallId = str


class Role(Enum):
    """Negotiation role of a local session."""

    INITIATOR = "initiator"
    RESPONDER = "responder"

    @property
    def opposite(self) -> "Role":
        """Role of the remote peer."""
        return Role.RESPONDER if self is Role.INITIATOR else Role.INITIATOR


@dataclass(frozen=True)
class SessionDescription:
    """Offer or answer describing a peer's proposed media configuration.

    Attributes:
        type: Description type ("offer" or "answer")
        sdp: Opaque session description payload
    """

    type: str
    sdp: str

    def to_dict(self) -> dict[str, str]:
        """Serialize for storage in a call record."""
        return {"type": self.type, "sdp": self.sdp}

    @classmethod
    def from_dict(cls, data: Any) -> "SessionDescription":
        """Deserialize from a call record field.

        Raises:
            ValueError: If the payload is not a description
        """
        if not isinstance(data, dict):
            raise ValueError(f"Invalid session description: {data!r}")
        sdp_type = data.get("type")
        sdp = data.get("sdp")
        if not isinstance(sdp_type, str) or not isinstance(sdp, str):
            raise ValueError("Session description requires string 'type' and 'sdp' fields")
        return cls(type=sdp_type, sdp=sdp)


@dataclass(frozen=True)
class CandidateEntry:
    """Role-tagged candidate stored in a call record's candidate sequence."""

    entry_id: str
    role: Role
    payload: CandidatePayload = field(default_factory=dict)

    def to_channel(self) -> dict[str, Any]:
        return {"role": self.role.value, "payload": self.payload}

    @classmethod
    def from_channel(cls, entry_id: str, data: dict[str, Any]) -> "CandidateEntry":
        """Build an entry from raw channel data.

        Raises:
            ValueError: If role or payload is missing or malformed
        """
        try:
            role = Role(data["role"])
        except (KeyError, ValueError) as e:
            raise ValueError(f"Candidate entry {entry_id} has no valid role") from e
        payload = data.get("payload")
        if not isinstance(payload, dict):
            raise ValueError(f"Candidate entry {entry_id} has no payload")
        return cls(entry_id=entry_id, role=role, payload=payload)


__all__ = [
    "CallId",
    "CandidateEntry",
    "CandidatePayload",
    "Role",
    "SessionDescription",
]
