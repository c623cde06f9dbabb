"""Signaling transport interface protocols."""
from __future__ import annotations

from typing import Protocol
from typing import runtime_checkable

from peerlink.signaling.messages import InboundSignal


@runtime_checkable
class SignalingTransport(Protocol):
    """Request/response surface for pushing negotiation messages to a peer.

    Every call is a single attempt keyed by the destination peer's id and
    authenticated by the caller's token. A call returns once the relay
    acknowledges the message.

    Implementations must raise a subclass of
    [`SignalingError`][peerlink.signaling.exceptions.SignalingError] for
    every delivery failure.
    """

    async def offer_session_description(
        self,
        peer_id: str,
        description: str,
        token: str,
    ) -> None:
        """Push an SDP offer to a peer."""
        ...

    async def answer_session_description(
        self,
        peer_id: str,
        description: str,
        token: str,
    ) -> None:
        """Push an SDP answer to a peer."""
        ...

    async def send_ice_candidate(
        self,
        peer_id: str,
        is_remote: bool,
        candidate: str,
        token: str,
    ) -> None:
        """Push a JSON serialized ICE candidate to a peer.

        Args:
            peer_id: Destination peer.
            is_remote: `True` if the candidate was produced by the local
                inbound connection, `False` if by the outbound connection.
            candidate: JSON serialized candidate.
            token: Credential authenticating the caller.
        """
        ...


@runtime_checkable
class SignalingSource(Protocol):
    """Source of negotiation messages forwarded from other peers."""

    async def recv(self) -> InboundSignal:
        """Receive the next negotiation message.

        Raises:
            SignalingConnectionError: If the source is closed.
        """
        ...


@runtime_checkable
class SignalingEndpoint(SignalingTransport, SignalingSource, Protocol):
    """Transport which is also the source of messages sent to this client.

    [`SignalingClient`][peerlink.signaling.client.SignalingClient]
    implements this protocol.
    """

    pass
