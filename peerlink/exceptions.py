"""Exception types raised by peer channels."""
from __future__ import annotations


class PeerChannelError(Exception):
    """Base exception type for peer channel errors."""

    pass


class PeerOfflineError(PeerChannelError):
    """Peer is offline so an outbound connection cannot be created."""

    pass


class PeerChannelClosedError(PeerChannelError):
    """Operation attempted on a peer channel that has been closed."""

    pass


class PeerChannelNotReadyError(PeerChannelError):
    """The outbound data channel to the peer is not open."""

    pass


class CandidateTimeoutError(PeerChannelError):
    """Timeout waiting for a connection to accept an ICE candidate."""

    pass


class NegotiationContractError(PeerChannelError):
    """Negotiation message arrived that the channel cannot have asked for.

    For example, an SDP answer received before any outbound connection
    (and therefore any offer) exists.
    """

    pass
