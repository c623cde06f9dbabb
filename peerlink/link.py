"""One direction of a negotiated peer-to-peer connection."""
from __future__ import annotations

import asyncio
import enum
import functools
import logging
from typing import Any
from typing import Protocol

from aiortc import RTCIceCandidate
from aiortc import RTCSessionDescription

from peerlink.rtc import fingerprints_from_sdp

logger = logging.getLogger(__name__)


class LinkRole(enum.Enum):
    """Role of a connection within a peer channel."""

    OUTBOUND = 'outbound'
    """Connection created locally to send to the peer."""
    INBOUND = 'inbound'
    """Connection created in response to the peer's offer to receive."""

    @property
    def is_remote(self) -> bool:
        """Tag stamped on ICE candidates produced by this role.

        Candidates produced by the outbound connection are tagged `False`
        and candidates produced by the inbound connection `True`.
        """
        return self is LinkRole.INBOUND

    @classmethod
    def candidate_target(cls, is_remote: bool) -> LinkRole:
        """Local role targeted by a candidate received with a given tag.

        A candidate the peer's inbound connection produced (`True`) belongs
        to our outbound connection, and a candidate the peer's outbound
        connection produced (`False`) belongs to our inbound connection.
        """
        return cls.OUTBOUND if is_remote else cls.INBOUND


class NegotiationState(enum.Enum):
    """Negotiation progress of one link.

    Outbound links move `IDLE -> OFFER_PENDING -> OPEN` and inbound links
    move `IDLE -> ANSWER_PENDING -> OPEN`. A link whose offer or answer
    could not be pushed to the peer is `STALLED` until it is replaced.
    """

    IDLE = 'idle'
    OFFER_PENDING = 'offer-pending'
    ANSWER_PENDING = 'answer-pending'
    OPEN = 'open'
    STALLED = 'stalled'


class LinkListener(Protocol):
    """Receiver of the events a link surfaces to its owner."""

    def on_link_candidate(
        self,
        link: NegotiatedLink,
        candidate: RTCIceCandidate,
    ) -> None:
        """The link's connection discovered a local ICE candidate."""
        ...

    def on_link_negotiation_needed(self, link: NegotiatedLink) -> None:
        """The link's connection requires a new offer."""
        ...

    def on_link_channel_open(self, link: NegotiatedLink) -> None:
        """The link's data channel opened."""
        ...

    def on_link_channel_closed(self, link: NegotiatedLink) -> None:
        """The link's previously open data channel closed."""
        ...

    def on_link_channel_message(
        self,
        link: NegotiatedLink,
        data: bytes | str,
    ) -> None:
        """The link's data channel received a message."""
        ...

    def on_link_connection_lost(self, link: NegotiatedLink) -> None:
        """The link's connection closed or failed without the link closing."""
        ...


class NegotiatedLink:
    """A connection object and its data channel, in one role.

    Both directions of a [`PeerChannel`][peerlink.channel.PeerChannel] are
    instances of this class. The role decides which handlers are wired:
    outbound links react to `negotiationneeded` and open their own data
    channel, inbound links accept the data channel the peer opens and
    forward its messages.

    Args:
        role: Role of the connection.
        connection: Connection object with the `RTCPeerConnection`
            interface and an event emitter `on()` method.
        listener: Owner notified of link events.
        name: Name used in log messages, typically the peer id.
    """

    def __init__(
        self,
        role: LinkRole,
        connection: Any,
        listener: LinkListener,
        *,
        name: str,
    ) -> None:
        self._role = role
        self._connection = connection
        self._listener = listener
        self._name = name

        self._channel: Any = None
        self._state = NegotiationState.IDLE
        self._ready = False
        self._closed = False
        # Serializes one negotiation cycle (description plus push)
        self.lock = asyncio.Lock()

        connection.on('icecandidate', self._on_icecandidate)
        connection.on(
            'iceconnectionstatechange',
            self._on_ice_connection_state_change,
        )
        connection.on(
            'connectionstatechange',
            self._on_connection_state_change,
        )
        if role is LinkRole.OUTBOUND:
            connection.on('negotiationneeded', self._on_negotiation_needed)
        else:
            connection.on('datachannel', self.bind_channel)

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(name={self._name!r}, '
            f'role={self._role.value}, state={self._state.value}, '
            f'ready={self._ready})'
        )

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._name}:{self._role.value}]'

    @property
    def role(self) -> LinkRole:
        """Role of this link."""
        return self._role

    @property
    def is_remote(self) -> bool:
        """Tag stamped on ICE candidates produced by this link."""
        return self._role.is_remote

    @property
    def connection(self) -> Any:
        """Connection object owned by this link."""
        return self._connection

    @property
    def channel(self) -> Any:
        """Data channel bound to this link, if any."""
        return self._channel

    @property
    def state(self) -> NegotiationState:
        """Current negotiation state."""
        return self._state

    @property
    def ready(self) -> bool:
        """The data channel is open."""
        return self._ready

    @property
    def closed(self) -> bool:
        """The link has been closed."""
        return self._closed

    @property
    def has_remote_description(self) -> bool:
        """The connection has received the peer's session description."""
        return self._connection.remoteDescription is not None

    @property
    def connection_lost(self) -> bool:
        """The connection closed or failed and cannot negotiate again."""
        return (
            self._connection.connectionState in ('closed', 'failed')
            or self._connection.signalingState == 'closed'
        )

    def is_new_connection(self, sdp: str) -> bool:
        """Check if an offer comes from a different connection of the peer.

        Renegotiation offers carry the certificate fingerprints of the
        current remote description. An offer from a new connection, such as
        after the peer reconnects, carries new fingerprints. Offers without
        fingerprints are treated as renegotiations.
        """
        remote = self._connection.remoteDescription
        if remote is None:
            return False
        fingerprints = fingerprints_from_sdp(sdp)
        return bool(fingerprints) and fingerprints != fingerprints_from_sdp(
            remote.sdp,
        )

    def _on_icecandidate(self, candidate: RTCIceCandidate | None) -> None:
        # None marks the end of candidate gathering
        if candidate is None or self._closed:
            return
        logger.debug(
            f'{self._log_prefix}: discovered local ICE candidate '
            f'{candidate.type} {candidate.ip}:{candidate.port}',
        )
        self._listener.on_link_candidate(self, candidate)

    def _on_negotiation_needed(self) -> None:
        if not self._closed:
            self._listener.on_link_negotiation_needed(self)

    def _on_ice_connection_state_change(self) -> None:
        logger.debug(
            f'{self._log_prefix}: ICE connection state changed to '
            f'{self._connection.iceConnectionState}',
        )

    def _on_connection_state_change(self) -> None:
        state = self._connection.connectionState
        logger.info(f'{self._log_prefix}: connection state changed to {state}')
        if state in ('closed', 'failed') and not self._closed:
            self._listener.on_link_connection_lost(self)

    def open_channel(self, label: str) -> Any:
        """Create and bind the outbound data channel.

        Raises:
            AssertionError: If called on an inbound link.
        """
        if self._role is not LinkRole.OUTBOUND:
            raise AssertionError('Only outbound links open data channels.')
        channel = self._connection.createDataChannel(label)
        self.bind_channel(channel)
        return channel

    def bind_channel(self, channel: Any) -> None:
        """Bind a data channel to this link and register its handlers.

        Inbound links call this when the peer's data channel is surfaced.
        A channel which is already open counts as opened immediately.
        """
        logger.debug(
            f'{self._log_prefix}: binding data channel {channel.label}',
        )
        self._channel = channel
        channel.on('open', functools.partial(self._on_channel_open, channel))
        channel.on(
            'close',
            functools.partial(self._on_channel_close, channel),
        )
        channel.on(
            'error',
            functools.partial(self._on_channel_error, channel),
        )
        if self._role is LinkRole.INBOUND:
            channel.on(
                'message',
                functools.partial(self._on_channel_message, channel),
            )
        if channel.readyState == 'open':
            self._on_channel_open(channel)

    def _on_channel_open(self, channel: Any) -> None:
        if channel is not self._channel or self._ready or self._closed:
            return
        self._ready = True
        logger.info(f'{self._log_prefix}: data channel {channel.label} open')
        self._listener.on_link_channel_open(self)

    def _on_channel_close(self, channel: Any) -> None:
        if channel is not self._channel or not self._ready:
            return
        self._ready = False
        logger.info(
            f'{self._log_prefix}: data channel {channel.label} closed',
        )
        self._listener.on_link_channel_closed(self)

    def _on_channel_error(self, channel: Any, error: Any = None) -> None:
        logger.error(
            f'{self._log_prefix}: data channel {channel.label} error: '
            f'{error!r}',
        )

    def _on_channel_message(self, channel: Any, data: bytes | str) -> None:
        if channel is not self._channel:
            return
        logger.debug(
            f'{self._log_prefix}: received message of length {len(data)}',
        )
        self._listener.on_link_channel_message(self, data)

    async def create_offer(self) -> str:
        """Create an offer and apply it as the local description.

        Returns:
            The SDP of the applied local description.
        """
        offer = await self._connection.createOffer()
        await self._connection.setLocalDescription(offer)
        self._state = NegotiationState.OFFER_PENDING
        return self._connection.localDescription.sdp

    async def accept_offer(self, sdp: str) -> str:
        """Apply the peer's offer and create the answer to it.

        Returns:
            The SDP of the answer applied as the local description.
        """
        await self._connection.setRemoteDescription(
            RTCSessionDescription(sdp=sdp, type='offer'),
        )
        self._state = NegotiationState.ANSWER_PENDING
        answer = await self._connection.createAnswer()
        await self._connection.setLocalDescription(answer)
        return self._connection.localDescription.sdp

    async def accept_answer(self, sdp: str) -> None:
        """Apply the peer's answer as the remote description."""
        await self._connection.setRemoteDescription(
            RTCSessionDescription(sdp=sdp, type='answer'),
        )
        self._state = NegotiationState.OPEN

    async def add_candidate(self, candidate: RTCIceCandidate) -> None:
        """Add a candidate received from the peer to the connection."""
        await self._connection.addIceCandidate(candidate)

    def mark_open(self) -> None:
        """Record that negotiation completed from this side."""
        self._state = NegotiationState.OPEN

    def mark_stalled(self) -> None:
        """Record that the offer or answer could not be delivered."""
        self._state = NegotiationState.STALLED

    def close_channel(self) -> None:
        """Close the data channel, keeping the connection."""
        if self._channel is not None:
            self._channel.close()

    async def close(self) -> None:
        """Close the data channel and the connection."""
        if self._closed:
            return
        if self._ready:
            self._ready = False
            self._listener.on_link_channel_closed(self)
        self._closed = True
        self.close_channel()
        await self._connection.close()
        self._state = NegotiationState.IDLE
        logger.debug(f'{self._log_prefix}: closed')
