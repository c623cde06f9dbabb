"""Per-peer connection orchestration.

A [`PeerChannel`][peerlink.channel.PeerChannel] brings up two WebRTC
connections with one remote peer: an outbound connection created locally
with [`connect()`][peerlink.channel.PeerChannel.connect] to send data, and an
inbound connection created in response to the peer's offer to receive data.
Negotiation messages (SDP offers and answers, trickle ICE candidates) are
pushed through a
[`SignalingTransport`][peerlink.signaling.protocols.SignalingTransport] and
delivered back to the channel by the host through
[`on_sdp_signal()`][peerlink.channel.PeerChannel.on_sdp_signal] and
[`on_ice_candidate_signal()`][peerlink.channel.PeerChannel.on_ice_candidate_signal].

ICE candidates are tagged with the role of the connection that produced
them: `is_remote=False` for candidates from the outbound connection and
`is_remote=True` for candidates from the inbound connection. The receiver
applies a `True` candidate to its outbound connection and a `False`
candidate to its inbound connection.
"""
from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from typing import Any
from typing import Sequence

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from aiortc import RTCIceCandidate

from peerlink.config import IceServerConfig
from peerlink.config import NegotiationConfig
from peerlink.config import PeerChannelConfig
from peerlink.events import ConnectionEstablished
from peerlink.events import ConnectionLost
from peerlink.events import NotificationSurface
from peerlink.events import RawPayload
from peerlink.exceptions import CandidateTimeoutError
from peerlink.exceptions import NegotiationContractError
from peerlink.exceptions import PeerChannelClosedError
from peerlink.exceptions import PeerChannelNotReadyError
from peerlink.exceptions import PeerOfflineError
from peerlink.link import LinkRole
from peerlink.link import NegotiatedLink
from peerlink.link import NegotiationState
from peerlink.rtc import candidate_from_json
from peerlink.rtc import candidate_to_json
from peerlink.rtc import ConnectionFactory
from peerlink.rtc import create_peer_connection
from peerlink.signaling.exceptions import SignalingError
from peerlink.signaling.messages import SdpKind
from peerlink.signaling.protocols import SignalingTransport
from peerlink.utils.tasks import TaskScope
from peerlink.utils.tasks import TaskScopeClosedError
from peerlink.utils.tasks import wait_for_condition

logger = logging.getLogger(__name__)


class PeerChannel:
    """Outbound and inbound connections with a single remote peer.

    Example:
        ```python
        from peerlink.channel import PeerChannel

        channel = PeerChannel('bob', signaling, token=token, online=True)
        subscriber = channel.notifications.connected.subscribe()

        await channel.connect()
        await subscriber.get()
        channel.send(b'hello')
        ```

    Note:
        The host is responsible for delivering negotiation messages from
        the peer by calling
        [`on_sdp_signal()`][peerlink.channel.PeerChannel.on_sdp_signal] and
        [`on_ice_candidate_signal()`][peerlink.channel.PeerChannel.on_ice_candidate_signal].
        A [`PeerRoster`][peerlink.roster.PeerRoster] does this for a set of
        peers sharing one signaling client.

    Args:
        peer_id: Identifier of the remote peer.
        signaling: Transport used to push negotiation messages to the peer.
        token: Credential attached to every signaling call.
        ice_servers: STUN/TURN servers used by both connections.
        display_name: Presentation name of the peer.
        avatar: Reference to the peer's avatar image.
        online: If the peer is known to be online. Outbound connections
            can only be created while the peer is online.
        negotiation: Candidate wait configuration.
        connection_factory: Callable creating a new connection object from
            the list of ICE servers.
    """

    def __init__(
        self,
        peer_id: str,
        signaling: SignalingTransport,
        *,
        token: str,
        ice_servers: Sequence[IceServerConfig] = (),
        display_name: str | None = None,
        avatar: str | None = None,
        online: bool = False,
        negotiation: NegotiationConfig | None = None,
        connection_factory: ConnectionFactory = create_peer_connection,
    ) -> None:
        self.id = peer_id
        self.display_name = display_name
        self.avatar = avatar
        self.online = online
        self.room_ids: list[str] = []

        self._signaling = signaling
        self._token = token
        self._ice_servers = tuple(ice_servers)
        self._negotiation = (
            negotiation if negotiation is not None else NegotiationConfig()
        )
        self._connection_factory = connection_factory

        self._outbound: NegotiatedLink | None = None
        self._inbound: NegotiatedLink | None = None
        self._scope = TaskScope(f'peer-{peer_id}')
        self._closed = False

        self.notifications, self._publisher = NotificationSurface.open(
            peer_id,
        )

    @classmethod
    def from_config(
        cls,
        peer_id: str,
        signaling: SignalingTransport,
        config: PeerChannelConfig,
        *,
        token: str,
        **kwargs: Any,
    ) -> Self:
        """Create a channel using the ICE servers and timeouts of a config.

        Args:
            peer_id: Identifier of the remote peer.
            signaling: Transport used to push negotiation messages.
            config: Configuration to use.
            token: Credential attached to every signaling call.
            kwargs: Additional keyword arguments passed to the constructor.
        """
        return cls(
            peer_id,
            signaling,
            token=token,
            ice_servers=config.ice_servers,
            negotiation=config.negotiation,
            **kwargs,
        )

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(id={self.id!r}, online={self.online}, '
            f'send_ready={self.send_ready}, '
            f'receive_ready={self.receive_ready})'
        )

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self.id}]'

    @property
    def ice_servers(self) -> tuple[IceServerConfig, ...]:
        """ICE servers used by both connections."""
        return self._ice_servers

    @property
    def closed(self) -> bool:
        """The channel has been closed."""
        return self._closed

    @property
    def send_ready(self) -> bool:
        """The outbound data channel is open."""
        return self._outbound is not None and self._outbound.ready

    @property
    def receive_ready(self) -> bool:
        """The inbound data channel is open."""
        return self._inbound is not None and self._inbound.ready

    @property
    def outbound_state(self) -> NegotiationState:
        """Negotiation state of the outbound connection."""
        if self._outbound is None:
            return NegotiationState.IDLE
        return self._outbound.state

    @property
    def inbound_state(self) -> NegotiationState:
        """Negotiation state of the inbound connection."""
        if self._inbound is None:
            return NegotiationState.IDLE
        return self._inbound.state

    @property
    def stalled(self) -> bool:
        """An offer or answer could not be delivered to the peer.

        The outbound side recovers through
        [`reconnect()`][peerlink.channel.PeerChannel.reconnect]. The inbound
        side recovers when the peer sends a new offer.
        """
        return NegotiationState.STALLED in (
            self.outbound_state,
            self.inbound_state,
        )

    def join_room(self, room_id: str) -> None:
        """Record membership of a room, ignoring duplicates."""
        if room_id not in self.room_ids:
            self.room_ids.append(room_id)

    def leave_room(self, room_id: str) -> None:
        """Remove membership of a room if present."""
        if room_id in self.room_ids:
            self.room_ids.remove(room_id)

    def _spawn(self, coro: Any, *args: Any) -> None:
        if self._scope.closed:
            logger.debug(
                f'{self._log_prefix}: channel closed, not starting '
                f'{coro.__name__}',
            )
            return
        self._scope.spawn(coro, *args)

    async def connect(self) -> None:
        """Create a new outbound connection and data channel.

        Any previous outbound connection is closed first. The offer is
        created and pushed to the peer once the connection requests
        negotiation.

        Raises:
            PeerOfflineError: If the peer is offline. No connection is
                created or closed.
            PeerChannelClosedError: If the channel has been closed.
        """
        if self._closed:
            raise PeerChannelClosedError(f'Channel to {self.id} is closed.')
        if not self.online:
            raise PeerOfflineError(
                f'Cannot connect to {self.id} because the peer is offline.',
            )

        if self._outbound is not None:
            previous, self._outbound = self._outbound, None
            await previous.close()

        connection = self._connection_factory(self._ice_servers)
        link = NegotiatedLink(
            LinkRole.OUTBOUND,
            connection,
            self,
            name=self.id,
        )
        self._outbound = link
        channel = link.open_channel(uuid.uuid4().hex)
        logger.info(
            f'{self._log_prefix}: created outbound connection with data '
            f'channel {channel.label}',
        )

    async def reconnect(self) -> None:
        """Replace the outbound connection.

        Does nothing while the peer is offline. The inbound connection is
        not affected.
        """
        if not self.online:
            logger.debug(
                f'{self._log_prefix}: peer is offline, skipping reconnect',
            )
            return
        logger.info(f'{self._log_prefix}: reconnecting outbound connection')
        self.disconnect_send_channel()
        await self.connect()

    def disconnect_send_channel(self) -> None:
        """Close the outbound data channel."""
        if self._outbound is not None:
            self._outbound.close_channel()

    def disconnect_receive_channel(self) -> None:
        """Close the inbound data channel."""
        if self._inbound is not None:
            self._inbound.close_channel()

    def send(self, payload: bytes | str) -> None:
        """Send a payload on the outbound data channel.

        Raises:
            PeerChannelNotReadyError: If the outbound data channel is not
                open.
        """
        if self._outbound is None or not self._outbound.ready:
            raise PeerChannelNotReadyError(
                f'Outbound data channel to {self.id} is not open.',
            )
        self._outbound.channel.send(payload)

    async def on_sdp_signal(
        self,
        kind: SdpKind | str,
        description: str,
    ) -> None:
        """Handle an SDP offer or answer received from the peer.

        An offer creates the inbound connection if it does not exist yet and
        results in exactly one answer being pushed back. An answer is applied
        to the outbound connection.

        Args:
            kind: Whether `description` is an offer or an answer.
            description: Session description received from the peer.

        Raises:
            NegotiationContractError: If an answer is received when there is
                no outbound connection.
            PeerChannelClosedError: If the channel is closed before or while
                handling the message.
        """
        kind = SdpKind(kind)
        if self._closed:
            raise PeerChannelClosedError(f'Channel to {self.id} is closed.')

        if kind is SdpKind.OFFER:
            handler = self._accept_offer
        else:
            handler = self._accept_answer
        try:
            await self._scope.run(handler, description)
        except TaskScopeClosedError as e:
            raise PeerChannelClosedError(
                f'Channel to {self.id} closed while handling {kind.value}.',
            ) from e

    async def on_ice_candidate_signal(
        self,
        candidate_json: str,
        is_remote: bool,
    ) -> bool:
        """Handle an ICE candidate received from the peer.

        A candidate tagged `is_remote=True` was produced by the peer's
        inbound connection and is applied to the local outbound connection
        once it holds the peer's answer. A candidate tagged
        `is_remote=False` is applied to the local inbound connection once it
        exists. Candidates whose target is not ready within the configured
        timeout are dropped.

        Args:
            candidate_json: JSON serialized candidate.
            is_remote: Tag set by the peer.

        Returns:
            `True` if the candidate was applied or `False` if it was dropped.
        """
        if self._closed:
            logger.debug(
                f'{self._log_prefix}: channel closed, dropping ICE candidate',
            )
            return False

        try:
            candidate = candidate_from_json(candidate_json)
        except ValueError as e:
            logger.error(
                f'{self._log_prefix}: dropping malformed ICE candidate: {e}',
            )
            return False

        role = LinkRole.candidate_target(is_remote)
        try:
            await self._scope.run(self._apply_candidate, role, candidate)
        except CandidateTimeoutError as e:
            logger.error(f'{self._log_prefix}: dropping ICE candidate: {e}')
            return False
        except TaskScopeClosedError:
            logger.debug(
                f'{self._log_prefix}: channel closed while waiting to apply '
                'ICE candidate',
            )
            return False
        return True

    def _candidate_target(self, role: LinkRole) -> NegotiatedLink | None:
        # Outbound links accept candidates once they hold the peer's answer
        if role is LinkRole.OUTBOUND:
            link = self._outbound
            if link is not None and link.has_remote_description:
                return link
            return None
        return self._inbound

    async def _apply_candidate(
        self,
        role: LinkRole,
        candidate: RTCIceCandidate,
    ) -> None:
        timeout = self._negotiation.candidate_timeout
        try:
            await wait_for_condition(
                lambda: self._candidate_target(role) is not None,
                timeout=timeout,
                interval=self._negotiation.candidate_poll_interval,
            )
        except asyncio.TimeoutError as e:
            raise CandidateTimeoutError(
                f'The {role.value} connection was not ready for the ICE '
                f'candidate within {timeout} seconds.',
            ) from e

        link = self._candidate_target(role)
        if link is None:
            raise CandidateTimeoutError(
                f'The {role.value} connection was replaced while waiting to '
                'apply the ICE candidate.',
            )
        await link.add_candidate(candidate)
        logger.debug(
            f'{self._log_prefix}: applied ICE candidate to {role.value} '
            'connection',
        )

    async def _accept_offer(self, description: str) -> None:
        link = self._inbound
        if link is not None and (
            link.connection_lost or link.is_new_connection(description)
        ):
            logger.info(
                f'{self._log_prefix}: replacing inbound connection for new '
                'offer',
            )
            self._inbound = None
            await link.close()

        link = self._inbound
        if link is None:
            link = NegotiatedLink(
                LinkRole.INBOUND,
                self._connection_factory(self._ice_servers),
                self,
                name=self.id,
            )
            self._inbound = link
            logger.info(f'{self._log_prefix}: created inbound connection')

        async with link.lock:
            if link.closed:
                logger.debug(
                    f'{self._log_prefix}: inbound connection replaced, '
                    'dropping offer',
                )
                return
            answer = await link.accept_offer(description)
            try:
                await self._signaling.answer_session_description(
                    self.id,
                    answer,
                    self._token,
                )
            except SignalingError as e:
                link.mark_stalled()
                logger.error(
                    f'{self._log_prefix}: failed to push answer: {e!r}',
                )
            else:
                link.mark_open()
                logger.info(f'{self._log_prefix}: sent answer')

    async def _accept_answer(self, description: str) -> None:
        link = self._outbound
        if link is None:
            raise NegotiationContractError(
                f'Received an answer from {self.id} but there is no '
                'outbound connection.',
            )
        await link.accept_answer(description)
        logger.info(f'{self._log_prefix}: applied answer')

    async def _renegotiate(self, link: NegotiatedLink) -> None:
        async with link.lock:
            if link.closed:
                return
            offer = await link.create_offer()
            try:
                await self._signaling.offer_session_description(
                    self.id,
                    offer,
                    self._token,
                )
            except SignalingError as e:
                link.mark_stalled()
                logger.error(
                    f'{self._log_prefix}: failed to push offer: {e!r}',
                )
            else:
                logger.info(f'{self._log_prefix}: sent offer')

    async def _push_candidate(self, is_remote: bool, candidate: str) -> None:
        try:
            await self._signaling.send_ice_candidate(
                self.id,
                is_remote,
                candidate,
                self._token,
            )
        except SignalingError as e:
            logger.error(
                f'{self._log_prefix}: failed to push ICE candidate '
                f'(is_remote={is_remote}): {e!r}',
            )

    def on_link_candidate(
        self,
        link: NegotiatedLink,
        candidate: RTCIceCandidate,
    ) -> None:
        """Push a local candidate tagged with the producing link's role."""
        self._spawn(
            self._push_candidate,
            link.is_remote,
            candidate_to_json(candidate),
        )

    def on_link_negotiation_needed(self, link: NegotiatedLink) -> None:
        """Create and push a new offer for the outbound link."""
        logger.debug(f'{self._log_prefix}: negotiation needed')
        self._spawn(self._renegotiate, link)

    def on_link_channel_open(self, link: NegotiatedLink) -> None:
        """Publish connection established for the outbound link."""
        if link.role is LinkRole.OUTBOUND:
            self._publisher.connected.send(ConnectionEstablished(self.id))

    def on_link_channel_closed(self, link: NegotiatedLink) -> None:
        """Publish connection lost for the outbound link."""
        if link.role is LinkRole.OUTBOUND:
            self._publisher.disconnected.send(
                ConnectionLost(self.id, 'outbound data channel closed'),
            )

    def on_link_channel_message(
        self,
        link: NegotiatedLink,
        data: bytes | str,
    ) -> None:
        """Publish a payload received on the inbound link."""
        self._publisher.raw_payload.send(RawPayload(self.id, data))

    def on_link_connection_lost(self, link: NegotiatedLink) -> None:
        """Drop an inbound link whose connection closed or failed.

        The next offer from the peer creates a new inbound connection. A
        lost outbound connection is kept until
        [`reconnect()`][peerlink.channel.PeerChannel.reconnect] replaces it.
        """
        if link.role is LinkRole.OUTBOUND:
            logger.warning(
                f'{self._log_prefix}: outbound connection lost, waiting for '
                'reconnect',
            )
            return
        if self._closed or link is not self._inbound:
            return
        logger.info(f'{self._log_prefix}: inbound connection lost')
        self._inbound = None
        self._spawn(link.close)

    async def close(self) -> None:
        """Close both connections and all notification streams.

        In-flight candidate waits and signaling calls are cancelled.
        """
        if self._closed:
            return
        self._closed = True
        await self._scope.close()
        for link in (self._outbound, self._inbound):
            if link is not None:
                await link.close()
        self._publisher.close()
        logger.info(f'{self._log_prefix}: closed')
