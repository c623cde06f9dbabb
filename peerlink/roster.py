"""Roster of peer channels sharing one signaling endpoint."""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any
from typing import Generator

from peerlink.channel import PeerChannel
from peerlink.config import PeerChannelConfig
from peerlink.exceptions import NegotiationContractError
from peerlink.exceptions import PeerChannelClosedError
from peerlink.rtc import ConnectionFactory
from peerlink.rtc import create_peer_connection
from peerlink.signaling.exceptions import SignalingConnectionError
from peerlink.signaling.messages import IceCandidateSignal
from peerlink.signaling.messages import InboundSignal
from peerlink.signaling.messages import SdpSignal
from peerlink.signaling.protocols import SignalingEndpoint
from peerlink.utils.tasks import SafeTaskExitError
from peerlink.utils.tasks import spawn_guarded_background_task
from peerlink.utils.tasks import TaskScope

logger = logging.getLogger(__name__)


class PeerRoster:
    """Peer channels for every known peer.

    Owns one [`PeerChannel`][peerlink.channel.PeerChannel] per peer and
    dispatches the negotiation messages received from the signaling
    endpoint to the channel of the peer that sent them. Each message is
    handled in its own task so a candidate waiting on its connection does
    not block the offer or answer that would satisfy the wait.

    Example:
        ```python
        from peerlink.roster import PeerRoster
        from peerlink.signaling import SignalingClient

        signaling = await SignalingClient(address, peer_id='alice', token=token)

        async with PeerRoster(signaling, token=token) as roster:
            channel = roster.add_peer('bob', online=True)
            await channel.connect()
        ```

    Note:
        The roster does not close the signaling endpoint.

    Args:
        signaling: Endpoint used to push negotiation messages and to receive
            messages from peers.
        token: Credential attached to every signaling call.
        config: Configuration for the created channels.
        connection_factory: Callable creating new connection objects.
    """

    def __init__(
        self,
        signaling: SignalingEndpoint,
        *,
        token: str,
        config: PeerChannelConfig | None = None,
        connection_factory: ConnectionFactory = create_peer_connection,
    ) -> None:
        self._signaling = signaling
        self._token = token
        self._config = config if config is not None else PeerChannelConfig()
        self._connection_factory = connection_factory

        self._channels: dict[str, PeerChannel] = {}
        self._scope = TaskScope('peer-roster')
        self._listener_task: asyncio.Task[None] | None = None

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    async def __aenter__(self) -> PeerRoster:
        await self.async_init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def __await__(self) -> Generator[Any, None, PeerRoster]:
        return self.__aenter__().__await__()

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}'

    @property
    def peers(self) -> tuple[PeerChannel, ...]:
        """Channels of all known peers."""
        return tuple(self._channels.values())

    async def async_init(self) -> None:
        """Begin listening to messages from the signaling endpoint."""
        if self._listener_task is None:
            self._listener_task = spawn_guarded_background_task(
                self._listen,
            )
            self._listener_task.set_name('peer-roster-signal-listener')

    async def _listen(self) -> None:
        logger.info(f'{self._log_prefix}: listening for signaling messages')
        while True:
            try:
                signal = await self._signaling.recv()
            except SignalingConnectionError as e:
                logger.info(
                    f'{self._log_prefix}: signaling endpoint closed: {e}',
                )
                break
            self._scope.spawn(
                self.dispatch,
                signal,
                name=f'dispatch-{signal.peer_id}',
            )

    def add_peer(
        self,
        peer_id: str,
        *,
        display_name: str | None = None,
        avatar: str | None = None,
        online: bool = False,
    ) -> PeerChannel:
        """Create the channel for a newly known peer.

        Raises:
            ValueError: If a channel for the peer already exists.
        """
        if peer_id in self._channels:
            raise ValueError(f'Peer {peer_id} is already in the roster.')
        channel = PeerChannel.from_config(
            peer_id,
            self._signaling,
            self._config,
            token=self._token,
            display_name=display_name,
            avatar=avatar,
            online=online,
            connection_factory=self._connection_factory,
        )
        self._channels[peer_id] = channel
        logger.info(f'{self._log_prefix}: added peer {peer_id}')
        return channel

    def get(self, peer_id: str) -> PeerChannel | None:
        """Get the channel of a peer if the peer is known."""
        return self._channels.get(peer_id)

    async def remove_peer(self, peer_id: str) -> None:
        """Remove a peer and close its channel if the peer is known."""
        channel = self._channels.pop(peer_id, None)
        if channel is not None:
            await channel.close()
            logger.info(f'{self._log_prefix}: removed peer {peer_id}')

    async def dispatch(self, signal: InboundSignal) -> None:
        """Deliver a negotiation message to the channel of its sender.

        Messages from unknown peers are dropped.

        Raises:
            NegotiationContractError: If the channel receives an answer it
                never asked for.
            TypeError: If `signal` is not a negotiation message.
        """
        channel = self._channels.get(signal.peer_id)
        if channel is None:
            logger.warning(
                f'{self._log_prefix}: dropping {type(signal).__name__} from '
                f'unknown peer {signal.peer_id}',
            )
            return

        try:
            if isinstance(signal, SdpSignal):
                await channel.on_sdp_signal(signal.kind, signal.description)
            elif isinstance(signal, IceCandidateSignal):
                await channel.on_ice_candidate_signal(
                    signal.candidate,
                    signal.is_remote,
                )
            else:
                raise TypeError(
                    f'Unsupported signal type {type(signal).__name__}.',
                )
        except NegotiationContractError as e:
            logger.error(
                f'{self._log_prefix}: negotiation contract violated by '
                f'{signal.peer_id}: {e}',
            )
            raise
        except PeerChannelClosedError as e:
            logger.debug(f'{self._log_prefix}: {e}')

    async def close(self) -> None:
        """Stop listening and close every channel."""
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except (asyncio.CancelledError, SafeTaskExitError):
                pass
            self._listener_task = None

        await self._scope.close()
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            await channel.close()
        logger.info(f'{self._log_prefix}: closed')
