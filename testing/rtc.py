"""Fake connection objects for unit tests.

The fakes mirror the subset of the aiortc `RTCPeerConnection` and
`RTCDataChannel` interfaces used by peer channels, including the pyee event
emitter aiortc builds on, but never touch the network. Tests drive them by
emitting the events a real connection would.
"""
from __future__ import annotations

from typing import Any
from typing import Sequence

from aiortc import RTCIceCandidate
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError
from pyee.asyncio import AsyncIOEventEmitter

from peerlink.config import IceServerConfig
from peerlink.rtc import candidate_to_json


def make_candidate(port: int = 50000) -> RTCIceCandidate:
    """Create a host candidate."""
    return RTCIceCandidate(
        component=1,
        foundation='0',
        ip='192.168.1.2',
        port=port,
        priority=2122252543,
        protocol='udp',
        type='host',
        sdpMid='0',
        sdpMLineIndex=0,
    )


def make_candidate_json(port: int = 50000) -> str:
    """Create a JSON serialized host candidate."""
    return candidate_to_json(make_candidate(port))


class FakeDataChannel(AsyncIOEventEmitter):
    """Data channel which records sent data."""

    def __init__(self, label: str, ready_state: str = 'connecting') -> None:
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent: list[bytes | str] = []

    def open(self) -> None:
        """Simulate the channel opening."""
        self.readyState = 'open'
        self.emit('open')

    def receive(self, data: bytes | str) -> None:
        """Simulate a message arriving from the peer."""
        self.emit('message', data)

    def send(self, data: bytes | str) -> None:
        self.sent.append(data)

    def close(self) -> None:
        if self.readyState != 'closed':
            self.readyState = 'closed'
            self.emit('close')


class FakePeerConnection(AsyncIOEventEmitter):
    """Peer connection which records applied descriptions and candidates.

    Like an aiortc connection, a closed fake rejects new descriptions with
    `InvalidStateError`.
    """

    def __init__(self, ice_servers: Sequence[IceServerConfig] = ()) -> None:
        super().__init__()
        self.ice_servers = tuple(ice_servers)
        self.localDescription: RTCSessionDescription | None = None
        self.remoteDescription: RTCSessionDescription | None = None
        self.candidates: list[RTCIceCandidate] = []
        self.channels: list[FakeDataChannel] = []
        self.connectionState = 'new'
        self.iceConnectionState = 'new'
        self.signalingState = 'stable'
        self.offers = 0

    def _check_not_closed(self) -> None:
        if self.signalingState == 'closed':
            raise InvalidStateError('RTCPeerConnection is closed')

    def createDataChannel(self, label: str) -> FakeDataChannel:  # noqa: N802
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    async def createOffer(self) -> RTCSessionDescription:  # noqa: N802
        self._check_not_closed()
        self.offers += 1
        return RTCSessionDescription(sdp=f'offer-{self.offers}', type='offer')

    async def createAnswer(self) -> RTCSessionDescription:  # noqa: N802
        self._check_not_closed()
        assert self.remoteDescription is not None
        return RTCSessionDescription(
            sdp=f'answer-to-{self.remoteDescription.sdp}',
            type='answer',
        )

    async def setLocalDescription(  # noqa: N802
        self,
        description: RTCSessionDescription,
    ) -> None:
        self._check_not_closed()
        self.localDescription = description
        self.signalingState = (
            'have-local-offer' if description.type == 'offer' else 'stable'
        )

    async def setRemoteDescription(  # noqa: N802
        self,
        description: RTCSessionDescription,
    ) -> None:
        self._check_not_closed()
        self.remoteDescription = description
        self.signalingState = (
            'have-remote-offer' if description.type == 'offer' else 'stable'
        )

    async def addIceCandidate(  # noqa: N802
        self,
        candidate: RTCIceCandidate,
    ) -> None:
        self.candidates.append(candidate)

    def surface_channel(self, label: str = 'remote') -> FakeDataChannel:
        """Simulate the peer's data channel arriving, already open."""
        channel = FakeDataChannel(label, ready_state='open')
        self.emit('datachannel', channel)
        return channel

    def fail(self) -> None:
        """Simulate the connection failing, e.g. after the peer went away."""
        self.connectionState = 'failed'
        self.emit('connectionstatechange')

    async def close(self) -> None:
        if self.signalingState == 'closed':
            return
        self.signalingState = 'closed'
        self.connectionState = 'closed'
        self.emit('connectionstatechange')


class FakeConnectionFactory:
    """Connection factory which records the connections it creates."""

    def __init__(self) -> None:
        self.connections: list[FakePeerConnection] = []

    def __call__(self, ice_servers: Sequence[IceServerConfig]) -> Any:
        connection = FakePeerConnection(ice_servers)
        self.connections.append(connection)
        return connection
