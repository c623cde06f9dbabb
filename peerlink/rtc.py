"""WebRTC connection objects and ICE candidate serialization.

Peer connections are implemented with
[aiortc](https://aiortc.readthedocs.io/){target=_blank}, an asyncio WebRTC
implementation. Connections emit the browser's negotiation events
(`icecandidate`, `negotiationneeded`, `datachannel`, and the state change
events) through aiortc's event emitter interface.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from typing import Callable
from typing import Sequence

from aiortc import RTCConfiguration
from aiortc import RTCDataChannel
from aiortc import RTCIceCandidate
from aiortc import RTCIceServer
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.sdp import candidate_from_sdp
from aiortc.sdp import candidate_to_sdp

from peerlink.config import IceServerConfig

logger = logging.getLogger(__name__)

CANDIDATE_PREFIX = 'candidate:'

ConnectionFactory = Callable[[Sequence[IceServerConfig]], Any]
"""Callable creating a new connection object from a list of ICE servers."""


def ice_servers_to_configuration(
    servers: Sequence[IceServerConfig],
) -> RTCConfiguration:
    """Convert ICE server descriptors to an aiortc configuration.

    Note:
        An empty list results in a configuration with no STUN or TURN
        servers rather than aiortc's default public STUN server.
    """
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(
                urls=list(server.urls),
                username=server.username,
                credential=server.credential,
            )
            for server in servers
        ],
    )


def candidate_to_json(candidate: RTCIceCandidate) -> str:
    """Serialize an ICE candidate in the browser `RTCIceCandidateInit` form."""
    return json.dumps(
        {
            'candidate': f'{CANDIDATE_PREFIX}{candidate_to_sdp(candidate)}',
            'sdpMid': candidate.sdpMid,
            'sdpMLineIndex': candidate.sdpMLineIndex,
        },
    )


def candidate_from_json(data: str) -> RTCIceCandidate:
    """Parse an ICE candidate serialized in the `RTCIceCandidateInit` form.

    The inverse of [`candidate_to_json()`][peerlink.rtc.candidate_to_json].
    Candidates serialized by browsers are also accepted.

    Raises:
        ValueError: If `data` is not a valid serialized candidate.
    """
    try:
        init = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError('ICE candidate is not valid JSON.') from e

    if not isinstance(init, dict) or not isinstance(
        init.get('candidate'),
        str,
    ):
        raise ValueError('ICE candidate is missing the candidate attribute.')

    sdp = init['candidate']
    if sdp.startswith(CANDIDATE_PREFIX):
        sdp = sdp[len(CANDIDATE_PREFIX) :]

    try:
        candidate = candidate_from_sdp(sdp)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f'Failed to parse ICE candidate: {sdp!r}') from e

    candidate.sdpMid = init.get('sdpMid')
    candidate.sdpMLineIndex = init.get('sdpMLineIndex')
    return candidate


def fingerprints_from_sdp(sdp: str) -> frozenset[str]:
    """Get the DTLS certificate fingerprints (`a=fingerprint`) of an SDP.

    Each connection uses its own certificate for every renegotiation, so
    different fingerprints mean the peer replaced its connection.

    Returns:
        Set of `<algorithm> <value>` strings, empty if `sdp` has none.
    """
    prefix = 'a=fingerprint:'
    return frozenset(
        ' '.join(line[len(prefix) :].split()).lower()
        for line in sdp.splitlines()
        if line.startswith(prefix)
    )


class TricklePeerConnection(RTCPeerConnection):
    """aiortc peer connection which emits browser negotiation events.

    aiortc does not emit `negotiationneeded`, and it gathers every local
    candidate while applying the local description, embedding them in the
    SDP rather than trickling them. This subclass emits
    `negotiationneeded` once the first data channel is created and a null
    `icecandidate` (end of candidates) after each local description is
    applied.
    """

    def _emit_negotiation_needed(self) -> None:
        if self.connectionState != 'closed':
            self.emit('negotiationneeded')

    def createDataChannel(  # noqa: N802
        self,
        label: str,
        *args: Any,
        **kwargs: Any,
    ) -> RTCDataChannel:
        """Create a data channel with the given label.

        Schedules a `negotiationneeded` event if this is the first data
        channel on the connection.
        """
        needs_negotiation = self.sctp is None
        channel = super().createDataChannel(label, *args, **kwargs)
        if needs_negotiation:
            asyncio.get_running_loop().call_soon(
                self._emit_negotiation_needed,
            )
        return channel

    async def setLocalDescription(  # noqa: N802
        self,
        sessionDescription: RTCSessionDescription | None = None,  # noqa: N803
    ) -> None:
        """Apply the local description and signal end of candidates."""
        await super().setLocalDescription(sessionDescription)
        self.emit('icecandidate', None)


def create_peer_connection(
    ice_servers: Sequence[IceServerConfig],
) -> TricklePeerConnection:
    """Default connection factory used by peer channels."""
    return TricklePeerConnection(ice_servers_to_configuration(ice_servers))
