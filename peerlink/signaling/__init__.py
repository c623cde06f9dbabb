"""Signaling transport used to negotiate peer connections.

The signaling relay only ferries SDP offers/answers and ICE candidates
between peers; it never sees the payloads exchanged over data channels.

* [`SignalingTransport`][peerlink.signaling.protocols.SignalingTransport]
  is the request/response surface a
  [`PeerChannel`][peerlink.channel.PeerChannel] pushes negotiation
  messages through.
* [`SignalingClient`][peerlink.signaling.client.SignalingClient] implements
  the transport over a websocket connection to a relay.
"""
from __future__ import annotations

from peerlink.signaling.client import SignalingClient
from peerlink.signaling.messages import IceCandidateSignal
from peerlink.signaling.messages import SdpKind
from peerlink.signaling.messages import SdpSignal
from peerlink.signaling.protocols import SignalingEndpoint
from peerlink.signaling.protocols import SignalingSource
from peerlink.signaling.protocols import SignalingTransport
