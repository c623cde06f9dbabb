from __future__ import annotations

import asyncio
import json

import pytest

from peerlink.config import IceServerConfig
from peerlink.rtc import candidate_from_json
from peerlink.rtc import candidate_to_json
from peerlink.rtc import create_peer_connection
from peerlink.rtc import fingerprints_from_sdp
from peerlink.rtc import ice_servers_to_configuration
from peerlink.rtc import TricklePeerConnection
from testing.rtc import make_candidate


def test_ice_servers_to_configuration() -> None:
    servers = [
        IceServerConfig(urls=['stun:stun.example.com:3478']),
        IceServerConfig(
            urls=['turn:turn.example.com:3478'],
            username='user',
            credential='secret',
        ),
    ]
    config = ice_servers_to_configuration(servers)

    assert config.iceServers is not None
    assert len(config.iceServers) == 2
    assert config.iceServers[0].urls == ['stun:stun.example.com:3478']
    assert config.iceServers[1].username == 'user'
    assert config.iceServers[1].credential == 'secret'


def test_empty_ice_servers_has_no_default_stun() -> None:
    assert ice_servers_to_configuration([]).iceServers == []


def test_candidate_json_shape() -> None:
    data = json.loads(candidate_to_json(make_candidate(port=50001)))

    assert data['candidate'].startswith('candidate:')
    assert '192.168.1.2 50001 typ host' in data['candidate']
    assert data['sdpMid'] == '0'
    assert data['sdpMLineIndex'] == 0


def test_candidate_from_json() -> None:
    candidate = candidate_from_json(candidate_to_json(make_candidate(50002)))

    assert candidate.ip == '192.168.1.2'
    assert candidate.port == 50002
    assert candidate.type == 'host'
    assert candidate.sdpMid == '0'
    assert candidate.sdpMLineIndex == 0


def test_candidate_from_browser_json() -> None:
    data = json.dumps(
        {
            'candidate': (
                'candidate:842163049 1 udp 1677729535 203.0.113.7 46154 '
                'typ srflx raddr 10.0.0.2 rport 46154'
            ),
            'sdpMid': 'data',
            'sdpMLineIndex': 0,
        },
    )
    candidate = candidate_from_json(data)

    assert candidate.type == 'srflx'
    assert candidate.relatedAddress == '10.0.0.2'
    assert candidate.sdpMid == 'data'


@pytest.mark.parametrize(
    'data',
    (
        'not json',
        '[]',
        '{"sdpMid": "0"}',
        '{"candidate": "candidate:garbage"}',
    ),
)
def test_candidate_from_json_malformed(data: str) -> None:
    with pytest.raises(ValueError):
        candidate_from_json(data)


@pytest.mark.asyncio()
async def test_trickle_connection_emits_negotiation_needed() -> None:
    connection = create_peer_connection([])
    assert isinstance(connection, TricklePeerConnection)

    triggered = asyncio.Event()
    connection.on('negotiationneeded', triggered.set)

    connection.createDataChannel('first')
    await asyncio.wait_for(triggered.wait(), timeout=1)

    await connection.close()


@pytest.mark.asyncio()
async def test_trickle_connection_signals_end_of_candidates() -> None:
    connection = create_peer_connection([])
    candidates = []
    connection.on('icecandidate', candidates.append)

    connection.createDataChannel('first')
    offer = await connection.createOffer()
    await connection.setLocalDescription(offer)

    assert candidates == [None]
    assert connection.localDescription is not None
    assert connection.localDescription.type == 'offer'

    await connection.close()


def test_fingerprints_from_sdp() -> None:
    sdp = (
        'v=0\r\n'
        'o=- 3900000000 3900000000 IN IP4 0.0.0.0\r\n'
        's=-\r\n'
        'a=fingerprint:sha-256 AA:BB:CC\r\n'
        'm=application 9 DTLS/SCTP 5000\r\n'
        'a=fingerprint:sha-512  DD:EE\r\n'
    )
    assert fingerprints_from_sdp(sdp) == {'sha-256 aa:bb:cc', 'sha-512 dd:ee'}
    assert fingerprints_from_sdp('v=0\r\ns=-\r\n') == frozenset()


@pytest.mark.asyncio()
async def test_fingerprints_identify_connection() -> None:
    first = create_peer_connection([])
    second = create_peer_connection([])

    async def _offer(connection: TricklePeerConnection) -> str:
        offer = await connection.createOffer()
        return offer.sdp

    first.createDataChannel('first')
    second.createDataChannel('second')
    first_offer = await _offer(first)

    assert fingerprints_from_sdp(first_offer)
    assert fingerprints_from_sdp(first_offer) == fingerprints_from_sdp(
        await _offer(first),
    )
    assert fingerprints_from_sdp(first_offer) != fingerprints_from_sdp(
        await _offer(second),
    )

    await first.close()
    await second.close()
