"""Message types exchanged between signaling clients and the relay."""
from __future__ import annotations

import dataclasses
import enum
import json
import sys
import uuid
from typing import Any
from typing import Union

from peerlink.signaling.exceptions import SignalingMessageDecodeError
from peerlink.signaling.exceptions import SignalingMessageEncodeError


class SdpKind(str, enum.Enum):
    """Type of session description carried by an SDP message."""

    OFFER = 'offer'
    """Session description proposed by the initiating peer."""
    ANSWER = 'answer'
    """Session description accepted by the responding peer."""


class SignalingMessageType(enum.Enum):
    """Types of messages supported."""

    signaling_registration = 'SignalingRegistration'
    """Client registration request message."""
    signaling_response = 'SignalingResponse'
    """Relay acknowledgement or error message."""
    session_description_request = 'SessionDescriptionRequest'
    """Request to forward an SDP offer or answer to a peer."""
    ice_candidate_request = 'IceCandidateRequest'
    """Request to forward an ICE candidate to a peer."""
    sdp_signal = 'SdpSignal'
    """SDP offer or answer forwarded from a peer."""
    ice_candidate_signal = 'IceCandidateSignal'
    """ICE candidate forwarded from a peer."""


@dataclasses.dataclass
class SignalingMessage:
    """Base message."""

    pass


@dataclasses.dataclass
class SignalingRegistration(SignalingMessage):
    """Register with the signaling relay.

    Attributes:
        peer_id: Identifier the client is known by to other peers.
        token: Credential authenticating the client.
        request_uuid: Identifier echoed back in the relay's response.
    """

    peer_id: str
    token: str = dataclasses.field(repr=False)
    request_uuid: uuid.UUID = dataclasses.field(default_factory=uuid.uuid4)
    message_type: str = SignalingMessageType.signaling_registration.name


@dataclasses.dataclass
class SignalingResponse(SignalingMessage):
    """Acknowledgement or error returned by the relay for a request.

    Attributes:
        request_uuid: Identifier of the request being replied to.
        success: If the request was delivered.
        message: Optional message from the relay, typically the error.
    """

    request_uuid: uuid.UUID
    success: bool = True
    message: str | None = None
    message_type: str = SignalingMessageType.signaling_response.name


@dataclasses.dataclass
class SessionDescriptionRequest(SignalingMessage):
    """Request the relay forward an SDP offer or answer to a peer.

    Attributes:
        peer_id: Identifier of the destination peer.
        kind: Whether `description` is an offer or an answer.
        description: Session description protocol message.
        token: Credential authenticating the sender.
        request_uuid: Identifier echoed back in the relay's response.
    """

    peer_id: str
    kind: SdpKind
    description: str
    token: str = dataclasses.field(repr=False)
    request_uuid: uuid.UUID = dataclasses.field(default_factory=uuid.uuid4)
    message_type: str = SignalingMessageType.session_description_request.name

    def __post_init__(self) -> None:
        self.kind = SdpKind(self.kind)


@dataclasses.dataclass
class IceCandidateRequest(SignalingMessage):
    """Request the relay forward an ICE candidate to a peer.

    Attributes:
        peer_id: Identifier of the destination peer.
        is_remote: `True` if the candidate was produced by the sender's
            inbound connection, `False` if by its outbound connection.
        candidate: JSON serialized candidate.
        token: Credential authenticating the sender.
        request_uuid: Identifier echoed back in the relay's response.
    """

    peer_id: str
    is_remote: bool
    candidate: str
    token: str = dataclasses.field(repr=False)
    request_uuid: uuid.UUID = dataclasses.field(default_factory=uuid.uuid4)
    message_type: str = SignalingMessageType.ice_candidate_request.name


@dataclasses.dataclass
class SdpSignal(SignalingMessage):
    """SDP offer or answer forwarded by the relay from a peer.

    Attributes:
        peer_id: Identifier of the peer that sent the description.
        kind: Whether `description` is an offer or an answer.
        description: Session description protocol message.
    """

    peer_id: str
    kind: SdpKind
    description: str
    message_type: str = SignalingMessageType.sdp_signal.name

    def __post_init__(self) -> None:
        self.kind = SdpKind(self.kind)


@dataclasses.dataclass
class IceCandidateSignal(SignalingMessage):
    """ICE candidate forwarded by the relay from a peer.

    Attributes:
        peer_id: Identifier of the peer that sent the candidate.
        candidate: JSON serialized candidate.
        is_remote: Tag set by the sender. `True` means the candidate came
            from the sender's inbound connection and so targets the
            receiver's outbound connection; `False` targets the receiver's
            inbound connection.
    """

    peer_id: str
    candidate: str
    is_remote: bool
    message_type: str = SignalingMessageType.ice_candidate_signal.name


InboundSignal = Union[IceCandidateSignal, SdpSignal]
"""Negotiation message delivered to a peer by the relay."""


def uuid_to_str(data: dict[str, Any]) -> dict[str, Any]:
    """Cast any UUIDs to strings.

    Scans the input dictionary for any values where the associated key
    contains 'uuid' and value is a UUID instance and converts it to a
    string for jsonification.

    Returns:
        Shallow copy of the input dictionary with values cast from UUID \
        to str if their key also contains UUID.
    """
    data = data.copy()
    for key in data:
        if 'uuid' in key.lower() and isinstance(data[key], uuid.UUID):
            data[key] = str(data[key])
    return data


def str_to_uuid(data: dict[str, Any]) -> dict[str, Any]:
    """Cast any possible UUID strings to UUID objects.

    The inverse operation of
    [uuid_to_str()][peerlink.signaling.messages.uuid_to_str].

    Raises:
        SignalingMessageDecodeError: If a key contains 'uuid' but the value
            cannot be cast to a UUID.
    """
    data = data.copy()
    for key in data:
        if 'uuid' in key.lower():
            try:
                data[key] = uuid.UUID(data[key])
            except (AttributeError, TypeError, ValueError) as e:
                raise SignalingMessageDecodeError(
                    f'Failed to convert key {key} to UUID.',
                ) from e
    return data


def decode_signaling_message(message: str) -> SignalingMessage:
    """Decode JSON string into the correct signaling message type.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed message.

    Raises:
        SignalingMessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise SignalingMessageDecodeError(
            'Failed to load string as JSON.',
        ) from e

    if not isinstance(data, dict):
        raise SignalingMessageDecodeError('Message is not a JSON object.')

    try:
        message_type_name = data.pop('message_type')
    except KeyError as e:
        raise SignalingMessageDecodeError(
            'Message does not contain a message_type key.',
        ) from e

    try:
        message_type = getattr(
            sys.modules[__name__],
            SignalingMessageType[message_type_name].value,
        )
    except (AttributeError, KeyError, TypeError) as e:
        raise SignalingMessageDecodeError(
            'The message is of an unknown message type: '
            f'{message_type_name}.',
        ) from e

    data = str_to_uuid(data)

    try:
        return message_type(**data)
    except (TypeError, ValueError) as e:
        raise SignalingMessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e


def encode_signaling_message(message: SignalingMessage) -> str:
    """Encode message as JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        SignalingMessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, SignalingMessage):
        raise SignalingMessageEncodeError(
            f'Message is not an instance of {SignalingMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = dataclasses.asdict(message)
    data = uuid_to_str(data)
    if isinstance(data.get('kind'), SdpKind):
        data['kind'] = data['kind'].value

    try:
        return json.dumps(data)
    except TypeError as e:
        raise SignalingMessageEncodeError('Error encoding message.') from e
