"""Exception types raised by signaling transports."""
from __future__ import annotations


class SignalingError(Exception):
    """Base exception type for signaling failures.

    Transports raise subclasses of this type for every failure to deliver
    a negotiation message, whether transient or permanent.
    """

    pass


class SignalingConnectionError(SignalingError):
    """Connection to the signaling relay is not open or was lost."""

    pass


class SignalingRegistrationError(SignalingConnectionError):
    """Client was unable to register with the signaling relay."""

    pass


class SignalingRequestError(SignalingError):
    """Signaling relay replied to a request with an error."""

    pass


class SignalingTimeoutError(SignalingError):
    """Signaling relay did not reply to a request within the timeout."""

    pass


class SignalingMessageError(SignalingError):
    """Base exception type for signaling message codec errors."""

    pass


class SignalingMessageDecodeError(SignalingMessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class SignalingMessageEncodeError(SignalingMessageError):
    """Exception raised when a message cannot be encoded."""

    pass
