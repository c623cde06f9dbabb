"""Notification streams published by peer channels.

Each stream is split into two capabilities: an
[`EventStream`][peerlink.events.EventStream] which consumers subscribe to,
and an [`EventPublisher`][peerlink.events.EventPublisher] held by whichever
component produces the events. A
[`PeerChannel`][peerlink.channel.PeerChannel] keeps the publishers for the
connectivity and raw payload streams to itself; the message interpretation
layer is granted a
[`SemanticEventPublisher`][peerlink.events.SemanticEventPublisher] for the
decoded message events and ingests data only through the `raw_payload`
stream.

Example:
    ```python
    subscriber = channel.notifications.raw_payload.subscribe()
    publisher = channel.notifications.semantic_publisher()

    async for payload in subscriber:
        message = decode(payload.data)
        publisher.message_received.send(message)
    ```
"""
from __future__ import annotations

import asyncio
import dataclasses
import sys
from typing import Any
from typing import Generic
from typing import TypeVar

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

T = TypeVar('T')


@dataclasses.dataclass(frozen=True)
class ConnectionEstablished:
    """The outbound data channel to a peer opened."""

    peer_id: str


@dataclasses.dataclass(frozen=True)
class ConnectionLost:
    """The outbound data channel to a peer closed.

    Attributes:
        peer_id: Peer the channel was connected to.
        reason: Human readable reason, if known.
    """

    peer_id: str
    reason: str | None = None


@dataclasses.dataclass(frozen=True)
class RawPayload:
    """Payload received on the inbound data channel from a peer."""

    peer_id: str
    data: bytes | str


class StreamClosedError(Exception):
    """Event published to or read from a closed stream."""

    pass


class EventSubscriber(Generic[T]):
    """Subscription to an [`EventStream`][peerlink.events.EventStream].

    Events published after the subscription was created are buffered
    until read. Iterating stops once the stream is closed and the buffer
    is drained.
    """

    def __init__(self, stream: EventStream[T]) -> None:
        self._stream = stream
        self._queue: asyncio.Queue[tuple[bool, T | None]] = asyncio.Queue()
        self._closed = False

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except StreamClosedError:
            raise StopAsyncIteration from None

    def _put(self, event: T) -> None:
        self._queue.put_nowait((True, event))

    def _end(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait((False, None))

    @property
    def closed(self) -> bool:
        """No further events will be delivered to this subscriber."""
        return self._closed

    async def get(self) -> T:
        """Wait on the next event.

        Raises:
            StreamClosedError: If the stream or this subscriber is closed and
                no buffered events remain.
        """
        has_event, event = await self._queue.get()
        if not has_event:
            # Keep the end marker so later reads also stop.
            self._queue.put_nowait((False, None))
            raise StreamClosedError(
                f'Event stream {self._stream.name} is closed.',
            )
        return event  # type: ignore[return-value]

    def get_nowait(self) -> T:
        """Return the next buffered event.

        Raises:
            asyncio.QueueEmpty: If no event is buffered.
            StreamClosedError: If the stream is closed and no buffered
                events remain.
        """
        has_event, event = self._queue.get_nowait()
        if not has_event:
            self._queue.put_nowait((False, None))
            raise StreamClosedError(
                f'Event stream {self._stream.name} is closed.',
            )
        return event  # type: ignore[return-value]

    def close(self) -> None:
        """Unsubscribe from the stream."""
        self._stream._unsubscribe(self)
        self._end()


class EventStream(Generic[T]):
    """Consumer side of a one-directional event stream.

    Use [`open_stream()`][peerlink.events.open_stream] to create a stream
    together with its publisher.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._subscribers: list[EventSubscriber[T]] = []
        self._closed = False

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(name={self._name!r}, '
            f'subscribers={len(self._subscribers)})'
        )

    @property
    def name(self) -> str:
        """Name of the stream."""
        return self._name

    @property
    def closed(self) -> bool:
        """The stream has been closed by its publisher."""
        return self._closed

    def subscribe(self) -> EventSubscriber[T]:
        """Create a new subscription to events published from now on.

        Subscribing to a closed stream returns a subscriber that is
        already exhausted.
        """
        subscriber = EventSubscriber(self)
        if self._closed:
            subscriber._end()
        else:
            self._subscribers.append(subscriber)
        return subscriber

    def _unsubscribe(self, subscriber: EventSubscriber[T]) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def _publish(self, event: T) -> None:
        if self._closed:
            raise StreamClosedError(f'Event stream {self._name} is closed.')
        for subscriber in self._subscribers:
            subscriber._put(event)

    def _close(self) -> None:
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            subscriber._end()


class EventPublisher(Generic[T]):
    """Producer side of an [`EventStream`][peerlink.events.EventStream]."""

    def __init__(self, stream: EventStream[T]) -> None:
        self._stream = stream

    @property
    def name(self) -> str:
        """Name of the stream published to."""
        return self._stream.name

    def send(self, event: T) -> None:
        """Publish an event to all current subscribers.

        Raises:
            StreamClosedError: If the stream is closed.
        """
        self._stream._publish(event)

    def close(self) -> None:
        """Close the stream, ending every subscription."""
        self._stream._close()


def open_stream(name: str) -> tuple[EventStream[T], EventPublisher[T]]:
    """Create an event stream and the publisher for it."""
    stream: EventStream[T] = EventStream(name)
    return stream, EventPublisher(stream)


@dataclasses.dataclass(frozen=True)
class SemanticEventPublisher:
    """Publishers granted to the message interpretation layer.

    The layer subscribes to the `raw_payload` stream, decodes each
    payload, and republishes the decoded event on one of these streams.
    Event types are defined by the interpretation layer.
    """

    message_received: EventPublisher[Any]
    message_read: EventPublisher[Any]
    user_typing: EventPublisher[Any]
    file_transfer_started: EventPublisher[Any]
    file_transfer_chunk: EventPublisher[Any]
    file_transfer_ended: EventPublisher[Any]

    def close(self) -> None:
        """Close the decoded message streams."""
        for field in dataclasses.fields(self):
            getattr(self, field.name).close()


@dataclasses.dataclass(frozen=True)
class InternalEventPublisher:
    """Publishers held by a peer channel for events it produces itself."""

    connected: EventPublisher[ConnectionEstablished]
    disconnected: EventPublisher[ConnectionLost]
    raw_payload: EventPublisher[RawPayload]
    semantic: SemanticEventPublisher = dataclasses.field(repr=False)

    def close(self) -> None:
        """Close every stream of the surface, ending all subscriptions."""
        self.connected.close()
        self.disconnected.close()
        self.raw_payload.close()
        self.semantic.close()


class NotificationSurface:
    """Event streams attached to a single peer channel.

    Use [`NotificationSurface.open()`][peerlink.events.NotificationSurface.open]
    to create a surface together with the publishers for the streams its
    owner produces.

    Attributes:
        connected: The outbound data channel opened.
        disconnected: The outbound data channel closed.
        raw_payload: Payload received on the inbound data channel. This is
            the only ingestion point for the message interpretation layer.
        message_received: Decoded chat message (interpretation layer).
        message_read: Decoded read receipt (interpretation layer).
        user_typing: Decoded typing indicator (interpretation layer).
        file_transfer_started: File transfer began (interpretation layer).
        file_transfer_chunk: File chunk received (interpretation layer).
        file_transfer_ended: File transfer finished (interpretation layer).

    Args:
        peer_id: Peer the streams belong to. Used in stream names.
    """

    def __init__(self, peer_id: str) -> None:
        self.connected: EventStream[ConnectionEstablished]
        self.disconnected: EventStream[ConnectionLost]
        self.raw_payload: EventStream[RawPayload]
        self.connected, connected = open_stream(f'{peer_id}/connected')
        self.disconnected, disconnected = open_stream(
            f'{peer_id}/disconnected',
        )
        self.raw_payload, raw_payload = open_stream(f'{peer_id}/raw_payload')

        self.message_received: EventStream[Any]
        self.message_read: EventStream[Any]
        self.user_typing: EventStream[Any]
        self.file_transfer_started: EventStream[Any]
        self.file_transfer_chunk: EventStream[Any]
        self.file_transfer_ended: EventStream[Any]
        semantic: dict[str, EventPublisher[Any]] = {}
        for field in dataclasses.fields(SemanticEventPublisher):
            stream, publisher = open_stream(f'{peer_id}/{field.name}')
            setattr(self, field.name, stream)
            semantic[field.name] = publisher
        self._semantic = SemanticEventPublisher(**semantic)

        self._internal = InternalEventPublisher(
            connected=connected,
            disconnected=disconnected,
            raw_payload=raw_payload,
            semantic=self._semantic,
        )

    @classmethod
    def open(cls, peer_id: str) -> tuple[Self, InternalEventPublisher]:
        """Create a surface and the publishers for its internal streams."""
        surface = cls(peer_id)
        return surface, surface._internal

    def semantic_publisher(self) -> SemanticEventPublisher:
        """Grant publishers for the decoded message streams."""
        return self._semantic
