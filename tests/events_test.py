from __future__ import annotations

import asyncio

import pytest

from peerlink.events import ConnectionEstablished
from peerlink.events import ConnectionLost
from peerlink.events import NotificationSurface
from peerlink.events import open_stream
from peerlink.events import RawPayload
from peerlink.events import StreamClosedError

SEMANTIC_STREAMS = (
    'message_received',
    'message_read',
    'user_typing',
    'file_transfer_started',
    'file_transfer_chunk',
    'file_transfer_ended',
)


@pytest.mark.asyncio()
async def test_publish_to_subscribers() -> None:
    stream, publisher = open_stream('test')
    first = stream.subscribe()
    second = stream.subscribe()

    publisher.send('a')
    publisher.send('b')

    assert await first.get() == 'a'
    assert await first.get() == 'b'
    assert second.get_nowait() == 'a'
    assert second.get_nowait() == 'b'


@pytest.mark.asyncio()
async def test_subscriber_only_sees_later_events() -> None:
    stream, publisher = open_stream('test')
    publisher.send('before')
    subscriber = stream.subscribe()
    publisher.send('after')

    assert await subscriber.get() == 'after'
    with pytest.raises(asyncio.QueueEmpty):
        subscriber.get_nowait()


@pytest.mark.asyncio()
async def test_iteration_stops_on_close() -> None:
    stream, publisher = open_stream('test')
    subscriber = stream.subscribe()

    publisher.send(1)
    publisher.send(2)
    publisher.close()

    assert [event async for event in subscriber] == [1, 2]
    assert stream.closed
    assert subscriber.closed
    # Reading again after the end keeps raising
    with pytest.raises(StreamClosedError):
        await subscriber.get()
    with pytest.raises(StreamClosedError):
        subscriber.get_nowait()


@pytest.mark.asyncio()
async def test_close_wakes_waiting_subscriber() -> None:
    stream, publisher = open_stream('test')
    subscriber = stream.subscribe()

    waiter = asyncio.create_task(subscriber.get())
    await asyncio.sleep(0)
    publisher.close()

    with pytest.raises(StreamClosedError, match='test'):
        await waiter


def test_send_after_close_raises() -> None:
    stream, publisher = open_stream('test')
    publisher.close()

    with pytest.raises(StreamClosedError):
        publisher.send('x')

    subscriber = stream.subscribe()
    assert subscriber.closed


def test_unsubscribe() -> None:
    stream, publisher = open_stream('test')
    subscriber = stream.subscribe()
    assert 'subscribers=1' in repr(stream)

    subscriber.close()
    publisher.send('x')

    assert 'subscribers=0' in repr(stream)
    with pytest.raises(StreamClosedError):
        subscriber.get_nowait()


def test_surface_stream_names() -> None:
    surface, _ = NotificationSurface.open('bob')

    assert surface.connected.name == 'bob/connected'
    assert surface.disconnected.name == 'bob/disconnected'
    assert surface.raw_payload.name == 'bob/raw_payload'
    for name in SEMANTIC_STREAMS:
        assert getattr(surface, name).name == f'bob/{name}'


def test_surface_internal_publishers() -> None:
    surface, publisher = NotificationSurface.open('bob')
    connected = surface.connected.subscribe()
    disconnected = surface.disconnected.subscribe()
    raw = surface.raw_payload.subscribe()

    publisher.connected.send(ConnectionEstablished('bob'))
    publisher.disconnected.send(ConnectionLost('bob', 'closed'))
    publisher.raw_payload.send(RawPayload('bob', b'data'))

    assert connected.get_nowait() == ConnectionEstablished('bob')
    assert disconnected.get_nowait() == ConnectionLost('bob', 'closed')
    assert raw.get_nowait() == RawPayload('bob', b'data')


@pytest.mark.asyncio()
async def test_interpretation_layer_republishes_raw_payload() -> None:
    surface, internal = NotificationSurface.open('bob')
    raw = surface.raw_payload.subscribe()
    typing = surface.user_typing.subscribe()
    semantic = surface.semantic_publisher()

    # The interpretation layer only reads raw payloads and only writes
    # semantic events
    assert not hasattr(semantic, 'raw_payload')
    assert not hasattr(semantic, 'connected')

    internal.raw_payload.send(RawPayload('bob', '{"type": "typing"}'))
    payload = await raw.get()
    semantic.user_typing.send({'peer': payload.peer_id, 'typing': True})

    assert await typing.get() == {'peer': 'bob', 'typing': True}


def test_surface_close_ends_every_stream() -> None:
    surface, publisher = NotificationSurface.open('bob')
    subscribers = [
        getattr(surface, name).subscribe()
        for name in ('connected', 'disconnected', 'raw_payload')
        + SEMANTIC_STREAMS
    ]

    publisher.close()

    assert all(subscriber.closed for subscriber in subscribers)
    with pytest.raises(StreamClosedError):
        surface.semantic_publisher().file_transfer_chunk.send(b'chunk')
