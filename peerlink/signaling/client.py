"""Websocket client interface to a signaling relay."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
import uuid
from types import TracebackType
from typing import Any
from typing import Generator

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect as websocket_connect
from websockets.protocol import State

from peerlink.signaling.exceptions import SignalingConnectionError
from peerlink.signaling.exceptions import SignalingMessageDecodeError
from peerlink.signaling.exceptions import SignalingRegistrationError
from peerlink.signaling.exceptions import SignalingRequestError
from peerlink.signaling.exceptions import SignalingTimeoutError
from peerlink.signaling.messages import decode_signaling_message
from peerlink.signaling.messages import encode_signaling_message
from peerlink.signaling.messages import IceCandidateRequest
from peerlink.signaling.messages import IceCandidateSignal
from peerlink.signaling.messages import InboundSignal
from peerlink.signaling.messages import SdpKind
from peerlink.signaling.messages import SdpSignal
from peerlink.signaling.messages import SessionDescriptionRequest
from peerlink.signaling.messages import SignalingMessage
from peerlink.signaling.messages import SignalingRegistration
from peerlink.signaling.messages import SignalingResponse
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class SignalingClient:
    """Client interface to a signaling relay.

    Implements both the
    [`SignalingTransport`][peerlink.signaling.protocols.SignalingTransport]
    request/response surface and the
    [`SignalingSource`][peerlink.signaling.protocols.SignalingSource] of
    negotiation messages forwarded from other peers, multiplexed over a
    single websocket connection.

    Tip:
        This class can be used as an async context manager!
        ```python
        from peerlink.signaling.client import SignalingClient

        async with SignalingClient(address, peer_id='alice', token=token) as client:
            await client.offer_session_description('bob', sdp, token)
            signal = await client.recv()
        ```

    Note:
        The websocket connection is not opened until a request is sent or
        [`connect()`][peerlink.signaling.client.SignalingClient.connect] is
        called. Initializing the client with `await` will call
        [`connect()`][peerlink.signaling.client.SignalingClient.connect].

    Args:
        address: Address of the signaling relay. Should start with `ws://`
            or `wss://`.
        peer_id: Identifier to register with the relay. Other peers address
            this client by this identifier.
        token: Credential presented when registering with the relay.
        extra_headers: Arbitrary HTTP headers to add to the handshake
            request.
        ssl_context: Custom SSL context to pass to the websocket
            connection. A TLS context is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        timeout: Time to wait in seconds on connecting to the relay and on
            the relay acknowledging each request.
        verify_certificate: Verify the relay's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        *,
        peer_id: str,
        token: str,
        extra_headers: dict[str, str] | None = None,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Signaling relay address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address
        self._peer_id = peer_id
        self._token = token
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

        self._extra_headers = extra_headers
        self._ssl_context = ssl_context

        self._initial_backoff_seconds = 1.0

        self._closed = False
        self._connect_lock = asyncio.Lock()
        self._pending: dict[uuid.UUID, asyncio.Future[SignalingResponse]] = {}
        # None marks the connection closing
        self._inbound: asyncio.Queue[InboundSignal | None] = asyncio.Queue()
        self._reader_task: asyncio.Task[None] | None = None
        self._websocket: ClientConnection | None = None

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        await self.close()

    def __await__(self) -> Generator[Any, None, Self]:
        return self.__aenter__().__await__()

    @property
    def _log_prefix(self) -> str:
        return f'{self.__class__.__name__}[{self._peer_id}]'

    @property
    def peer_id(self) -> str:
        """Identifier of this client as registered with the relay."""
        return self._peer_id

    @property
    def connected(self) -> bool:
        """The websocket connection to the relay is open."""
        return (
            self._websocket is not None
            and self._websocket.state is State.OPEN
        )

    async def _register(self, timeout: float) -> ClientConnection:
        """Open a websocket connection and register with the relay.

        Args:
            timeout: Timeout to wait on opening the initial connection and
                waiting for the relay response.

        Returns:
            Open websocket connection with the relay.

        Raises:
            OSError: If the relay could not be connected to.
            asyncio.TimeoutError: If the relay did not reply within the
                timeout.
            websockets.exceptions.ConnectionClosed: If the websocket
                connection was closed while registering.
            SignalingRegistrationError: If the relay rejected the
                registration.
        """
        websocket = await websocket_connect(
            self._address,
            open_timeout=timeout,
            ssl=self._ssl_context,
            additional_headers=self._extra_headers,
        )

        registration = SignalingRegistration(self._peer_id, self._token)
        await websocket.send(encode_signaling_message(registration))

        try:
            message_str = await asyncio.wait_for(websocket.recv(), timeout)
            if not isinstance(message_str, str):
                raise SignalingMessageDecodeError(
                    'Received non-string type on websocket.',
                )
            message = decode_signaling_message(message_str)
        except SignalingMessageDecodeError as e:
            await websocket.close()
            raise SignalingRegistrationError(
                'Unable to decode response message from signaling relay.',
            ) from e

        if isinstance(message, SignalingResponse) and message.success:
            logger.info(
                f'{self._log_prefix}: registered with signaling relay at '
                f'{self._address}',
            )
            return websocket

        await websocket.close()
        if isinstance(message, SignalingResponse):
            raise SignalingRegistrationError(
                'Failed to register with the signaling relay: '
                f'{message.message}',
            )
        raise SignalingRegistrationError(
            'Signaling relay replied with unknown message type: '
            f'{type(message).__name__}.',
        )

    async def connect(self, retry: bool = True) -> None:
        """Connect and register with the signaling relay.

        Note:
            This method is a no-op if a connection is already established.
            Otherwise, a new connection will be attempted with
            exponential backoff when `retry` is `True`.

        Args:
            retry: Retry the connection with exponential backoff starting at
                one second and increasing to a max of 60 seconds.

        Raises:
            SignalingConnectionError: If the client is closed, or `retry` is
                `False` and the relay cannot be reached.
            SignalingRegistrationError: If the relay rejects the
                registration.
        """
        if self._closed:
            raise SignalingConnectionError('Signaling client is closed.')

        async with self._connect_lock:
            if self.connected:
                return

            backoff_seconds = self._initial_backoff_seconds
            while True:
                try:
                    websocket = await self._register(timeout=self._timeout)
                except (
                    OSError,
                    asyncio.TimeoutError,
                    websockets.exceptions.ConnectionClosed,
                ) as e:
                    if not retry:
                        raise SignalingConnectionError(
                            'Unable to connect to signaling relay at '
                            f'{self._address}: {e!r}',
                        ) from e

                    logger.warning(
                        f'{self._log_prefix}: registration with signaling '
                        f'relay at {self._address} failed because of {e!r}. '
                        f'Retrying connection in {backoff_seconds} seconds',
                    )
                    await asyncio.sleep(backoff_seconds)
                    backoff_seconds = min(backoff_seconds * 2, 60)
                else:
                    break

            self._websocket = websocket
            self._reader_task = spawn_guarded_background_task(
                self._read_messages,
                websocket,
            )
            self._reader_task.set_name(f'signaling-reader-{self._peer_id}')

    async def close(self) -> None:
        """Close the connection to the signaling relay.

        Pending requests fail with
        [`SignalingConnectionError`][peerlink.signaling.exceptions.SignalingConnectionError].
        """
        self._closed = True
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        if self._websocket is not None:
            await self._websocket.close()
        logger.info(f'{self._log_prefix}: closed signaling client')

    async def _read_messages(self, websocket: ClientConnection) -> None:
        try:
            async for message_str in websocket:
                if not isinstance(message_str, str):
                    logger.error(
                        f'{self._log_prefix}: received non-string message '
                        'from signaling relay ...skipping message',
                    )
                    continue
                try:
                    message = decode_signaling_message(message_str)
                except SignalingMessageDecodeError as e:
                    logger.error(
                        f'{self._log_prefix}: error deserializing message '
                        f'from signaling relay: {e} ...skipping message',
                    )
                    continue
                self._handle_message(message)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(
                f'{self._log_prefix}: connection to signaling relay closed '
                f'with error: {e}',
            )
        finally:
            self._fail_pending(
                SignalingConnectionError(
                    'Connection to the signaling relay was closed.',
                ),
            )
            self._inbound.put_nowait(None)

    def _handle_message(self, message: SignalingMessage) -> None:
        if isinstance(message, SignalingResponse):
            future = self._pending.pop(message.request_uuid, None)
            if future is None:
                logger.warning(
                    f'{self._log_prefix}: got response for unknown request '
                    f'{message.request_uuid}',
                )
            elif not future.done():
                future.set_result(message)
        elif isinstance(message, (SdpSignal, IceCandidateSignal)):
            logger.debug(
                f'{self._log_prefix}: relay forwarded '
                f'{type(message).__name__} from {message.peer_id}',
            )
            self._inbound.put_nowait(message)
        else:
            logger.error(
                f'{self._log_prefix}: received unexpected message type '
                f'{type(message).__name__} from signaling relay',
            )

    def _fail_pending(self, exception: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(exception)

    async def _request(
        self,
        message: SessionDescriptionRequest | IceCandidateRequest,
    ) -> None:
        """Send a request and wait on the relay's acknowledgement.

        Raises:
            SignalingConnectionError: If the connection is not open or closes
                before the relay replies.
            SignalingTimeoutError: If the relay does not reply in time.
            SignalingRequestError: If the relay replies with an error.
        """
        if not self.connected:
            await self.connect(retry=False)
        assert self._websocket is not None

        future: asyncio.Future[SignalingResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[message.request_uuid] = future
        try:
            try:
                await self._websocket.send(encode_signaling_message(message))
            except websockets.exceptions.ConnectionClosed as e:
                raise SignalingConnectionError(
                    'Connection to the signaling relay was closed.',
                ) from e

            try:
                response = await asyncio.wait_for(future, self._timeout)
            except asyncio.TimeoutError as e:
                raise SignalingTimeoutError(
                    f'Signaling relay did not acknowledge '
                    f'{type(message).__name__} within {self._timeout} '
                    'seconds.',
                ) from e
        finally:
            self._pending.pop(message.request_uuid, None)

        if not response.success:
            raise SignalingRequestError(
                f'Signaling relay rejected {type(message).__name__}: '
                f'{response.message}',
            )

    async def offer_session_description(
        self,
        peer_id: str,
        description: str,
        token: str,
    ) -> None:
        """Push an SDP offer to a peer."""
        await self._request(
            SessionDescriptionRequest(
                peer_id=peer_id,
                kind=SdpKind.OFFER,
                description=description,
                token=token,
            ),
        )

    async def answer_session_description(
        self,
        peer_id: str,
        description: str,
        token: str,
    ) -> None:
        """Push an SDP answer to a peer."""
        await self._request(
            SessionDescriptionRequest(
                peer_id=peer_id,
                kind=SdpKind.ANSWER,
                description=description,
                token=token,
            ),
        )

    async def send_ice_candidate(
        self,
        peer_id: str,
        is_remote: bool,
        candidate: str,
        token: str,
    ) -> None:
        """Push a JSON serialized ICE candidate to a peer."""
        await self._request(
            IceCandidateRequest(
                peer_id=peer_id,
                is_remote=is_remote,
                candidate=candidate,
                token=token,
            ),
        )

    async def recv(self) -> InboundSignal:
        """Receive the next negotiation message forwarded by the relay.

        Raises:
            SignalingConnectionError: If the connection to the relay closes.
        """
        if not self.connected and self._inbound.empty():
            await self.connect()

        message = await self._inbound.get()
        if message is None:
            raise SignalingConnectionError(
                'Connection to the signaling relay was closed.',
            )
        return message
