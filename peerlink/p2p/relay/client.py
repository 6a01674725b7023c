"""Client interface to a relay server."""
from __future__ import annotations

import asyncio
import logging
import ssl
import sys
from types import TracebackType
from typing import Any
from typing import Generator
from typing import Literal
from typing import NamedTuple

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

import websockets.exceptions
from websockets.asyncio.client import ClientConnection
from websockets.asyncio.client import connect

from peerlink.aio.event import Emitter
from peerlink.aio.event import Event
from peerlink.ident import FullIdent
from peerlink.p2p.relay.exceptions import RelayNotConnectedError
from peerlink.p2p.relay.exceptions import RelayRegistrationError
from peerlink.p2p.relay.messages import decode_relay_message
from peerlink.p2p.relay.messages import encode_relay_message
from peerlink.p2p.relay.messages import InitMessage
from peerlink.p2p.relay.messages import JoinMessage
from peerlink.p2p.relay.messages import LeaveMessage
from peerlink.p2p.relay.messages import RelayMessage
from peerlink.p2p.relay.messages import RelayMessageDecodeError
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


class NodeChange(NamedTuple):
    """Change to the set of peers connected to the relay server.

    Attributes:
        change: Whether the peer joined or left.
        name: Name of the peer.
    """

    change: Literal['join', 'leave']
    name: str


class RelayClient:
    """Client interface to a relay server.

    The client connects to the relay server at `{address}/{name}` and
    proves it owns the name by sending its raw public key. Every message
    the server sends afterwards is decoded and emitted on
    [`message`][peerlink.p2p.relay.client.RelayClient.message], in arrival
    order, by a single background task. The client also tracks which other
    peers are connected.

    Tip:
        This class can be used as an async context manager!
        ```python
        from peerlink.ident import FullIdent
        from peerlink.p2p.relay.client import RelayClient

        ident = FullIdent.generate()
        async with RelayClient('ws://localhost:8081', ident) as client:
            print(client.nodes)
        ```

    Note:
        The WebSocket connection is not opened until
        [`connect()`][peerlink.p2p.relay.client.RelayClient.connect] is
        called. Initializing the client with `await` will call
        [`connect()`][peerlink.p2p.relay.client.RelayClient.connect].
        ```python
        client = await RelayClient(...)
        ```

    Args:
        address: Address of the relay server. Should start with `ws://` or
            `wss://`.
        ident: Identity to register with the relay server as.
        ssl_context: Custom SSL context to pass to
            [`connect()`][websockets.asyncio.client.connect].
            A TLS context is created with
            [`ssl.create_default_context()`][ssl.create_default_context]
            when connecting to a `wss://` URI and `ssl_context` is not
            provided.
        timeout: Time to wait in seconds on relay server connection.
        verify_certificate: Verify the relay server's SSL certificate. Only
            used if `ssl_context` is `None` and connecting to a `wss://` URI.

    Raises:
        ValueError: If address does not start with `ws://` or `wss://`.
    """

    def __init__(
        self,
        address: str,
        ident: FullIdent,
        *,
        ssl_context: ssl.SSLContext | None = None,
        timeout: float = 10,
        verify_certificate: bool = True,
    ) -> None:
        if not (address.startswith('ws://') or address.startswith('wss://')):
            raise ValueError(
                'Relay server address must start with ws:// or wss://. '
                f'Got {address}.',
            )

        self._address = address.rstrip('/')
        self._ident = ident
        self._timeout = timeout

        if self._address.startswith('wss://') and ssl_context is None:
            ssl_context = ssl.create_default_context()
            if not verify_certificate:
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        self._ssl_context = ssl_context

        self._websocket: ClientConnection | None = None
        self._pump_task: asyncio.Task[Any] | None = None

        self._nodes: set[str] = set()
        self._message: Emitter[RelayMessage] = Emitter()
        self._nodes_change: Emitter[NodeChange] = Emitter()
        self._closed: Emitter[None] = Emitter()

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
    def address(self) -> str:
        """Address of the relay server."""
        return self._address

    @property
    def ident(self) -> FullIdent:
        """Identity the client registers as."""
        return self._ident

    @property
    def name(self) -> str:
        """Name of the client as registered with the relay server."""
        return self._ident.name

    @property
    def connected(self) -> bool:
        """The client is registered and receiving messages."""
        return self._pump_task is not None and not self._pump_task.done()

    @property
    def websocket(self) -> ClientConnection:
        """Websocket connection to the relay server.

        Raises:
            RelayNotConnectedError: if the websocket connection to the relay
                server is not open. This usually indicates that
                [`connect()`][peerlink.p2p.relay.client.RelayClient.connect]
                needs to be called.
        """
        if self._websocket is not None and self.connected:
            return self._websocket
        else:
            raise RelayNotConnectedError(
                'Websocket connection to the relay server is not open. '
                'Try calling connect() first.',
            )

    @property
    def message(self) -> Event[RelayMessage]:
        """Messages received from the relay server."""
        return self._message.event

    @property
    def nodes(self) -> frozenset[str]:
        """Names of the other peers connected to the relay server."""
        return frozenset(self._nodes)

    @property
    def nodes_change(self) -> Event[NodeChange]:
        """Peers joining or leaving the relay server."""
        return self._nodes_change.event

    @property
    def closed(self) -> Event[None]:
        """Fired once when the connection to the relay server ends."""
        return self._closed.event

    async def connect(self) -> None:
        """Connect and register with the relay server.

        Returns once the server has accepted the registration and sent the
        initial list of connected peers. This method is a no-op if the
        client is already connected.

        Raises:
            RelayRegistrationError: If the server closes the connection
                instead of accepting the registration.
            asyncio.TimeoutError: If the server does not reply within the
                timeout.
        """
        if self.connected:
            return

        uri = f'{self._address}/{self.name}'
        websocket = await connect(
            uri,
            open_timeout=self._timeout,
            ssl=self._ssl_context,
        )
        try:
            await websocket.send(self._ident.public_key)
            first = await asyncio.wait_for(websocket.recv(), self._timeout)
        except websockets.exceptions.ConnectionClosed as e:
            raise RelayRegistrationError(
                f'Relay server at {self._address} rejected registration '
                f'as {self.name}: {e}',
            ) from e
        except BaseException:
            await websocket.close()
            raise

        self._websocket = websocket
        self._nodes.clear()
        logger.info(
            'Established client connection to relay server at '
            f'{self._address} with name={self.name}',
        )
        self._handle(first)

        self._pump_task = spawn_guarded_background_task(
            self._pump,
            websocket,
            name=f'relay-client-pump-{self.name[:8]}',
        )

    async def close(self) -> None:
        """Close the connection to the relay server."""
        if self._websocket is not None:
            await self._websocket.close()
        if self._pump_task is not None:
            await self._pump_task

    async def send(self, message: RelayMessage) -> None:
        """Send a message.

        Args:
            message: The message to send to the relay server.

        Raises:
            RelayNotConnectedError: If the client is not connected.
        """
        message_str = encode_relay_message(message)
        await self.websocket.send(message_str)
        logger.debug(f'Sent {type(message).__name__} to relay server')

    async def _pump(self, websocket: ClientConnection) -> None:
        try:
            async for message_str in websocket:
                self._handle(message_str)
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(
                f'Connection to relay server at {self._address} closed '
                f'unexpectedly: {e}',
            )
        finally:
            logger.info(
                f'Closed connection to relay server at {self._address}',
            )
            self._closed.emit(None)

    def _handle(self, message_str: str | bytes) -> None:
        if not isinstance(message_str, str):
            logger.warning('Dropping binary frame received from relay server')
            return

        try:
            message = decode_relay_message(message_str)
        except RelayMessageDecodeError as e:
            logger.warning(
                f'Dropping malformed message from relay server: {e}',
            )
            return

        logger.debug(f'Received {type(message).__name__} from relay server')
        changes = self._update_nodes(message)
        self._message.emit(message)
        for change in changes:
            self._nodes_change.emit(change)

    def _update_nodes(self, message: RelayMessage) -> list[NodeChange]:
        joined: list[str] | None = None
        if isinstance(message, InitMessage):
            joined = message.nodes
        elif isinstance(message, JoinMessage):
            joined = [message.name]
        elif isinstance(message, LeaveMessage):
            if message.name in self._nodes:
                self._nodes.discard(message.name)
                return [NodeChange('leave', message.name)]
            return []

        changes = []
        for name in joined or []:
            if name not in self._nodes and name != self.name:
                self._nodes.add(name)
                changes.append(NodeChange('join', name))
        return changes
