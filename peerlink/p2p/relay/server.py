"""Relay server implementation for facilitating WebRTC peer connections.

The relay server (or signaling server) is a lightweight server accessible by
all peers (e.g., has a public IP address) that facilitates the establishment
of peer WebRTC connections.
"""
from __future__ import annotations

import dataclasses
import logging
import sys
import urllib.parse

import websockets.exceptions
from websockets.asyncio.server import ServerConnection

from peerlink.ident import Ident
from peerlink.p2p.relay.exceptions import BadRequestError
from peerlink.p2p.relay.exceptions import RelayServerError
from peerlink.p2p.relay.exceptions import UnauthorizedError
from peerlink.p2p.relay.manager import Client
from peerlink.p2p.relay.manager import ClientManager
from peerlink.p2p.relay.messages import decode_relay_message
from peerlink.p2p.relay.messages import encode_relay_message
from peerlink.p2p.relay.messages import InitMessage
from peerlink.p2p.relay.messages import JoinMessage
from peerlink.p2p.relay.messages import LeaveMessage
from peerlink.p2p.relay.messages import RelayMessage
from peerlink.p2p.relay.messages import RelayMessageDecodeError
from peerlink.p2p.relay.messages import RelayMessageEncodeError
from peerlink.p2p.relay.messages import SignalMessage

logger = logging.getLogger(__name__)


def name_from_path(path: str) -> str:
    """Extract the peer name from the last segment of a request path."""
    path = urllib.parse.urlsplit(path).path
    return urllib.parse.unquote(path.rstrip('/').rsplit('/', 1)[-1])


class RelayServer:
    """WebRTC relay server.

    The relay server acts as a public third-party that helps two peers
    establish a peer-to-peer connection during the WebRTC peer connection
    initiation process. The relay server's responsibility is just to forward
    session descriptions between two peers, so the server can be relatively
    lightweight and typically only needs to transfer two messages to
    establish a peer connection, after which the peers no longer need the
    relay server.

    Peers connect at a path ending with their identity name and send their
    raw public key as the first (binary) frame. The server only accepts the
    connection if the name is derived from that key. Connected peers are
    told about each other with `init`, `join` and `leave` messages.

    The relay server is built on websockets and designed to be
    served using [`serve()`][peerlink.p2p.relay.run.serve].

    Args:
        max_message_bytes: Optional maximum size of client messages in bytes.
            Clients that send oversized messages will have their connections
            closed. Note that message size is computed using
            [`sys.getsizeof()`][sys.getsizeof] so will also include the
            PyObject overhead.
    """

    def __init__(self, max_message_bytes: int | None = None) -> None:
        self._client_manager = ClientManager()
        self._max_message_bytes = max_message_bytes

    @property
    def client_manager(self) -> ClientManager:
        """Manager of registered clients."""
        return self._client_manager

    async def send(self, client: Client, message: RelayMessage) -> None:
        """Send message on the socket.

        Note:
            Messages are JSON string encoded using
            [`encode_relay_message()`][peerlink.p2p.relay.messages.encode_relay_message].

        Args:
            client: Client to send message to.
            message: Message to encode and send via the websocket connection
                to the client.
        """
        try:
            message_str = encode_relay_message(message)
        except RelayMessageEncodeError as e:
            logger.error(f'Failed to encode message: {e}')
            return

        try:
            await client.websocket.send(message_str)
        except websockets.exceptions.ConnectionClosed:
            logger.error('Connection closed while attempting to send message')

    async def broadcast(
        self,
        message: RelayMessage,
        exclude: Client | None = None,
    ) -> None:
        """Send a message to every registered client except `exclude`."""
        for client in self.client_manager.get_clients():
            if client is not exclude:
                await self.send(client, message)

    def authenticate(
        self,
        websocket: ServerConnection,
        public_key: str | bytes,
    ) -> Ident:
        """Check the public key a client sent matches its connection path.

        Args:
            websocket: Websocket connection with the client.
            public_key: First message sent by the client.

        Returns:
            Identity of the client.

        Raises:
            BadRequestError: If the first message is not a valid public key.
            UnauthorizedError: If the requested name is not derived from
                the public key.
        """
        if not isinstance(public_key, bytes):
            raise BadRequestError(
                'Expected raw public key bytes as the first message.',
            )

        try:
            ident = Ident.from_public_key(public_key)
        except ValueError as e:
            raise BadRequestError(f'Invalid public key: {e}') from e

        requested = name_from_path(websocket.request.path)
        if ident.name != requested:
            logger.warning(
                'Rejecting connection request from '
                f'{websocket.remote_address} for name {requested} because '
                f'the public key belongs to {ident.name}',
            )
            raise UnauthorizedError(
                f'Public key does not match the requested name {requested}.',
            )
        return ident

    async def register(
        self,
        websocket: ServerConnection,
        ident: Ident,
    ) -> Client:
        """Register client with relay server.

        The client receives the names of the other registered clients and
        the other clients are told the new client joined. If a client with
        the same name is already registered on another socket, that socket
        is closed and replaced.

        Args:
            websocket: Websocket connection with client wanting to register.
            ident: Identity of the client.

        Returns:
            The registered client.
        """
        existing_client = self.client_manager.get_client_by_name(ident.name)
        if (
            existing_client is not None
            and existing_client.websocket is not websocket
        ):
            logger.info(
                f'Previously registered client {ident.name} attempting '
                'to reregister on new socket so old socket associated '
                'with existing registration will be closed',
            )
            await self.unregister(existing_client, False, broadcast=False)

        others = [
            client.name
            for client in self.client_manager.get_clients()
            if client.name != ident.name
        ]
        client = Client(ident=ident, websocket=websocket)
        self.client_manager.add_client(client)
        logger.info(f'Registered client: {client}')

        await self.send(client, InitMessage(nodes=others))
        if existing_client is None:
            await self.broadcast(JoinMessage(name=client.name), exclude=client)
        return client

    async def unregister(
        self,
        client: Client,
        expected: bool,
        *,
        broadcast: bool = True,
    ) -> None:
        """Unregister the client.

        Args:
            client: Client to unregister.
            expected: If the connection was closed intentionally or due to an
                error.
            broadcast: Tell the remaining clients that this client left.
                Nothing is broadcast if a newer connection has taken over
                the client's name.
        """
        reason = 'ok' if expected else 'unexpected'
        logger.info(f'Unregistering client {client.name} for {reason} reason')
        self.client_manager.remove_client(client)
        await client.websocket.close(code=1000 if expected else 1001)

        if (
            broadcast
            and self.client_manager.get_client_by_name(client.name) is None
        ):
            await self.broadcast(LeaveMessage(name=client.name))

    async def forward(
        self,
        source_client: Client,
        message: SignalMessage,
    ) -> None:
        """Forward a signaling message between two clients.

        The message's `name` is rewritten from the target to the source
        client's name. Messages for unknown peers are dropped.

        Args:
            source_client: Client that sent the message.
            message: Message to forward.
        """
        target_client = self.client_manager.get_client_by_name(message.name)
        if target_client is None:
            logger.warning(
                f'Client {source_client.name} attempting to send '
                f'{message.type} message to unknown peer {message.name}',
            )
            return

        logger.info(
            f'Transmitting {message.type} message from {source_client.name} '
            f'to {target_client.name}',
        )
        await self.send(
            target_client,
            dataclasses.replace(message, name=source_client.name),
        )

    async def _process_message(
        self,
        client: Client,
        message_str: str | bytes,
    ) -> None:
        if (
            self._max_message_bytes is not None
            and sys.getsizeof(message_str) > self._max_message_bytes
        ):
            raise _MessageTooLargeError(sys.getsizeof(message_str))

        try:
            if isinstance(message_str, bytes):
                raise RelayMessageDecodeError(
                    'Got message as bytes but expected str.',
                )
            message = decode_relay_message(message_str)
        except RelayMessageDecodeError as e:
            raise BadRequestError(f'Unable to decode message: {e}') from e

        if isinstance(message, SignalMessage):
            await self.forward(client, message)
        else:
            raise BadRequestError(
                f'Clients cannot send {type(message).__name__} messages.',
            )

    async def handler(self, websocket: ServerConnection) -> None:
        """Websocket server connection handler.

        The handler will close the connection for the following reasons.

        - A malformed or unexpected message is received (code 4000).
        - The public key does not match the requested name (code 4001).
        - The client sends a message larger than the allowed size (code 4003).

        Args:
            websocket: Websocket connection of the client.
        """
        try:
            public_key = await websocket.recv()
        except websockets.exceptions.ConnectionClosed:
            return

        try:
            ident = self.authenticate(websocket, public_key)
        except UnauthorizedError as e:
            await websocket.close(4001, reason=f'{e.__class__.__name__}: {e}')
            return
        except RelayServerError as e:
            await websocket.close(4000, reason=f'{e.__class__.__name__}: {e}')
            return

        client = await self.register(websocket, ident)

        while True:
            try:
                message_str = await websocket.recv()
            except websockets.exceptions.ConnectionClosedOK:
                await self.unregister(client, expected=True)
                break
            except websockets.exceptions.ConnectionClosedError:
                await self.unregister(client, expected=False)
                break

            try:
                await self._process_message(client, message_str)
            except _MessageTooLargeError as e:
                logger.warning(
                    f'Client {client.name} sent message with size {e.size} '
                    'bytes which exceeds the max configured size of '
                    f'{self._max_message_bytes} bytes. Connection closed '
                    'with error code 4003',
                )
                await websocket.close(
                    4003,
                    reason='Message length exceeds limit.',
                )
                await self.unregister(client, expected=False)
                break
            except BadRequestError as e:
                logger.error(
                    f'Closing websocket of client {client.name} because of a '
                    f'bad request: {e}',
                )
                await websocket.close(
                    4000,
                    reason=f'{e.__class__.__name__}: {e}',
                )
                await self.unregister(client, expected=False)
                break


class _MessageTooLargeError(RelayServerError):
    def __init__(self, size: int) -> None:
        super().__init__(f'Message of {size} bytes exceeds limit.')
        self.size = size
