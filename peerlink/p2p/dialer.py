"""Open WebRTC data channels to peers by name.

The [`RTCDialer`][peerlink.p2p.dialer.RTCDialer] negotiates peer
connections through a [`RelayClient`][peerlink.p2p.relay.client.RelayClient].
The dialing peer sends an offer, the receiving peer replies with an answer
and both sides then wait for a negotiated data channel with id 0 to open.

aiortc gathers all ICE candidates while setting the local description, so
each side sends its candidates bundled with its description in a single
message. Candidates trickled by the remote peer in separate
[`CandidateMessage`][peerlink.p2p.relay.messages.CandidateMessage] messages
are also applied.

Example:
    ```python
    from peerlink.ident import FullIdent
    from peerlink.p2p.dialer import RTCDialer
    from peerlink.p2p.relay.client import RelayClient

    async with RelayClient(address, FullIdent.generate()) as relay:
        dialer = RTCDialer(relay)
        channel = await dialer.dial(peer_name)
        await channel.write(b'hello')
    ```
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional
from typing import Sequence
from typing import TypeVar
from typing import Union

from aiortc import RTCConfiguration
from aiortc import RTCDataChannel
from aiortc import RTCIceCandidate
from aiortc import RTCIceServer
from aiortc import RTCPeerConnection
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError

from peerlink.aio.event import Event
from peerlink.aio.exceptions import PipeClosedError
from peerlink.aio.pipe import Pipe
from peerlink.aio.protocols import IncomingChannel
from peerlink.codec import DecodeError
from peerlink.p2p.channel import DataChannel
from peerlink.p2p.exceptions import PeerConnectionError
from peerlink.p2p.exceptions import PeerConnectionTimeoutError
from peerlink.p2p.info import join_candidates
from peerlink.p2p.info import pack
from peerlink.p2p.info import parse_candidate
from peerlink.p2p.info import split_candidates
from peerlink.p2p.info import unpack
from peerlink.p2p.info import unpack_candidate
from peerlink.p2p.relay.client import RelayClient
from peerlink.p2p.relay.messages import AnswerMessage
from peerlink.p2p.relay.messages import CandidateMessage
from peerlink.p2p.relay.messages import OfferMessage
from peerlink.p2p.relay.messages import RelayMessage

logger = logging.getLogger(__name__)

R = TypeVar('R')

DEFAULT_ICE_SERVERS = (
    'stun:stun.l.google.com:19302',
    'stun:stun1.l.google.com:19302',
    'stun:stun2.l.google.com:19302',
    'stun:stun3.l.google.com:19302',
    'stun:stun4.l.google.com:19302',
)
CHANNEL_LABEL = 'master'
CHANNEL_ID = 0


def _short(name: str) -> str:
    return name[:8]


class RTCDialer:
    """[`Dialer`][peerlink.aio.protocols.Dialer] using WebRTC data channels.

    Warning:
        Without a timeout, a peer that stops responding mid-negotiation
        stalls [`dial()`][peerlink.p2p.dialer.RTCDialer.dial] and
        `incoming.attach()` indefinitely.

    Args:
        relay: Connected relay client used for signaling.
        ice_servers: STUN server URLs. Pass an empty sequence to only use
            host candidates.
        buffer_low_threshold: Optional write backpressure low-water mark
            of opened channels in bytes.
    """

    def __init__(
        self,
        relay: RelayClient,
        *,
        ice_servers: Sequence[str] = DEFAULT_ICE_SERVERS,
        buffer_low_threshold: int | None = None,
    ) -> None:
        self._relay = relay
        self._ice_servers = tuple(ice_servers)
        self._buffer_low_threshold = buffer_low_threshold
        self._incoming = _IncomingChannels(self)

    def _log_prefix(self, remote: str | None = None) -> str:
        remote = 'pending' if remote is None else _short(remote)
        return (
            f'{self.__class__.__name__}'
            f'[{_short(self._relay.name)} > {remote}]'
        )

    @property
    def relay(self) -> RelayClient:
        """Relay client used for signaling."""
        return self._relay

    @property
    def incoming(self) -> _IncomingChannels:
        """Source of channels opened by remote peers.

        Each call to `incoming.attach(predicate)` accepts offers one at a
        time and passes every opened channel to the predicate until it
        returns a value other than `None`, which is then returned. `None`
        is returned if the relay connection closes first.
        """
        return self._incoming

    async def dial(
        self,
        name: str,
        *,
        timeout: float | None = None,
    ) -> DataChannel:
        """Open a channel to a peer.

        Args:
            name: Name of the peer.
            timeout: Optional time in seconds to wait for the channel to
                open.

        Raises:
            PeerConnectionError: If the answer is malformed, the relay
                connection closes or the data channel closes before opening.
            PeerConnectionTimeoutError: If the channel does not open within
                the timeout.
        """
        connection, channel = self._create_connection()
        return await self._negotiate(
            self._offer(connection, channel, name),
            name,
            self._wrap(channel, connection),
            timeout,
        )

    async def accept(
        self,
        offer: OfferMessage,
        *,
        timeout: float | None = None,
    ) -> IncomingChannel:
        """Answer an offer and wait for the channel to open.

        Raises:
            PeerConnectionError: If the offer is malformed, the relay
                connection closes or the data channel closes before opening.
            PeerConnectionTimeoutError: If the channel does not open within
                the timeout.
        """
        connection, channel = self._create_connection()
        data = await self._negotiate(
            self._answer(connection, channel, offer),
            offer.name,
            self._wrap(channel, connection),
            timeout,
        )
        return IncomingChannel(offer.name, data)

    async def _negotiate(
        self,
        negotiation: Awaitable[None],
        name: str,
        data: DataChannel,
        timeout: float | None,
    ) -> DataChannel:
        # The channel is wrapped before it opens so no message is missed
        try:
            await asyncio.wait_for(negotiation, timeout)
        except asyncio.TimeoutError as e:
            data.close()
            await data.wait_closed()
            raise PeerConnectionTimeoutError(
                f'{self._log_prefix(name)}: timeout waiting for data channel '
                f'to open after {timeout} seconds.',
            ) from e
        except BaseException:
            data.close()
            await data.wait_closed()
            raise
        return data

    def _create_connection(self) -> tuple[RTCPeerConnection, RTCDataChannel]:
        configuration = RTCConfiguration(
            iceServers=[RTCIceServer(urls=url) for url in self._ice_servers],
        )
        connection = RTCPeerConnection(configuration=configuration)
        channel = connection.createDataChannel(
            CHANNEL_LABEL,
            ordered=True,
            negotiated=True,
            id=CHANNEL_ID,
        )
        return connection, channel

    def _wrap(
        self,
        channel: RTCDataChannel,
        connection: RTCPeerConnection,
    ) -> DataChannel:
        return DataChannel(
            channel,
            connection,
            buffer_low_threshold=self._buffer_low_threshold,
        )

    async def _offer(
        self,
        connection: RTCPeerConnection,
        channel: RTCDataChannel,
        name: str,
    ) -> None:
        candidates = _RemoteCandidates(self._relay, connection, name)
        answer = self._relay.message.until(
            lambda message: message.info
            if isinstance(message, AnswerMessage) and message.name == name
            else None,
        )
        try:
            await connection.setLocalDescription(
                await connection.createOffer(),
            )
            logger.info(f'{self._log_prefix(name)}: sending offer')
            await self._relay.send(
                OfferMessage(name=name, info=_local_info(connection)),
            )

            logger.debug(f'{self._log_prefix(name)}: waiting for answer')
            info = await self._signal(answer)
            logger.info(f'{self._log_prefix(name)}: received answer')
            await _set_remote(connection, info, 'answer')
            await candidates.apply()

            await self._wait_open(channel, name)
        finally:
            answer.cancel()
            candidates.stop()

    async def _answer(
        self,
        connection: RTCPeerConnection,
        channel: RTCDataChannel,
        offer: OfferMessage,
    ) -> None:
        name = offer.name
        candidates = _RemoteCandidates(self._relay, connection, name)
        try:
            logger.info(f'{self._log_prefix(name)}: received offer')
            await _set_remote(connection, offer.info, 'offer')
            await candidates.apply()

            await connection.setLocalDescription(
                await connection.createAnswer(),
            )
            logger.info(f'{self._log_prefix(name)}: sending answer')
            await self._relay.send(
                AnswerMessage(name=name, info=_local_info(connection)),
            )

            await self._wait_open(channel, name)
        finally:
            candidates.stop()

    async def _signal(self, future: asyncio.Future[R]) -> R:
        closed = self._relay.closed.next()
        try:
            await asyncio.wait(
                {future, closed},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed.cancel()

        if not future.done():
            raise PeerConnectionError(
                'Relay connection closed while waiting for the peer.',
            )
        return future.result()

    async def _wait_open(self, channel: RTCDataChannel, name: str) -> None:
        if channel.readyState != 'open':
            logger.debug(f'{self._log_prefix(name)}: waiting for open')
            opened = Event.wrap(channel, 'open').next()
            closed = Event.wrap(channel, 'close').next()
            try:
                await asyncio.wait(
                    {opened, closed},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                opened.cancel()
                closed.cancel()

            if channel.readyState != 'open':
                raise PeerConnectionError(
                    f'{self._log_prefix(name)}: data channel closed before '
                    'it opened.',
                )
        logger.info(f'{self._log_prefix(name)}: peer channel established')


class _IncomingChannels:
    """[`Source`][peerlink.aio.protocols.Source] of incoming channels."""

    def __init__(self, dialer: RTCDialer) -> None:
        self._dialer = dialer

    async def attach(
        self,
        predicate: Callable[
            [IncomingChannel],
            Union[Optional[R], Awaitable[Optional[R]]],
        ],
        *,
        timeout: float | None = None,
    ) -> Optional[R]:
        """Accept channels until the predicate returns a value.

        Malformed offers, peers whose channel fails to open and
        negotiations that exceed the timeout are logged and skipped.

        Args:
            predicate: Called with each opened channel. It may return an
                awaitable.
            timeout: Optional time in seconds each negotiation may take.

        Returns:
            The first predicate result other than `None`, or `None` if the \
            relay connection closes first.
        """
        relay = self._dialer.relay
        if not relay.connected:
            return None

        offers: Pipe[OfferMessage] = Pipe()

        def _on_message(message: RelayMessage) -> None:
            if isinstance(message, OfferMessage) and not offers.closed:
                offers.write(message).add_done_callback(_discard)

        unsubscribe_message = relay.message.listen(_on_message)
        unsubscribe_closed = relay.closed.listen(lambda _: offers.close())
        try:
            while True:
                offer = await offers.attach(lambda message: message)
                if offer is None:
                    return None

                try:
                    incoming = await self._dialer.accept(
                        offer,
                        timeout=timeout,
                    )
                except PeerConnectionError as e:
                    logger.warning(
                        f'Failed to accept offer from {offer.name}: {e}',
                    )
                    continue

                result = predicate(incoming)
                if inspect.isawaitable(result):
                    result = await result
                if result is not None:
                    return result
        finally:
            unsubscribe_message()
            unsubscribe_closed()
            offers.close()


class _RemoteCandidates:
    """Apply ICE candidates trickled by the remote peer.

    Candidates that arrive before the remote description is set are held
    back until [`apply()`][peerlink.p2p.dialer._RemoteCandidates.apply].
    """

    def __init__(
        self,
        relay: RelayClient,
        connection: RTCPeerConnection,
        name: str,
    ) -> None:
        self._connection = connection
        self._name = name
        self._pending: list[RTCIceCandidate] = []
        self._ready = False
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribe = relay.message.listen(self._on_message)

    def _on_message(self, message: RelayMessage) -> None:
        if not (
            isinstance(message, CandidateMessage)
            and message.name == self._name
        ):
            return
        try:
            raw = unpack_candidate(message.info)
            # An empty candidate only marks the end of trickling
            candidate = parse_candidate(raw) if raw else None
        except DecodeError as e:
            logger.warning(f'Dropping malformed candidate from peer: {e}')
            return
        if candidate is None:
            return

        if self._ready:
            task = asyncio.create_task(self._add(candidate))
            self._tasks.add(task)
            task.add_done_callback(self._on_added)
        else:
            self._pending.append(candidate)

    def _on_added(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                f'Failed to add candidate from peer: {task.exception()!r}',
            )

    async def _add(self, candidate: RTCIceCandidate) -> None:
        try:
            await self._connection.addIceCandidate(candidate)
        except (InvalidStateError, ValueError) as e:
            logger.warning(f'Dropping unusable candidate from peer: {e}')

    async def apply(self) -> None:
        """Apply held back candidates and those that arrive later."""
        self._ready = True
        pending, self._pending = self._pending, []
        for candidate in pending:
            await self._add(candidate)

    def stop(self) -> None:
        """Stop listening for candidates."""
        self._unsubscribe()
        for task in list(self._tasks):
            task.cancel()


def _discard(future: asyncio.Future[Any]) -> None:
    if future.cancelled():
        return
    # Offers still queued when listening stops are dropped
    exception = future.exception()
    if exception is not None and not isinstance(exception, PipeClosedError):
        logger.error(f'Failed to queue offer: {exception!r}')


def _local_info(connection: RTCPeerConnection) -> str:
    description = connection.localDescription
    sdp, candidates = split_candidates(description.sdp)
    local = RTCSessionDescription(sdp=sdp, type=description.type)
    return pack(local, candidates)


async def _set_remote(
    connection: RTCPeerConnection,
    info: str,
    expected: str,
) -> None:
    try:
        description, candidates = unpack(info)
    except DecodeError as e:
        raise PeerConnectionError(f'Malformed connection info: {e}') from e
    if description.type != expected:
        raise PeerConnectionError(
            f'Expected {expected} but got {description.type}.',
        )
    try:
        for candidate in candidates:
            parse_candidate(candidate)
    except DecodeError as e:
        raise PeerConnectionError(f'Malformed connection info: {e}') from e

    description = RTCSessionDescription(
        sdp=join_candidates(description.sdp, candidates),
        type=description.type,
    )
    try:
        await connection.setRemoteDescription(description)
    except (AssertionError, IndexError, ValueError) as e:
        # aiortc validates parts of the SDP with assert
        raise PeerConnectionError(
            f'Unable to apply remote {expected}: {e}',
        ) from e
