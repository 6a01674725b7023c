"""Byte channel over a WebRTC data channel."""
from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Callable
from typing import Optional
from typing import TypeVar

from aiortc import RTCDataChannel
from aiortc import RTCPeerConnection

from peerlink.aio.event import Event
from peerlink.aio.exceptions import ChannelClosedError
from peerlink.aio.exceptions import PipeClosedError
from peerlink.aio.pipe import Pipe

logger = logging.getLogger(__name__)

R = TypeVar('R')


class DataChannel:
    """[`Channel`][peerlink.aio.protocols.Channel] backed by aiortc.

    Writes wait for the `bufferedamountlow` event whenever more than
    `bufferedAmountLowThreshold` bytes are queued in the transport so a
    fast writer cannot grow the send buffer without bound. Received
    messages are buffered in a [`Pipe`][peerlink.aio.pipe.Pipe] until a
    reader attaches.

    Closing the channel flushes the transport, closes the data channel and
    closes the owning peer connection, if one was given. A channel closed
    by the remote peer behaves the same: readers see the end of the stream
    and further writes raise
    [`ChannelClosedError`][peerlink.aio.exceptions.ChannelClosedError].

    Args:
        channel: Data channel to wrap.
        connection: Peer connection the channel belongs to. It is closed
            together with the channel.
        buffer_low_threshold: Optional low-water mark in bytes for write
            backpressure. Defaults to the data channel's current threshold.
    """

    def __init__(
        self,
        channel: RTCDataChannel,
        connection: RTCPeerConnection | None = None,
        *,
        buffer_low_threshold: int | None = None,
    ) -> None:
        self._channel = channel
        self._connection = connection
        if buffer_low_threshold is not None:
            channel.bufferedAmountLowThreshold = buffer_low_threshold

        self._pipe: Pipe[bytes] = Pipe()
        self._closed = False
        self._closing: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )
        self._shutdown_task: asyncio.Task[None] | None = None

        channel.on('message', self._on_message)
        channel.on('close', self._on_close)
        if channel.readyState == 'closed':
            self._on_close()

    def __repr__(self) -> str:
        return (
            f'{type(self).__name__}(label={self._channel.label!r}, '
            f'state={self._channel.readyState!r})'
        )

    @property
    def closed(self) -> bool:
        """The channel was closed locally or by the peer."""
        return self._closed

    @property
    def channel(self) -> RTCDataChannel:
        """Underlying aiortc data channel."""
        return self._channel

    def attach(
        self,
        predicate: Callable[[bytes], Optional[R]],
    ) -> asyncio.Future[Optional[R]]:
        """Wait for a received message the predicate accepts."""
        return self._pipe.attach(predicate)

    async def write(self, data: bytes) -> None:
        """Send bytes to the peer.

        Raises:
            ChannelClosedError: If the channel is closed or closes while
                waiting for the send buffer to drain.
        """
        if self._closed:
            raise ChannelClosedError('Cannot write to a closed channel.')

        channel = self._channel
        if channel.bufferedAmount > channel.bufferedAmountLowThreshold:
            drained = Event.wrap(channel, 'bufferedamountlow').next()
            try:
                await asyncio.wait(
                    {drained, self._closing},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                drained.cancel()

        if channel.readyState != 'open':
            raise ChannelClosedError(
                f'Data channel is {channel.readyState}, not open.',
            )
        channel.send(bytes(data))

    def close(self) -> None:
        """Close the channel.

        Queued sends are flushed before the transport closes. Calling close
        more than once is safe.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug(f'Closing {self!r}')
        self._shutdown_task = asyncio.create_task(self._shutdown())

    async def wait_closed(self) -> None:
        """Wait until the channel and its peer connection are closed."""
        await asyncio.shield(self._closing)
        if self._shutdown_task is not None:
            await self._shutdown_task

    async def _shutdown(self) -> None:
        if self._channel.readyState == 'open':
            # Flush send buffers before close
            # https://github.com/aiortc/aiortc/issues/547
            transport = self._channel.transport
            await transport._data_channel_flush()
            await transport._transmit()
        self._channel.close()
        if self._connection is not None:
            await self._connection.close()
        self._on_close()

    def _on_close(self) -> None:
        self._pipe.close()
        if not self._closing.done():
            logger.info(f'{self!r} closed')
            self._closing.set_result(None)
        if not self._closed:
            self._closed = True
            self._shutdown_task = asyncio.create_task(self._shutdown())

    def _on_message(self, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode('utf-8')
        if self._pipe.closed:
            return
        self._pipe.write(data).add_done_callback(self._on_delivered)

    def _on_delivered(self, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            return
        exception = future.exception()
        if isinstance(exception, PipeClosedError):
            logger.debug(f'{self!r} dropped unread message on close')
