"""Stand-in for aiortc data channels in unit tests."""
from __future__ import annotations

from pyee.asyncio import AsyncIOEventEmitter


class MockTransport:
    """SCTP transport stand-in recording flushes."""

    def __init__(self) -> None:
        self.flushed = False

    async def _data_channel_flush(self) -> None:
        self.flushed = True

    async def _transmit(self) -> None:
        pass


class MockDataChannel(AsyncIOEventEmitter):
    """Data channel that records sent data instead of transmitting it.

    Tests drive the channel by emitting `open`, `message`,
    `bufferedamountlow` and `close` themselves.
    """

    def __init__(self, ready_state: str = 'open') -> None:
        super().__init__()
        self.label = 'mock'
        self.readyState = ready_state
        self.bufferedAmount = 0
        self.bufferedAmountLowThreshold = 0
        self.transport = MockTransport()
        self.sent: list[bytes] = []

    def send(self, data: bytes) -> None:
        if self.readyState != 'open':
            raise AssertionError('send() called on a channel that is not open')
        self.sent.append(data)

    def close(self) -> None:
        if self.readyState != 'closed':
            self.readyState = 'closed'
            self.emit('close')
