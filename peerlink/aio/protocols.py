"""Transport agnostic channel and dialer protocols.

Applications only depend on these protocols. A
[`Channel`][peerlink.aio.protocols.Channel] is a
[`Sink`][peerlink.aio.protocols.Sink] for writing bytes to the peer and a
[`Source`][peerlink.aio.protocols.Source] for reading bytes from it. A
[`Dialer`][peerlink.aio.protocols.Dialer] opens channels to named peers and
accepts channels from them.
"""
from __future__ import annotations

from typing import Awaitable
from typing import Callable
from typing import NamedTuple
from typing import Optional
from typing import Protocol
from typing import runtime_checkable
from typing import TypeVar

T_co = TypeVar('T_co', covariant=True)
T_contra = TypeVar('T_contra', contravariant=True)
R = TypeVar('R')


@runtime_checkable
class Sink(Protocol[T_contra]):
    """Write side of a channel."""

    def close(self) -> None:
        """Mark the sink as finished.

        Further writes are rejected. Calling close more than once is safe.
        """
        ...

    def write(self, data: T_contra) -> Awaitable[None]:
        """Write a value.

        The returned awaitable completes once the value has been accepted.
        """
        ...


@runtime_checkable
class Source(Protocol[T_co]):
    """Read side of a channel."""

    def attach(
        self,
        predicate: Callable[[T_co], Optional[R]],
    ) -> Awaitable[Optional[R]]:
        """Wait for a value the predicate accepts.

        The predicate is called with each value and accepts it by returning
        anything other than `None`.

        Returns:
            Awaitable of the first accepted predicate result, or `None` if \
            the source reaches the end of the stream first.
        """
        ...


@runtime_checkable
class Channel(Sink[bytes], Source[bytes], Protocol):
    """Bidirectional byte channel to a single peer."""

    pass


class IncomingChannel(NamedTuple):
    """Channel opened by a remote peer.

    Attributes:
        name: Name of the peer that opened the channel.
        channel: Channel to the peer.
    """

    name: str
    channel: Channel


@runtime_checkable
class Dialer(Protocol):
    """Opens and accepts channels to named peers."""

    @property
    def incoming(self) -> Source[IncomingChannel]:
        """Source of channels opened by remote peers."""
        ...

    async def dial(self, name: str) -> Channel:
        """Open a channel to the peer with `name`."""
        ...
