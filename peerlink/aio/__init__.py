"""Async primitives and channel protocols.

* [`Event`][peerlink.aio.event.Event] and
  [`Emitter`][peerlink.aio.event.Emitter] broadcast values to listeners.
* [`Pipe`][peerlink.aio.pipe.Pipe] is a FIFO mailbox matching writes to
  predicate readers.
* [`peerlink.aio.protocols`][peerlink.aio.protocols] defines the `Sink`,
  `Source`, `Channel` and `Dialer` protocols applications program against.
"""
from __future__ import annotations

from peerlink.aio.event import Emitter
from peerlink.aio.event import Event
from peerlink.aio.pipe import Pipe
from peerlink.aio.protocols import Channel
from peerlink.aio.protocols import Dialer
from peerlink.aio.protocols import IncomingChannel
from peerlink.aio.protocols import Sink
from peerlink.aio.protocols import Source
