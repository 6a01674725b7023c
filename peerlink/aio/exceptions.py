"""Exception types for async primitives and channels."""
from __future__ import annotations


class PipeClosedError(Exception):
    """Write attempted on a closed pipe."""

    pass


class ChannelClosedError(Exception):
    """Write attempted on a closed channel."""

    pass
