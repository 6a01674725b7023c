"""peerlink opens authenticated peer-to-peer WebRTC data channels."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('peerlink')
