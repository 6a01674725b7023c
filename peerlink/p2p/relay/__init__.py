"""Relay server and client implementations."""
from __future__ import annotations

from peerlink.p2p.relay.client import NodeChange
from peerlink.p2p.relay.client import RelayClient
from peerlink.p2p.relay.server import RelayServer
