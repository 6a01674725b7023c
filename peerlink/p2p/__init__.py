"""Peer-to-peer channels and relaying.

This module provides two main functionalities: the
[`RTCDialer`][peerlink.p2p.dialer.RTCDialer] and relay client/server
implementations.

* The [`RTCDialer`][peerlink.p2p.dialer.RTCDialer] opens data channels to
  other peers by name even if peers are behind separate NATs. Peer
  connections are established using
  [aiortc](https://aiortc.readthedocs.io/){target=_blank}, an asyncio WebRTC
  implementation.
* The [`peerlink.p2p.relay`][peerlink.p2p.relay] module provides
  the relay server and client that peers use to find each other and
  exchange session descriptions.
"""
from __future__ import annotations
