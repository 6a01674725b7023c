"""Compact text encoding of WebRTC connection information.

Session descriptions are several kilobytes of highly repetitive SDP. They
are written with an [`Encoder`][peerlink.codec.Encoder], deflated and
base-62 encoded so they can travel inside relay messages as plain text.

aiortc gathers every ICE candidate before `setLocalDescription()` returns
and embeds them in the SDP.
[`split_candidates()`][peerlink.p2p.info.split_candidates] moves them
into the candidate list of the packed info and
[`join_candidates()`][peerlink.p2p.info.join_candidates] puts them back
before the description is applied.
"""
from __future__ import annotations

import zlib
from typing import Sequence

from aiortc import RTCIceCandidate
from aiortc import RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from peerlink.codec import base62_decode
from peerlink.codec import base62_encode
from peerlink.codec import Decoder
from peerlink.codec import DecodeError
from peerlink.codec import Encoder

COMPRESSION_LEVEL = 9

_CANDIDATE_PREFIX = 'a=candidate:'
_CANDIDATE_VALUE_PREFIX = 'candidate:'
_END_OF_CANDIDATES = 'a=end-of-candidates'


def _deflate(encoder: Encoder) -> str:
    return base62_encode(zlib.compress(encoder.result, COMPRESSION_LEVEL))


def _inflate(raw: str) -> Decoder:
    try:
        return Decoder(zlib.decompress(base62_decode(raw)))
    except zlib.error as e:
        raise DecodeError(f'Connection info is not deflated: {e}') from e


def pack(
    description: RTCSessionDescription,
    candidates: Sequence[str] = (),
) -> str:
    """Pack a session description and its ICE candidates.

    Args:
        description: Local session description.
        candidates: Candidate attribute values (`candidate:...`).

    Returns:
        Base-62 text.
    """
    encoder = Encoder()
    encoder.string(description.type)
    encoder.string(description.sdp or '')
    encoder.uint(len(candidates))
    for candidate in candidates:
        encoder.string(candidate)
    return _deflate(encoder)


def unpack(raw: str) -> tuple[RTCSessionDescription, list[str]]:
    """Unpack text produced by [`pack()`][peerlink.p2p.info.pack].

    Raises:
        DecodeError: If `raw` is not valid connection info.
    """
    decoder = _inflate(raw)
    sdp_type = decoder.string()
    sdp = decoder.string()
    count = decoder.uint()
    candidates = [decoder.string() for _ in range(count)]

    try:
        description = RTCSessionDescription(sdp=sdp, type=sdp_type)
    except ValueError as e:
        raise DecodeError(str(e)) from e
    return description, candidates


def pack_candidate(candidate: str) -> str:
    """Pack a single ICE candidate for trickled delivery."""
    encoder = Encoder()
    encoder.string(candidate)
    return _deflate(encoder)


def unpack_candidate(raw: str) -> str:
    """Unpack a single ICE candidate.

    Raises:
        DecodeError: If `raw` is not a valid packed candidate.
    """
    return _inflate(raw).string()


def parse_candidate(candidate: str) -> RTCIceCandidate:
    """Parse a candidate attribute value into an aiortc candidate.

    The candidate is bound to the data channel media section.

    Raises:
        DecodeError: If `candidate` is not a valid ICE candidate.
    """
    value = candidate
    if value.startswith(_CANDIDATE_VALUE_PREFIX):
        value = value[len(_CANDIDATE_VALUE_PREFIX) :]
    try:
        ice = candidate_from_sdp(value)
    except (AssertionError, IndexError, ValueError) as e:
        # aiortc validates candidate fields with assert
        raise DecodeError(f'Malformed ICE candidate: {candidate!r}') from e
    ice.sdpMid = '0'
    ice.sdpMLineIndex = 0
    return ice


def split_candidates(sdp: str) -> tuple[str, list[str]]:
    """Remove the ICE candidate lines from an SDP.

    Returns:
        The SDP without candidate or end-of-candidates lines and the \
        candidate values without the `a=` prefix.
    """
    lines = []
    candidates = []
    for line in sdp.splitlines():
        if line.startswith(_CANDIDATE_PREFIX):
            candidates.append(line[2:])
        elif line != _END_OF_CANDIDATES:
            lines.append(line)
    return '\r\n'.join(lines) + '\r\n', candidates


def join_candidates(sdp: str, candidates: Sequence[str]) -> str:
    """Append ICE candidates to the last media section of an SDP.

    The data channel is the only media section, so every candidate belongs
    to it. Gathering is only marked complete when candidates are given so
    a peer that sends none can still trickle them.
    """
    lines = [line for line in sdp.splitlines() if line]
    if candidates:
        lines.extend(f'a={candidate}' for candidate in candidates)
        lines.append(_END_OF_CANDIDATES)
    return '\r\n'.join(lines) + '\r\n'
