from __future__ import annotations

import zlib

import pytest
from aiortc import RTCSessionDescription

from peerlink.codec import base62_encode
from peerlink.codec import DecodeError
from peerlink.codec import Encoder
from peerlink.p2p.info import join_candidates
from peerlink.p2p.info import pack
from peerlink.p2p.info import pack_candidate
from peerlink.p2p.info import parse_candidate
from peerlink.p2p.info import split_candidates
from peerlink.p2p.info import unpack
from peerlink.p2p.info import unpack_candidate

CANDIDATE = (
    'candidate:0d5e3b5d5c1f6d3c 1 udp 2130706431 192.168.1.2 50000 typ host'
)
SDP = (
    'v=0\r\n'
    'o=- 3900000000 3900000000 IN IP4 0.0.0.0\r\n'
    's=-\r\n'
    't=0 0\r\n'
    'a=group:BUNDLE 0\r\n'
    'm=application 9 DTLS/SCTP 5000\r\n'
    'c=IN IP4 0.0.0.0\r\n'
    'a=mid:0\r\n'
    'a=sctpmap:5000 webrtc-datachannel 65535\r\n'
    f'a={CANDIDATE}\r\n'
    'a=end-of-candidates\r\n'
    'a=ice-ufrag:abcd\r\n'
    'a=ice-pwd:0123456789abcdefghijkl\r\n'
)


def test_pack_unpack() -> None:
    description = RTCSessionDescription(sdp=SDP, type='offer')
    raw = pack(description, [CANDIDATE])

    assert raw.isalnum()
    unpacked, candidates = unpack(raw)
    assert unpacked.type == 'offer'
    assert unpacked.sdp == SDP
    assert candidates == [CANDIDATE]


def test_pack_without_candidates() -> None:
    description = RTCSessionDescription(sdp=SDP, type='answer')
    unpacked, candidates = unpack(pack(description))
    assert unpacked.type == 'answer'
    assert candidates == []


def test_pack_compresses_sdp() -> None:
    description = RTCSessionDescription(sdp=SDP * 10, type='offer')
    assert len(pack(description)) < len(description.sdp)


def test_wire_layout() -> None:
    raw = pack(RTCSessionDescription(sdp='v=0\r\n', type='offer'), ['c'])

    expected = Encoder()
    expected.string('offer')
    expected.string('v=0\r\n')
    expected.uint(1)
    expected.string('c')
    assert raw == base62_encode(zlib.compress(expected.result, 9))


@pytest.mark.parametrize(
    'raw',
    (
        'not+base62',
        base62_encode(b'not deflated'),
        base62_encode(zlib.compress(b'\x05of')),
    ),
)
def test_unpack_malformed(raw: str) -> None:
    with pytest.raises(DecodeError):
        unpack(raw)


def test_unpack_unknown_description_type() -> None:
    encoder = Encoder()
    encoder.string('bogus')
    encoder.string(SDP)
    encoder.uint(0)
    raw = base62_encode(zlib.compress(encoder.result, 9))
    with pytest.raises(DecodeError):
        unpack(raw)


def test_pack_unpack_candidate() -> None:
    raw = pack_candidate(CANDIDATE)
    assert raw.isalnum()
    assert unpack_candidate(raw) == CANDIDATE


def test_unpack_candidate_malformed() -> None:
    with pytest.raises(DecodeError):
        unpack_candidate(base62_encode(b'garbage'))


def test_split_candidates() -> None:
    sdp, candidates = split_candidates(SDP)
    assert candidates == [CANDIDATE]
    assert 'a=candidate:' not in sdp
    assert 'a=end-of-candidates' not in sdp
    assert 'a=ice-ufrag:abcd\r\n' in sdp
    assert sdp.endswith('\r\n')


def test_join_candidates_restores_media_section() -> None:
    sdp, candidates = split_candidates(SDP)
    joined = join_candidates(sdp, candidates)

    lines = joined.splitlines()
    assert lines[-2] == f'a={CANDIDATE}'
    assert lines[-1] == 'a=end-of-candidates'
    assert sorted(lines) == sorted(SDP.splitlines())


def test_join_without_candidates_leaves_gathering_open() -> None:
    sdp, _ = split_candidates(SDP)
    joined = join_candidates(sdp, [])

    assert 'a=candidate:' not in joined
    assert 'a=end-of-candidates' not in joined
    assert joined == sdp


def test_parse_candidate() -> None:
    ice = parse_candidate(CANDIDATE)
    assert ice.ip == '192.168.1.2'
    assert ice.port == 50000
    assert ice.type == 'host'
    assert ice.sdpMid == '0'
    assert ice.sdpMLineIndex == 0


@pytest.mark.parametrize(
    'candidate',
    (
        'candidate:bogus',
        '',
        'candidate:1 one udp 2130706431 192.168.1.2 50000 typ host',
        'candidate:1 1 udp 2130706431 192.168.1.2 50000 typ',
    ),
)
def test_parse_candidate_malformed(candidate: str) -> None:
    with pytest.raises(DecodeError, match='Malformed ICE candidate'):
        parse_candidate(candidate)
