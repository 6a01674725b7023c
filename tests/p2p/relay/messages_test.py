from __future__ import annotations

import json

import pytest

from peerlink.p2p.relay.messages import AnswerMessage
from peerlink.p2p.relay.messages import CandidateMessage
from peerlink.p2p.relay.messages import decode_relay_message
from peerlink.p2p.relay.messages import encode_relay_message
from peerlink.p2p.relay.messages import InitMessage
from peerlink.p2p.relay.messages import JoinMessage
from peerlink.p2p.relay.messages import LeaveMessage
from peerlink.p2p.relay.messages import OfferMessage
from peerlink.p2p.relay.messages import RelayMessage
from peerlink.p2p.relay.messages import RelayMessageDecodeError
from peerlink.p2p.relay.messages import RelayMessageEncodeError


@pytest.mark.parametrize(
    'message',
    (
        OfferMessage(name='peer', info='abc'),
        AnswerMessage(name='peer', info='abc'),
        CandidateMessage(name='peer', info='abc'),
        InitMessage(nodes=['a', 'b']),
        InitMessage(nodes=[]),
        JoinMessage(name='peer'),
        LeaveMessage(name='peer'),
    ),
)
def test_encode_decode(message: RelayMessage) -> None:
    assert decode_relay_message(encode_relay_message(message)) == message


def test_wire_format() -> None:
    data = json.loads(encode_relay_message(OfferMessage('peer', 'xyz')))
    assert data == {'type': 'offer', 'name': 'peer', 'info': 'xyz'}

    data = json.loads(encode_relay_message(InitMessage(['a'])))
    assert data == {'type': 'init', 'nodes': ['a']}


def test_decode_ignores_unknown_keys() -> None:
    message = decode_relay_message(
        '{"type": "join", "name": "peer", "extra": 1}',
    )
    assert message == JoinMessage(name='peer')


@pytest.mark.parametrize(
    'message_str',
    (
        'not json',
        '[1, 2, 3]',
        '{"name": "peer"}',
        '{"type": "unknown"}',
        '{"type": "RelayMessage"}',
        '{"type": ["offer"]}',
        '{"type": "offer", "name": "peer"}',
        '{"type": "offer", "name": 1, "info": "abc"}',
        '{"type": "init", "nodes": "abc"}',
        '{"type": "leave", "name": null}',
    ),
)
def test_decode_errors(message_str: str) -> None:
    with pytest.raises(RelayMessageDecodeError):
        decode_relay_message(message_str)


def test_encode_requires_relay_message() -> None:
    with pytest.raises(RelayMessageEncodeError):
        encode_relay_message('offer')  # type: ignore[arg-type]
