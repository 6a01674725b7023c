"""Message types for relay client and relay server communication.

Messages travel as JSON objects with a `type` discriminator. Signaling
messages carry the name of the other peer: the sender sets `name` to the
target, and the relay server rewrites it to the sender's name before
forwarding so the receiver knows who the message came from.
"""
from __future__ import annotations

import dataclasses
import enum
import json
import sys
from typing import Any


class RelayMessageType(enum.Enum):
    """Types of messages supported."""

    offer = 'OfferMessage'
    """Session description offer."""
    answer = 'AnswerMessage'
    """Session description answer."""
    candidate = 'CandidateMessage'
    """Single ICE candidate."""
    init = 'InitMessage'
    """Snapshot of connected peers."""
    join = 'JoinMessage'
    """Peer connected to the relay."""
    leave = 'LeaveMessage'
    """Peer disconnected from the relay."""


@dataclasses.dataclass
class RelayMessage:
    """Base message."""

    pass


@dataclasses.dataclass
class SignalMessage(RelayMessage):
    """Base signaling message forwarded between two peers.

    Attributes:
        name: Name of the target peer when sent and of the source peer
            when received.
        info: Encoded connection information.
    """

    name: str
    info: str

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not isinstance(self.info, str):
            raise TypeError('Fields name and info must be strings.')


@dataclasses.dataclass
class OfferMessage(SignalMessage):
    """Offer to open a peer connection."""

    type: str = dataclasses.field(
        default=RelayMessageType.offer.name,
        init=False,
    )


@dataclasses.dataclass
class AnswerMessage(SignalMessage):
    """Answer to an offer."""

    type: str = dataclasses.field(
        default=RelayMessageType.answer.name,
        init=False,
    )


@dataclasses.dataclass
class CandidateMessage(SignalMessage):
    """ICE candidate sent separately from the session description."""

    type: str = dataclasses.field(
        default=RelayMessageType.candidate.name,
        init=False,
    )


@dataclasses.dataclass
class InitMessage(RelayMessage):
    """Peers connected to the relay when the client registered.

    Attributes:
        nodes: Names of the connected peers.
    """

    nodes: list[str]
    type: str = dataclasses.field(
        default=RelayMessageType.init.name,
        init=False,
    )

    def __post_init__(self) -> None:
        if not isinstance(self.nodes, list) or not all(
            isinstance(name, str) for name in self.nodes
        ):
            raise TypeError('Field nodes must be a list of strings.')


@dataclasses.dataclass
class JoinMessage(RelayMessage):
    """Peer connected to the relay.

    Attributes:
        name: Name of the peer.
    """

    name: str
    type: str = dataclasses.field(
        default=RelayMessageType.join.name,
        init=False,
    )

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError('Field name must be a string.')


@dataclasses.dataclass
class LeaveMessage(RelayMessage):
    """Peer disconnected from the relay.

    Attributes:
        name: Name of the peer.
    """

    name: str
    type: str = dataclasses.field(
        default=RelayMessageType.leave.name,
        init=False,
    )

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError('Field name must be a string.')


class RelayMessageError(Exception):
    """Base exception type for relay messages."""

    pass


class RelayMessageDecodeError(RelayMessageError):
    """Exception raised when a message cannot be decoded."""

    pass


class RelayMessageEncodeError(RelayMessageError):
    """Exception raised when an message cannot be encoded."""

    pass


def decode_relay_message(message: str) -> RelayMessage:
    """Decode JSON string into correct relay message type.

    Keys that are not fields of the message type are ignored.

    Args:
        message: JSON string to decode.

    Returns:
        Parsed message.

    Raises:
        RelayMessageDecodeError: If the message cannot be decoded.
    """
    try:
        data = json.loads(message)
    except json.JSONDecodeError as e:
        raise RelayMessageDecodeError('Failed to load string as JSON.') from e

    if not isinstance(data, dict):
        raise RelayMessageDecodeError('Message is not a JSON object.')

    try:
        message_type_name = data.pop('type')
    except KeyError as e:
        raise RelayMessageDecodeError(
            'Message does not contain a type key.',
        ) from e

    try:
        message_type = getattr(
            sys.modules[__name__],
            RelayMessageType[message_type_name].value,
        )
    except (AttributeError, KeyError, TypeError) as e:
        raise RelayMessageDecodeError(
            f'The message is of an unknown message type: {message_type_name}.',
        ) from e

    fields = {
        field.name for field in dataclasses.fields(message_type) if field.init
    }
    kwargs: dict[str, Any] = {
        key: value for key, value in data.items() if key in fields
    }

    try:
        return message_type(**kwargs)
    except TypeError as e:
        raise RelayMessageDecodeError(
            f'Failed to convert message to {message_type.__name__}: {e}',
        ) from e


def encode_relay_message(message: RelayMessage) -> str:
    """Encode message as JSON string.

    Args:
        message: Message to JSON encode.

    Raises:
        RelayMessageEncodeError: If the message cannot be JSON encoded.
    """
    if not isinstance(message, RelayMessage):
        raise RelayMessageEncodeError(
            f'Message is not an instance of {RelayMessage.__name__}. '
            f'Got {type(message).__name__}.',
        )

    data = dataclasses.asdict(message)

    try:
        return json.dumps(data)
    except TypeError as e:
        raise RelayMessageEncodeError('Error encoding message.') from e
