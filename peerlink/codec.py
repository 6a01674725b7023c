"""Length-prefixed binary wire codec and base-62 text encoding.

Every producer in peerlink writes fields with an
[`Encoder`][peerlink.codec.Encoder] in a fixed order and every consumer
reads them back with a [`Decoder`][peerlink.codec.Decoder] in the same order.
Integers are unsigned little-endian base-128 varints, byte strings are a
varint length followed by the raw bytes, and text is a byte string of its
UTF-8 encoding.

Example:
    ```python
    from peerlink.codec import Decoder, Encoder

    encoder = Encoder()
    encoder.uint(42)
    encoder.string('hello')

    decoder = Decoder(encoder.result)
    assert decoder.uint() == 42
    assert decoder.string() == 'hello'
    assert decoder.remaining == b''
    ```
"""
from __future__ import annotations

BASE62_ALPHABET = (
    'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'
)
_BASE62_INDEX = {char: index for index, char in enumerate(BASE62_ALPHABET)}

_INITIAL_CAPACITY = 256
MAX_UINT = 2**64 - 1
_MAX_VARINT_BYTES = 10


class DecodeError(ValueError):
    """Malformed input was encountered while decoding."""

    pass


def varint_length(value: int) -> int:
    """Number of bytes needed to encode `value` as a varint."""
    length = 1
    while value >= 0x80:
        value >>= 7
        length += 1
    return length


class Encoder:
    """Growable byte buffer for writing wire-encoded fields.

    The buffer starts at 256 bytes and doubles to the next power of two
    whenever an append would overflow it, so appends are amortized O(1).
    """

    def __init__(self) -> None:
        self._data = bytearray(_INITIAL_CAPACITY)
        self._length = 0

    def __len__(self) -> int:
        return self._length

    @property
    def result(self) -> bytes:
        """Immutable copy of the bytes written so far."""
        return bytes(self._data[: self._length])

    def _reserve(self, size: int) -> int:
        index = self._length
        self._length += size
        if self._length > len(self._data):
            capacity = 1 << (self._length - 1).bit_length()
            self._data.extend(bytes(capacity - len(self._data)))
        return index

    def _raw(self, block: bytes | bytearray | memoryview) -> None:
        index = self._reserve(len(block))
        self._data[index : index + len(block)] = block

    def include(self, other: Encoder) -> None:
        """Append the result of another encoder verbatim."""
        self._raw(other.result)

    def uint(self, value: int) -> None:
        """Append an unsigned integer as a varint.

        Raises:
            ValueError: If `value` is negative or larger than
                [`MAX_UINT`][peerlink.codec.MAX_UINT].
        """
        if value < 0:
            raise ValueError(f'Cannot encode negative value {value}.')
        if value > MAX_UINT:
            raise ValueError(f'Value {value} does not fit in 64 bits.')

        index = self._reserve(varint_length(value))
        while value >= 0x80:
            self._data[index] = (value & 0x7F) | 0x80
            value >>= 7
            index += 1
        self._data[index] = value

    def bytes(self, value: bytes | bytearray | memoryview) -> None:
        """Append a length-prefixed byte string."""
        self.uint(len(value))
        self._raw(value)

    def string(self, value: str) -> None:
        """Append a length-prefixed UTF-8 string."""
        self.bytes(value.encode('utf-8'))


class Decoder:
    """Sequential reader over wire-encoded bytes.

    Attributes:
        consumed: Bytes read so far.
        remaining: Bytes not yet read.

    Args:
        data: Buffer to decode.
    """

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        self._offset = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def consumed(self) -> bytes:
        return self._data[: self._offset]

    @property
    def remaining(self) -> bytes:
        return self._data[self._offset :]

    def _read_varint(self) -> tuple[int, int]:
        value = 0
        shift = 0
        index = self._offset
        while index < len(self._data):
            byte = self._data[index]
            value |= (byte & 0x7F) << shift
            index += 1
            if not byte & 0x80:
                if value > MAX_UINT:
                    raise DecodeError('Varint exceeds 64 bits.')
                return value, index
            shift += 7
            if index - self._offset >= _MAX_VARINT_BYTES:
                raise DecodeError('Varint exceeds maximum length.')
        raise DecodeError('Buffer ended before varint completed.')

    def uint(self) -> int:
        """Read an unsigned varint.

        Raises:
            DecodeError: If the buffer ends before the varint does.
        """
        value, self._offset = self._read_varint()
        return value

    def bytes(self) -> bytes:
        """Read a length-prefixed byte string.

        Raises:
            DecodeError: If the declared length runs past the end of the
                buffer.
        """
        length, start = self._read_varint()
        end = start + length
        if end > len(self._data):
            raise DecodeError(
                f'Byte string of length {length} exceeds the '
                f'{len(self._data) - start} remaining bytes.',
            )
        self._offset = end
        return self._data[start:end]

    def string(self) -> str:
        """Read a length-prefixed UTF-8 string.

        Raises:
            DecodeError: If the bytes are truncated or not valid UTF-8.
        """
        offset = self._offset
        data = self.bytes()
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            self._offset = offset
            raise DecodeError('String is not valid UTF-8.') from e


def base62_encode(data: bytes | bytearray | memoryview) -> str:
    """Encode bytes as base-62 text.

    Leading zero bytes are kept as leading `A` characters so the encoding
    is reversible for any input, including the empty string.
    """
    data = bytes(data)
    zeros = len(data) - len(data.lstrip(b'\x00'))
    number = int.from_bytes(data, 'big')

    chars = []
    while number > 0:
        number, digit = divmod(number, 62)
        chars.append(BASE62_ALPHABET[digit])

    return BASE62_ALPHABET[0] * zeros + ''.join(reversed(chars))


def base62_decode(text: str) -> bytes:
    """Decode base-62 text.

    Raises:
        DecodeError: If `text` contains characters outside the alphabet.
    """
    zeros = len(text) - len(text.lstrip(BASE62_ALPHABET[0]))

    number = 0
    for char in text:
        try:
            number = number * 62 + _BASE62_INDEX[char]
        except KeyError:
            raise DecodeError(
                f'Character {char!r} is not in the base-62 alphabet.',
            ) from None

    body = number.to_bytes((number.bit_length() + 7) // 8, 'big')
    return b'\x00' * zeros + body
