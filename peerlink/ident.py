"""Public-key peer identities.

An [`Ident`][peerlink.ident.Ident] is the public half of a peer: its raw
public key, the SHA-256 digest of that key (the identity) and the base-62
name of the digest. The name is what peers share with each other and what
the relay server routes messages by.

A [`FullIdent`][peerlink.ident.FullIdent] also holds the private key and
can sign data. Signatures are ECDSA over P-521 with SHA-512 and use the
fixed-width `r || s` encoding so they are interchangeable with WebCrypto
peers.

Example:
    ```python
    from peerlink.codec import Encoder
    from peerlink.ident import FullIdent, Ident

    me = FullIdent.generate()

    payload = Encoder()
    payload.string('hello')
    endorsement = me.endorse(payload)

    peer_view = Ident.from_public_key(me.public_key)
    decoder = peer_view.validate(endorsement)
    assert decoder is not None and decoder.string() == 'hello'
    ```
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import sys

if sys.version_info >= (3, 11):  # pragma: >=3.11 cover
    from typing import Self
else:  # pragma: <3.11 cover
    from typing_extensions import Self

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature,
)
from cryptography.hazmat.primitives.asymmetric.utils import (
    encode_dss_signature,
)

from peerlink.codec import base62_encode
from peerlink.codec import Decoder
from peerlink.codec import Encoder

CURVE = ec.SECP521R1()
SIGNATURE_HASH = hashes.SHA512()
# Bytes per signature component for P-521: ceil(521 / 8)
_COMPONENT_BYTES = (CURVE.key_size + 7) // 8


class Ident:
    """Public identity of a peer.

    Use [`from_public_key()`][peerlink.ident.Ident.from_public_key] rather
    than calling the constructor directly.

    Args:
        key: Public key of the peer.
    """

    def __init__(self, key: ec.EllipticCurvePublicKey) -> None:
        if not isinstance(key.curve, type(CURVE)):
            raise ValueError(
                f'Expected a {CURVE.name} key but got {key.curve.name}.',
            )
        self._public_key_data = key
        self._public_key = key.public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
        self._identity = hashlib.sha256(self._public_key).digest()
        self._name = base62_encode(self._identity)

    @classmethod
    def from_public_key(cls, public_key: bytes) -> Ident:
        """Load an identity from raw public key bytes.

        Raises:
            ValueError: If `public_key` is not a valid P-521 point.
        """
        key = ec.EllipticCurvePublicKey.from_encoded_point(
            CURVE,
            bytes(public_key),
        )
        return Ident(key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ident):
            return NotImplemented
        return self.public_key == other.public_key

    def __hash__(self) -> int:
        return hash(self.public_key)

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name={self.name!r})'

    @property
    def public_key(self) -> bytes:
        """Raw public key bytes (uncompressed point)."""
        return self._public_key

    @property
    def identity(self) -> bytes:
        """SHA-256 digest of the public key."""
        return self._identity

    @property
    def name(self) -> str:
        """Base-62 encoding of the identity."""
        return self._name

    def verify(self, data: bytes, signature: bytes) -> bool:
        """Check a signature made by this identity over `data`.

        Returns:
            `True` if the signature is valid. Forged, tampered or malformed \
            signatures return `False` rather than raising.
        """
        if len(signature) != 2 * _COMPONENT_BYTES:
            return False

        r = int.from_bytes(signature[:_COMPONENT_BYTES], 'big')
        s = int.from_bytes(signature[_COMPONENT_BYTES:], 'big')
        try:
            self._public_key_data.verify(
                encode_dss_signature(r, s),
                bytes(data),
                ec.ECDSA(SIGNATURE_HASH),
            )
        except InvalidSignature:
            return False
        return True

    def validate(self, endorsement: bytes) -> Decoder | None:
        """Validate an endorsement made by this identity.

        Args:
            endorsement: Signature-prefixed payload produced by
                [`FullIdent.endorse()`][peerlink.ident.FullIdent.endorse].

        Returns:
            Decoder positioned at the start of the signed payload, or \
            `None` if the signature does not verify.

        Raises:
            DecodeError: If the signature framing is malformed.
        """
        decoder = Decoder(endorsement)
        signature = decoder.bytes()
        if not self.verify(decoder.remaining, signature):
            return None
        return decoder


class FullIdent(Ident):
    """Identity with its private signing key.

    Args:
        key: Private key of the identity.
    """

    def __init__(self, key: ec.EllipticCurvePrivateKey) -> None:
        super().__init__(key.public_key())
        self._private_key = key

    @classmethod
    def generate(cls) -> Self:
        """Generate a fresh identity."""
        return cls(ec.generate_private_key(CURVE))

    @classmethod
    def from_private_key(cls, key: ec.EllipticCurvePrivateKey) -> Self:
        """Build an identity from an existing key pair.

        Raises:
            ValueError: If the key is not on the expected curve.
        """
        return cls(key)

    @classmethod
    def from_export(cls, raw: str) -> Self:
        """Reconstruct an identity from an export.

        Raises:
            ValueError: If `raw` is not a valid export or the public and
                private halves do not belong together.
        """
        try:
            data = json.loads(base64.b64decode(raw, validate=True))
            public_key = base64.b64decode(data['public'], validate=True)
            private_der = base64.b64decode(data['private'], validate=True)
        except (
            binascii.Error,
            json.JSONDecodeError,
            KeyError,
            TypeError,
            UnicodeDecodeError,
        ) as e:
            raise ValueError(f'Malformed identity export: {e}') from e

        private_key = serialization.load_der_private_key(
            private_der,
            password=None,
        )
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise ValueError('Exported private key is not an EC key.')

        ident = cls(private_key)
        if ident.public_key != public_key:
            raise ValueError(
                'Exported public key does not match the private key.',
            )
        return ident

    def export(self) -> str:
        """Serialize the key pair, including the private key.

        Warning:
            The result contains the unencrypted private key. Storing it
            safely is the caller's responsibility.
        """
        private_der = self._private_key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        data = {
            'public': base64.b64encode(self.public_key).decode('ascii'),
            'private': base64.b64encode(private_der).decode('ascii'),
        }
        return base64.b64encode(json.dumps(data).encode('utf-8')).decode(
            'ascii',
        )

    def sign(self, data: bytes) -> bytes:
        """Sign data.

        Returns:
            Signature as fixed-width `r || s`.
        """
        der = self._private_key.sign(bytes(data), ec.ECDSA(SIGNATURE_HASH))
        r, s = decode_dss_signature(der)
        return r.to_bytes(_COMPONENT_BYTES, 'big') + s.to_bytes(
            _COMPONENT_BYTES,
            'big',
        )

    def endorse(self, data: Encoder) -> bytes:
        """Sign an encoded payload and prefix it with the signature."""
        endorsement = Encoder()
        endorsement.bytes(self.sign(data.result))
        endorsement.include(data)
        return endorsement.result
