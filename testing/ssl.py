"""Self-signed TLS certificates for relay server tests.

Warning:
    The certificates created here are only suitable for local tests.
"""
from __future__ import annotations

import datetime
import ipaddress
import pathlib
from typing import NamedTuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


class TLSFiles(NamedTuple):
    """Certificate and key files returned by the `tls_files` fixture."""

    certfile: str
    keyfile: str


def write_self_signed(
    certfile: str | pathlib.Path,
    keyfile: str | pathlib.Path,
    days: int = 1,
) -> None:
    """Write a self-signed certificate valid for `localhost` to disk."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'localhost')])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName('localhost'),
                    x509.IPAddress(ipaddress.ip_address('127.0.0.1')),
                ],
            ),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    with open(keyfile, 'wb') as f:
        f.write(
            key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )
    with open(certfile, 'wb') as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))


@pytest.fixture(scope='session')
def tls_files(tmp_path_factory: pytest.TempPathFactory) -> TLSFiles:
    """Create a self-signed certificate and key file pair."""
    tmp_path = tmp_path_factory.mktemp('tls')
    certfile = tmp_path / 'cert.pem'
    keyfile = tmp_path / 'key.pem'
    write_self_signed(certfile, keyfile)
    return TLSFiles(str(certfile), str(keyfile))
