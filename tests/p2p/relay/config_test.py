from __future__ import annotations

import logging
import pathlib

import pydantic
import pytest

from peerlink.p2p.relay.config import RelayLoggingConfig
from peerlink.p2p.relay.config import RelayServingConfig


def test_defaults() -> None:
    config = RelayServingConfig()
    assert config.host is None
    assert config.port == 8081
    assert config.certfile is None
    assert config.max_message_bytes is None
    assert config.logging == RelayLoggingConfig()
    assert config.logging.default_level == logging.INFO


def test_from_toml(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'relay.toml'
    filepath.write_text(
        'host = "0.0.0.0"\n'
        'port = 9000\n'
        'max_message_bytes = 1024\n'
        '\n'
        '[logging]\n'
        'log_dir = "/tmp/logs"\n'
        'default_level = "DEBUG"\n'
        'current_client_interval = 10\n',
    )

    config = RelayServingConfig.from_toml(filepath)

    assert config.host == '0.0.0.0'
    assert config.port == 9000
    assert config.max_message_bytes == 1024
    assert config.logging.log_dir == '/tmp/logs'
    assert config.logging.default_level == 'DEBUG'
    assert config.logging.current_client_interval == 10
    assert config.logging.current_client_limit == 32


def test_from_toml_empty_uses_defaults(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'relay.toml'
    filepath.write_text('')
    assert RelayServingConfig.from_toml(filepath) == RelayServingConfig()


@pytest.mark.parametrize(
    'content',
    ('port = "abc"\n', 'unknown = 1\n', '[logging]\nextra = true\n'),
)
def test_from_toml_invalid(tmp_path: pathlib.Path, content: str) -> None:
    filepath = tmp_path / 'relay.toml'
    filepath.write_text(content)
    with pytest.raises(pydantic.ValidationError):
        RelayServingConfig.from_toml(filepath)
