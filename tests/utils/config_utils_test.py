from __future__ import annotations

import io

from peerlink.p2p.relay.config import RelayServingConfig
from peerlink.utils.config import dumps
from peerlink.utils.config import load
from peerlink.utils.config import loads


def test_dumps_loads() -> None:
    config = RelayServingConfig(host='localhost', port=1234)
    config.logging.log_dir = '/var/log/relay'

    assert loads(RelayServingConfig, dumps(config)) == config


def test_dumps_excludes_none() -> None:
    text = dumps(RelayServingConfig())
    assert 'certfile' not in text
    assert 'port = 8081' in text


def test_load_file() -> None:
    buffer = io.BytesIO(b'port = 5000\n[logging]\nlog_dir = "/tmp"\n')
    config = load(RelayServingConfig, buffer)
    assert config.port == 5000
    assert config.logging.log_dir == '/tmp'
