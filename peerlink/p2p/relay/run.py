"""CLI and serving functions for running a relay server."""
from __future__ import annotations

import asyncio
import datetime
import logging
import logging.handlers
import os
import signal
import ssl
import sys

import click
from websockets.asyncio.server import serve as websockets_serve

from peerlink.p2p.relay.config import RelayServingConfig
from peerlink.p2p.relay.server import RelayServer
from peerlink.utils.config import dumps
from peerlink.utils.tasks import spawn_guarded_background_task

logger = logging.getLogger(__name__)


def periodic_client_logger(
    server: RelayServer,
    interval: float = 60,
    limit: int | None = 32,
    level: int = logging.INFO,
) -> asyncio.Task[None]:
    """Create an asyncio task which logs currently connected peers.

    Args:
        server: Relay server instance to log connected peers of.
        interval: Seconds between logging connected peers.
        limit: Only log the detailed peer list if the number of peers is
            less than this number.
        level: Logging level.

    Returns:
        Asyncio task.
    """

    async def _log() -> None:
        while True:
            await asyncio.sleep(interval)
            clients = sorted(
                server.client_manager.get_clients(),
                key=lambda client: client.name,
            )
            message = f'Connected clients: {len(clients)}'
            if limit is not None and 0 < len(clients) < limit:
                details = '\n'.join(repr(client) for client in clients)
                message = f'{message}\n{details}'
            logger.log(level, message)

    return spawn_guarded_background_task(
        _log,
        name='relay-server-client-logger',
    )


def _ssl_context(config: RelayServingConfig) -> ssl.SSLContext | None:
    if config.certfile is None:
        return None
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(config.certfile, keyfile=config.keyfile)
    return context


async def serve(config: RelayServingConfig) -> None:
    """Run the relay server until SIGINT or SIGTERM.

    Initializes a [`RelayServer`][peerlink.p2p.relay.server.RelayServer]
    and starts a websocket server listening for new connections
    and incoming messages.

    Note:
        This function will not configure any logging. Configuring logging
        according to
        [`RelayServingConfig.logging`][peerlink.p2p.relay.config.RelayServingConfig]
        is the responsibility of the caller.

    Args:
        config: Serving configuration.
    """
    server = RelayServer(max_message_bytes=config.max_message_bytes)

    # Set the stop condition when receiving SIGINT (ctrl-C) and SIGTERM.
    loop = asyncio.get_running_loop()
    stop = loop.create_future()
    loop.add_signal_handler(signal.SIGINT, stop.set_result, None)
    loop.add_signal_handler(signal.SIGTERM, stop.set_result, None)

    client_logger_task: asyncio.Task[None] | None = None
    if config.logging.current_client_interval is not None:
        level = config.logging.default_level
        if isinstance(level, str):
            level = logging.getLevelName(level)
        client_logger_task = periodic_client_logger(
            server,
            config.logging.current_client_interval,
            config.logging.current_client_limit,
            level=level,
        )

    logger.info(f'Relay serving configuration:\n{dumps(config)}')

    async with websockets_serve(
        server.handler,
        config.host,
        config.port,
        ssl=_ssl_context(config),
    ):
        logger.info(f'Relay server listening on port {config.port}')
        logger.info('Use ctrl-C to stop')
        await stop

    if client_logger_task is not None:
        client_logger_task.cancel()
        try:
            await client_logger_task
        except asyncio.CancelledError:
            pass

    loop.remove_signal_handler(signal.SIGINT)
    loop.remove_signal_handler(signal.SIGTERM)

    logger.info('Relay server shutdown')


def configure_logging(config: RelayServingConfig) -> None:
    """Configure the root and `websockets` loggers for serving."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.logging.log_dir is not None:
        os.makedirs(config.logging.log_dir, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                os.path.join(config.logging.log_dir, 'relay.log'),
                # Rotate logs Sunday at midnight
                when='W6',
                atTime=datetime.time(hour=0, minute=0, second=0),
            ),
        )

    logging.basicConfig(
        format=(
            '[%(asctime)s.%(msecs)03d] %(levelname)-5s (%(name)s) :: '
            '%(message)s'
        ),
        datefmt='%Y-%m-%d %H:%M:%S',
        level=config.logging.default_level,
        handlers=handlers,
    )

    logging.getLogger('websockets').setLevel(config.logging.websockets_level)


@click.command()
@click.option('--config', '-c', 'config_path', help='Configuration file.')
@click.option('--host', metavar='ADDR', help='Interface to bind to.')
@click.option('--port', type=int, metavar='PORT', help='Port to bind to.')
@click.option('--log-dir', metavar='PATH', help='Logging directory.')
@click.option(
    '--log-level',
    type=click.Choice(
        ['CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def cli(
    config_path: str | None,
    host: str | None,
    port: int | None,
    log_dir: str | None,
    log_level: str | None,
) -> None:
    """Run a relay server instance.

    Peers connect to the relay server to find each other and exchange the
    offers and answers needed to open WebRTC data channels. If no
    configuration file is provided, a default configuration will be created
    from [`RelayServingConfig()`][peerlink.p2p.relay.config.RelayServingConfig].
    The remaining CLI options will override the options provided in the
    configuration object.
    """
    config = (
        RelayServingConfig()
        if config_path is None
        else RelayServingConfig.from_toml(config_path)
    )

    # Override config with CLI options if given
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port
    if log_dir is not None:
        config.logging.log_dir = log_dir
    if log_level is not None:
        config.logging.default_level = logging.getLevelName(log_level.upper())

    configure_logging(config)
    asyncio.run(serve(config))
