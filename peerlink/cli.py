"""`peerlink` command-line interface."""
from __future__ import annotations

import asyncio
import logging
import sys

import click

import peerlink
from peerlink.ident import FullIdent
from peerlink.p2p.relay.client import RelayClient
from peerlink.p2p.relay.exceptions import RelayClientError

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    '--log-level',
    default='WARNING',
    type=click.Choice(
        ['ERROR', 'WARNING', 'INFO', 'DEBUG'],
        case_sensitive=False,
    ),
    help='Minimum logging level.',
)
def cli(log_level: str) -> None:
    """Manage peerlink identities and inspect relay servers."""
    logging.basicConfig(
        format='%(levelname)s: %(message)s',
        level=log_level.upper(),
        handlers=[logging.StreamHandler(sys.stderr)],
    )


@cli.command()
def version() -> None:
    """Show the peerlink version."""
    click.echo(f'peerlink v{peerlink.__version__}')


@cli.group()
def ident() -> None:
    """Create and inspect identities."""
    pass


@ident.command(name='new')
def ident_new() -> None:
    """Generate an identity and print its export and name.

    The export contains the private key. Anyone holding it can connect to
    relay servers as this identity.
    """
    new = FullIdent.generate()
    click.echo(new.export())
    click.echo(new.name)


def _load_export(export: str) -> FullIdent:
    try:
        return FullIdent.from_export(export.strip())
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='EXPORT') from e


@ident.command(name='name')
@click.argument('export', metavar='EXPORT')
def ident_name(export: str) -> None:
    """Print the name of an exported identity."""
    click.echo(_load_export(export).name)


async def _list_nodes(address: str, identity: FullIdent) -> list[str]:
    async with RelayClient(address, identity) as client:
        return sorted(client.nodes)


@cli.command()
@click.argument('address', metavar='ADDRESS')
@click.option(
    '--export',
    metavar='EXPORT',
    help='Identity to connect as. A fresh identity is used by default.',
)
def nodes(address: str, export: str | None) -> None:
    """List the peers connected to the relay server at ADDRESS."""
    identity = (
        FullIdent.generate() if export is None else _load_export(export)
    )
    try:
        names = asyncio.run(_list_nodes(address, identity))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='ADDRESS') from e
    except (OSError, asyncio.TimeoutError, RelayClientError) as e:
        logger.error(f'Unable to connect to relay server at {address}: {e}')
        sys.exit(1)

    for name in names:
        click.echo(name)
