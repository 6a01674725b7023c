from __future__ import annotations

import asyncio
import logging
import ssl

import pytest

from peerlink.ident import FullIdent
from peerlink.p2p.relay.client import NodeChange
from peerlink.p2p.relay.client import RelayClient
from peerlink.p2p.relay.exceptions import RelayNotConnectedError
from peerlink.p2p.relay.exceptions import RelayRegistrationError
from peerlink.p2p.relay.messages import JoinMessage
from peerlink.p2p.relay.messages import OfferMessage
from peerlink.p2p.relay.messages import RelayMessage
from testing.relay_server import RelayServerInfo
from testing.utils import wait_until

_WAIT_FOR = 1


@pytest.fixture()
def ident() -> FullIdent:
    return FullIdent.generate()


def test_invalid_address_protocol(ident: FullIdent) -> None:
    with pytest.raises(ValueError, match='wss://'):
        RelayClient('myserver.com', ident)


def test_default_ssl_context(ident: FullIdent) -> None:
    client = RelayClient('wss://myserver.com', ident)
    assert client._ssl_context is not None
    assert client._ssl_context.verify_mode == ssl.CERT_REQUIRED


def test_default_ssl_context_no_verify(ident: FullIdent) -> None:
    client = RelayClient(
        'wss://myserver.com',
        ident,
        verify_certificate=False,
    )
    assert client._ssl_context is not None
    assert client._ssl_context.check_hostname is False
    assert client._ssl_context.verify_mode == ssl.CERT_NONE


def test_properties(ident: FullIdent) -> None:
    client = RelayClient('ws://localhost:8081/', ident)
    assert client.address == 'ws://localhost:8081'
    assert client.ident is ident
    assert client.name == ident.name
    assert client.nodes == frozenset()
    assert not client.connected


@pytest.mark.asyncio()
async def test_not_connected(ident: FullIdent) -> None:
    client = RelayClient('ws://localhost', ident)
    with pytest.raises(RelayNotConnectedError):
        client.websocket  # noqa: B018
    with pytest.raises(RelayNotConnectedError):
        await client.send(JoinMessage('peer'))
    await client.close()


@pytest.mark.asyncio()
async def test_connect_and_close(
    relay_server: RelayServerInfo,
    ident: FullIdent,
) -> None:
    closed: list[None] = []
    client = RelayClient(relay_server.address, ident)
    client.closed.listen(closed.append)

    await client.connect()
    await client.connect()
    assert client.connected
    assert relay_server.relay_server.client_manager.get_client_by_name(
        ident.name,
    )
    pong_waiter = await client.websocket.ping()
    await asyncio.wait_for(pong_waiter, _WAIT_FOR)

    await client.close()
    assert not client.connected
    assert closed == [None]


@pytest.mark.asyncio()
async def test_await_client(
    relay_server: RelayServerInfo,
    ident: FullIdent,
) -> None:
    client = await RelayClient(relay_server.address, ident)
    assert client.connected
    await client.close()


@pytest.mark.asyncio()
async def test_roster(relay_server: RelayServerInfo) -> None:
    first_ident = FullIdent.generate()
    second_ident = FullIdent.generate()
    third_ident = FullIdent.generate()

    async with RelayClient(relay_server.address, first_ident) as first:
        async with RelayClient(relay_server.address, second_ident) as second:
            assert second.nodes == {first.name}

            changes: list[NodeChange] = []
            second.nodes_change.listen(changes.append)
            joined = first.nodes_change.until(
                lambda change: change if change.name == third_ident.name
                else None,
            )

            third = await RelayClient(relay_server.address, third_ident)
            assert await asyncio.wait_for(joined, _WAIT_FOR) == NodeChange(
                'join',
                third.name,
            )
            assert third.nodes == {first.name, second.name}

            left = first.nodes_change.until(
                lambda change: change if change.change == 'leave' else None,
            )
            await third.close()
            assert await asyncio.wait_for(left, _WAIT_FOR) == NodeChange(
                'leave',
                third.name,
            )
            await wait_until(lambda: len(changes) == 2)
            assert changes == [
                NodeChange('join', third.name),
                NodeChange('leave', third.name),
            ]
            assert first.nodes == {second.name}


@pytest.mark.asyncio()
async def test_messages_forwarded(relay_server: RelayServerInfo) -> None:
    async with RelayClient(
        relay_server.address,
        FullIdent.generate(),
    ) as alice, RelayClient(
        relay_server.address,
        FullIdent.generate(),
    ) as bob:
        received = bob.message.until(
            lambda message: message
            if isinstance(message, OfferMessage)
            else None,
        )
        await alice.send(OfferMessage(name=bob.name, info='hello'))

        message = await asyncio.wait_for(received, _WAIT_FOR)
        assert message == OfferMessage(name=alice.name, info='hello')


@pytest.mark.asyncio()
async def test_messages_in_arrival_order(
    relay_server: RelayServerInfo,
) -> None:
    async with RelayClient(
        relay_server.address,
        FullIdent.generate(),
    ) as alice, RelayClient(
        relay_server.address,
        FullIdent.generate(),
    ) as bob:
        received: list[RelayMessage] = []
        bob.message.listen(received.append)

        for i in range(10):
            await alice.send(OfferMessage(name=bob.name, info=str(i)))

        await wait_until(lambda: len(received) == 10)
        assert [message.info for message in received] == [  # type: ignore
            str(i) for i in range(10)
        ]


@pytest.mark.asyncio()
async def test_malformed_frames_skipped(
    relay_server: RelayServerInfo,
    ident: FullIdent,
    caplog,
) -> None:
    caplog.set_level(logging.WARNING)
    async with RelayClient(relay_server.address, ident) as client:
        client._handle('not json')
        client._handle(b'binary')
        assert client.connected

    messages = [record.message for record in caplog.records]
    assert any('malformed message' in message for message in messages)
    assert any('binary frame' in message for message in messages)


@pytest.mark.asyncio()
async def test_registration_rejected(relay_server: RelayServerInfo) -> None:
    ident = FullIdent.generate()
    # Claim a name the public key does not derive
    ident._name = FullIdent.generate().name
    client = RelayClient(relay_server.address, ident)

    with pytest.raises(RelayRegistrationError):
        await client.connect()
    assert not client.connected


@pytest.mark.asyncio()
async def test_server_closes_connection(
    relay_server: RelayServerInfo,
    ident: FullIdent,
) -> None:
    client = await RelayClient(relay_server.address, ident)
    closed = client.closed.next()

    manager = relay_server.relay_server.client_manager
    server_client = manager.get_client_by_name(ident.name)
    assert server_client is not None
    await server_client.websocket.close()

    await asyncio.wait_for(closed, _WAIT_FOR)
    assert not client.connected
    await client.close()
