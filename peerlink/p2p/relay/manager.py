"""Helper classes for managing clients connected to a relay server."""
from __future__ import annotations

import dataclasses
import datetime

from websockets.asyncio.server import ServerConnection

from peerlink.ident import Ident


def _utc_current_time() -> datetime.datetime:
    # dataclasses.field's default_factory requires a zero argument callable
    return datetime.datetime.now(tz=datetime.timezone.utc)


@dataclasses.dataclass(frozen=True, eq=False)
class Client:
    """Representation of a registered client connection.

    Attributes:
        ident: Public identity the client proved ownership of.
        websocket: WebSocket connection to the client.
        created: Time the client was created at.
    """

    ident: Ident
    websocket: ServerConnection
    created: datetime.datetime = dataclasses.field(
        default_factory=_utc_current_time,
    )

    @property
    def name(self) -> str:
        """Name of the client's identity."""
        return self.ident.name

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Client):
            return (
                self.ident == other.ident and self.websocket is other.websocket
            )
        else:
            return False

    def __hash__(self) -> int:
        return hash((self.ident, id(self.websocket)))

    def __repr__(self) -> str:
        created = self.created.strftime('%Y-%m-%d %H:%M:%S %Z')
        address = str(self.websocket.remote_address)
        return (
            f'{self.__class__.__name__}(name={self.name}, '
            f'address={address}, created={created})'
        )


class ClientManager:
    """Manages active connections with registered clients.

    Warning:
        This class is intended for internal use by the
        [`RelayServer`][peerlink.p2p.relay.server.RelayServer].
    """

    def __init__(self) -> None:
        self._clients_by_name: dict[str, Client] = {}
        self._clients_by_websocket: dict[ServerConnection, Client] = {}

    def add_client(self, client: Client) -> None:
        """Add a new registered client."""
        self._clients_by_name[client.name] = client
        self._clients_by_websocket[client.websocket] = client

    def get_clients(self) -> list[Client]:
        """Get a list of all clients."""
        return list(self._clients_by_name.values())

    def get_client_by_name(self, name: str) -> Client | None:
        """Get a client by the client's name."""
        return self._clients_by_name.get(name, None)

    def get_client_by_websocket(
        self,
        websocket: ServerConnection,
    ) -> Client | None:
        """Get a client by the current websocket connection."""
        return self._clients_by_websocket.get(websocket, None)

    def remove_client(self, client: Client) -> None:
        """Remove a client.

        A client replaced by a newer registration under the same name only
        loses its websocket mapping.
        """
        if self._clients_by_name.get(client.name) is client:
            del self._clients_by_name[client.name]
        self._clients_by_websocket.pop(client.websocket, None)
