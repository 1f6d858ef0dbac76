from typing import Any, Dict

from .errors import PeerUnavailable


class Notifier:
    """Outbound channel from the coordinator to client transports.

    Implementations must not call back into the coordinator. ``send`` raises
    ``PeerUnavailable`` when the transport is gone, so durable events can be
    kept for the next connection instead of vanishing.
    """

    def send(self, transport_id: str, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self, transport_id: str) -> None:
        raise NotImplementedError


class SocketIONotifier(Notifier):
    """Delivers events to a single Socket.IO sid on the battle namespace."""

    def __init__(self, socketio, namespace: str = '/ws'):
        self.socketio = socketio
        self.namespace = namespace

    def send(self, transport_id, event, payload):
        if not self.socketio.server.manager.is_connected(transport_id, self.namespace):
            raise PeerUnavailable(f'{transport_id} is not connected')
        self.socketio.emit(event, payload, to=transport_id, namespace=self.namespace)

    def close(self, transport_id):
        self.socketio.server.disconnect(transport_id, namespace=self.namespace)
