from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class Connection:
    user_id: str
    transport_id: str
    connected_at: float


class ConnectionRegistry:
    """Maps authenticated users to their single live transport.

    Not thread-safe on its own; the coordinator serializes access.
    """

    def __init__(self):
        self._by_user: Dict[str, Connection] = {}
        self._by_transport: Dict[str, str] = {}

    def register(self, user_id: str, transport_id: str, now: float) -> Optional[str]:
        """Bind ``user_id`` to ``transport_id``.

        Returns the transport that was superseded, if any, so the caller can
        tell it to close.
        """
        previous = self._by_user.get(user_id)
        superseded = None
        if previous and previous.transport_id != transport_id:
            superseded = previous.transport_id
            self._by_transport.pop(superseded, None)
        self._by_user[user_id] = Connection(user_id, transport_id, now)
        self._by_transport[transport_id] = user_id
        return superseded

    def lookup(self, user_id: str) -> Optional[str]:
        conn = self._by_user.get(user_id)
        return conn.transport_id if conn else None

    def user_for(self, transport_id: str) -> Optional[str]:
        return self._by_transport.get(transport_id)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._by_user

    def remove(self, transport_id: str) -> Optional[str]:
        """Drop a closed transport.

        Returns the user id only when the transport was that user's current
        binding. A superseded (stale) transport returns None.
        """
        user_id = self._by_transport.pop(transport_id, None)
        if user_id is None:
            return None
        conn = self._by_user.get(user_id)
        if conn is None or conn.transport_id != transport_id:
            return None
        del self._by_user[user_id]
        return user_id

    def clear(self) -> None:
        self._by_user.clear()
        self._by_transport.clear()

    def __len__(self):
        return len(self._by_user)
