from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from .errors import AlreadyQueued, RoomNotFound

T = TypeVar('T')


@dataclass
class WaitingEntry:
    user_id: str
    transport_id: str
    enqueued_at: float
    category_id: Optional[str] = None
    room_code: Optional[str] = None

    @property
    def private(self) -> bool:
        return self.room_code is not None

    def accepts(self, other: 'WaitingEntry') -> bool:
        """Two entries pair when their categories agree or either side left it open.

        Private room hosts only pair through their room code.
        """
        if self.private or other.private:
            return False
        if self.category_id is None or other.category_id is None:
            return True
        return self.category_id == other.category_id


class MatchmakingQueue:
    """FIFO waiting room for players looking for an opponent.

    Private room hosts wait in the same list so a user can only ever hold one
    waiting entry, but public pairing skips them.
    """

    def __init__(self):
        self._entries: List[WaitingEntry] = []

    def enqueue(self, entry: WaitingEntry, pair: Callable[[WaitingEntry, WaitingEntry], T]) -> Optional[T]:
        """Pair ``entry`` with the oldest compatible waiting peer, or park it.

        ``pair(peer, entry)`` builds the match. If it raises, the queue is left
        exactly as it was. Returns whatever ``pair`` returned, or None when the
        entry was parked.
        """
        if self.contains(entry.user_id):
            raise AlreadyQueued()
        peer = None if entry.private else self._oldest_compatible(entry)
        if peer is None:
            self._entries.append(entry)
            return None
        result = pair(peer, entry)
        self._entries.remove(peer)
        return result

    def claim(self, room_code: str, entry: WaitingEntry, pair: Callable[[WaitingEntry, WaitingEntry], T]) -> T:
        """Pair ``entry`` with the host waiting in ``room_code``.

        Same rollback rule as ``enqueue``: the host stays put if ``pair`` raises.
        """
        if self.contains(entry.user_id):
            raise AlreadyQueued()
        host = self.room(room_code)
        if host is None:
            raise RoomNotFound()
        result = pair(host, entry)
        self._entries.remove(host)
        return result

    def room(self, room_code: str) -> Optional[WaitingEntry]:
        for entry in self._entries:
            if entry.room_code is not None and entry.room_code == room_code:
                return entry
        return None

    def dequeue(self, user_id: str) -> Optional[WaitingEntry]:
        for idx, entry in enumerate(self._entries):
            if entry.user_id == user_id:
                return self._entries.pop(idx)
        return None

    def contains(self, user_id: str) -> bool:
        return any(e.user_id == user_id for e in self._entries)

    def position(self, user_id: str) -> Optional[int]:
        for idx, entry in enumerate(self._entries):
            if entry.user_id == user_id:
                return idx
        return None

    def entries(self) -> List[WaitingEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def _oldest_compatible(self, entry: WaitingEntry) -> Optional[WaitingEntry]:
        # Entries are appended in arrival order, so the first hit is the oldest
        for candidate in self._entries:
            if candidate.user_id != entry.user_id and candidate.accepts(entry):
                return candidate
        return None
