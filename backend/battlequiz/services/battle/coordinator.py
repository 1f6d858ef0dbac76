import logging
import secrets
import string
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import AlreadyQueued, NotParticipant, QuestionsUnavailable, RoomNotFound
from .queue import MatchmakingQueue, WaitingEntry
from .registry import ConnectionRegistry
from .sessions import Match, MatchState, SessionStore
from .supervisor import ABANDON, EXPIRE, DisconnectSupervisor

# Undelivered durable events kept per offline user
MAX_PENDING_PER_USER = 20

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


@dataclass
class _Outbound:
    user_id: str
    event: str
    payload: Dict[str, Any]
    transport_id: Optional[str] = None
    durable: bool = False
    close: bool = False
    queued_at: float = 0.0


class _Batch:
    """Side effects collected while the coordinator lock is held."""

    def __init__(self):
        self.messages: List[_Outbound] = []
        self.finished: List[Match] = []


class BattleCoordinator:
    """Single owner of all battle-quiz matchmaking and session state.

    Every public operation takes the coordinator lock, validates, mutates and
    queues notifications; notifications and result persistence happen after
    the lock is released. An operation that raises leaves state unchanged.
    """

    def __init__(self, verifier, question_source, notifier, result_store=None, *,
                 grace_period: float = 30.0, match_time_limit: float = 60.0,
                 ready_timeout: float = 30.0, sweep_interval: float = 2.0,
                 question_count: int = 5, tie_break: str = 'draw',
                 forfeit_awards_win: bool = True, archive_size: int = 500,
                 pending_ttl: Optional[float] = 3600.0,
                 clock: Callable[[], float] = time.time, logger=None):
        self.verifier = verifier
        self.question_source = question_source
        self.notifier = notifier
        self.result_store = result_store
        self.question_count = question_count
        self.pending_ttl = pending_ttl
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

        self.registry = ConnectionRegistry()
        self.queue = MatchmakingQueue()
        self.sessions = SessionStore(tie_break=tie_break, forfeit_awards_win=forfeit_awards_win,
                                     archive_size=archive_size)
        self.supervisor = DisconnectSupervisor(grace_period=grace_period, match_time_limit=match_time_limit,
                                               ready_timeout=ready_timeout, interval=sweep_interval,
                                               logger=self.logger)
        self._pending: Dict[str, List[_Outbound]] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config, verifier, question_source, notifier, result_store=None, logger=None):
        return cls(
            verifier, question_source, notifier, result_store,
            grace_period=float(config.get('BATTLE_GRACE_PERIOD_SEC', 30)),
            match_time_limit=float(config.get('BATTLE_MATCH_TIME_LIMIT_SEC', 60)),
            ready_timeout=float(config.get('BATTLE_READY_TIMEOUT_SEC', 30)),
            sweep_interval=float(config.get('BATTLE_SWEEP_INTERVAL_SEC', 2)),
            question_count=int(config.get('BATTLE_QUESTION_COUNT', 5)),
            tie_break=config.get('BATTLE_TIE_BREAK', 'draw'),
            forfeit_awards_win=bool(config.get('BATTLE_FORFEIT_AWARDS_WIN', True)),
            archive_size=int(config.get('BATTLE_ARCHIVE_SIZE', 500)),
            pending_ttl=float(config.get('BATTLE_PENDING_TTL_SEC', 3600)),
            logger=logger,
        )

    # ---- lifecycle ----

    def start(self, socketio) -> None:
        self.supervisor.start(socketio, self.sweep)

    def shutdown(self) -> None:
        self.supervisor.stop()
        with self._lock:
            self.queue.clear()
            self.sessions.clear()
            self.registry.clear()
            self._pending.clear()
        self.logger.info("[coordinator-shutdown] state cleared")

    # ---- identity ----

    def authenticate(self, credential) -> str:
        return self.verifier.verify(credential)

    # ---- connections ----

    def connect(self, credential, transport_id: str) -> str:
        user_id = self.authenticate(credential)
        with self._transaction() as batch:
            self._bind(user_id, transport_id, batch)
        return user_id

    def disconnect(self, transport_id: str) -> Optional[str]:
        with self._transaction() as batch:
            now = self.clock()
            user_id = self.registry.remove(transport_id)
            if user_id is None:
                return None
            if self.queue.dequeue(user_id):
                self.logger.info(f"[dequeue] user={user_id} reason=disconnect")
            match = self.sessions.live_match_for(user_id)
            if match is not None:
                match.disconnected_at[user_id] = now
                self.logger.info(f"[disconnect] match={match.match_id} user={user_id}")
                self._notify(batch, match.opponent_of(user_id), 'opponent_connection_lost', {
                    'match_id': match.match_id,
                    'grace_period': self.supervisor.grace_period,
                })
                self._reconcile(match, now, batch)
            return user_id

    # ---- matchmaking ----

    def join_matchmaking(self, credential, transport_id: str, category_id: Optional[str] = None) -> dict:
        user_id = self.authenticate(credential)
        category_id = str(category_id) if category_id not in (None, '') else None
        with self._transaction() as batch:
            now = self.clock()
            self._ensure_not_playing(user_id)
            entry = WaitingEntry(user_id, transport_id, now, category_id)
            match = self.queue.enqueue(entry, lambda peer, new: self._pair(peer, new, now))
            # A joining user has no earlier live match, so there is nothing to resume
            self._bind(user_id, transport_id, batch, resume=False)
            if match is None:
                position = self.queue.position(user_id)
                self.logger.info(f"[enqueue] user={user_id} category={category_id} position={position}")
                self._notify(batch, user_id, 'waiting', {'category_id': category_id, 'position': position})
                return {'status': 'waiting', 'position': position}
            self._announce_match(match, batch)
            return {'status': 'matched', 'match_id': match.match_id, 'opponent_id': match.opponent_of(user_id)}

    def create_room(self, credential, transport_id: str, category_id: Optional[str] = None) -> dict:
        """Open a private room and wait in it until someone joins with the code."""
        user_id = self.authenticate(credential)
        category_id = str(category_id) if category_id not in (None, '') else None
        with self._transaction() as batch:
            now = self.clock()
            self._ensure_not_playing(user_id)
            room_code = self._new_room_code()
            entry = WaitingEntry(user_id, transport_id, now, category_id, room_code=room_code)
            self.queue.enqueue(entry, lambda peer, new: None)
            self._bind(user_id, transport_id, batch, resume=False)
            self.logger.info(f"[room-open] user={user_id} room={room_code} category={category_id}")
            self._notify(batch, user_id, 'room_created', {'room_code': room_code, 'category_id': category_id})
            return {'status': 'waiting', 'room_code': room_code}

    def join_room(self, credential, transport_id: str, room_code) -> dict:
        user_id = self.authenticate(credential)
        room_code = str(room_code or '').strip().upper()
        if not room_code:
            raise RoomNotFound()
        with self._transaction() as batch:
            now = self.clock()
            self._ensure_not_playing(user_id)
            entry = WaitingEntry(user_id, transport_id, now)
            match = self.queue.claim(room_code, entry, lambda host, new: self._pair(host, new, now))
            self._bind(user_id, transport_id, batch, resume=False)
            self.logger.info(f"[room-join] user={user_id} room={room_code} match={match.match_id}")
            self._announce_match(match, batch)
            return {'status': 'matched', 'match_id': match.match_id, 'opponent_id': match.opponent_of(user_id)}

    def leave_matchmaking(self, credential) -> bool:
        user_id = self.authenticate(credential)
        with self._transaction() as batch:
            entry = self.queue.dequeue(user_id)
            if entry is None:
                return False
            self.logger.info(f"[dequeue] user={user_id} reason=leave")
            self._notify(batch, user_id, 'left_matchmaking', {'category_id': entry.category_id})
            return True

    # ---- sessions ----

    def acknowledge(self, credential, match_id: str) -> dict:
        user_id = self.authenticate(credential)
        with self._transaction() as batch:
            now = self.clock()
            match = self.sessions.get(match_id)
            self._reconcile(match, now, batch)
            started = self.sessions.acknowledge(match_id, user_id, now)
            if started:
                self.logger.info(f"[start] match={match.match_id}")
                for player in match.players:
                    self._notify(batch, player, 'match_started', {
                        'match_id': match.match_id,
                        'started_at': match.started_at,
                        'time_limit': self.supervisor.match_time_limit,
                    })
            elif match.state is MatchState.PENDING:
                self._notify(batch, match.opponent_of(user_id), 'opponent_ready', {'match_id': match.match_id})
            return {'match_id': match.match_id, 'state': match.state.value}

    def submit_answer(self, credential, match_id: str, question_id, choice) -> dict:
        user_id = self.authenticate(credential)
        with self._transaction() as batch:
            now = self.clock()
            match = self.sessions.get(match_id)
            self._reconcile(match, now, batch)
            submission, completed = self.sessions.submit_answer(match_id, user_id, question_id, choice, now)
            answered = match.answered_count(user_id)
            self._notify(batch, user_id, 'answer_accepted', {
                'match_id': match.match_id,
                'question_id': submission.question_id,
                'answered': answered,
                'remaining': len(match.questions) - answered,
            })
            self._notify(batch, match.opponent_of(user_id), 'opponent_answered', {
                'match_id': match.match_id,
                'answered': answered,
            })
            if completed:
                self._announce_result(match, batch)
            return {'match_id': match.match_id, 'question_id': submission.question_id,
                    'state': match.state.value}

    def match_snapshot(self, credential, match_id: str) -> dict:
        user_id = self.authenticate(credential)
        with self._lock:
            match = self.sessions.get(match_id)
            if not match.has_player(user_id):
                raise NotParticipant()
            return match.snapshot_for(user_id)

    # ---- supervision ----

    def sweep(self, now: Optional[float] = None) -> int:
        """Force every overdue live match into its terminal state. Returns how many moved.

        Also drops undelivered events older than ``pending_ttl``.
        """
        with self._transaction() as batch:
            now = self.clock() if now is None else now
            for match in self.sessions.live_matches():
                self._reconcile(match, now, batch)
            self._expire_pending(now)
            return len(batch.finished)

    def stats(self) -> dict:
        with self._lock:
            live = self.sessions.live_matches()
            return {
                'connected': len(self.registry),
                'waiting': len(self.queue),
                'pending_matches': sum(1 for m in live if m.state is MatchState.PENDING),
                'active_matches': sum(1 for m in live if m.state is MatchState.ACTIVE),
                'open_rooms': sum(1 for e in self.queue.entries() if e.private),
                'archived_matches': self.sessions.archived_count(),
                'undelivered': sum(len(q) for q in self._pending.values()),
                'supervisor_running': self.supervisor.running,
            }

    # ---- internals ----

    @contextmanager
    def _transaction(self):
        batch = _Batch()
        try:
            with self._lock:
                yield batch
        finally:
            self._dispatch(batch)

    def _bind(self, user_id: str, transport_id: str, batch: _Batch, resume: bool = True) -> None:
        if self.registry.lookup(user_id) == transport_id:
            return
        superseded = self.registry.register(user_id, transport_id, self.clock())
        if superseded:
            self.logger.info(f"[supersede] user={user_id} old={superseded} new={transport_id}")
            batch.messages.append(_Outbound(user_id, 'superseded', {'reason': 'connected elsewhere'},
                                            transport_id=superseded, close=True))
        match = self.sessions.live_match_for(user_id) if resume else None
        if match is not None:
            if match.disconnected_at.pop(user_id, None) is not None:
                self.logger.info(f"[reconnect] match={match.match_id} user={user_id}")
                self._notify(batch, match.opponent_of(user_id), 'opponent_reconnected',
                             {'match_id': match.match_id})
            self._notify(batch, user_id, 'match_resumed', match.snapshot_for(user_id))
        for message in self._pending.pop(user_id, []):
            message.transport_id = transport_id
            batch.messages.append(message)

    def _ensure_not_playing(self, user_id: str) -> None:
        if self.sessions.live_match_for(user_id) is not None:
            raise AlreadyQueued('You are already in a match')

    def _new_room_code(self) -> str:
        while True:
            code = ''.join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))
            if self.queue.room(code) is None:
                return code

    def _pair(self, peer: WaitingEntry, entry: WaitingEntry, now: float) -> Match:
        category_id = peer.category_id or entry.category_id
        questions = self.question_source.fetch(category_id, self.question_count)
        if not questions:
            raise QuestionsUnavailable()
        match = self.sessions.create_match(peer.user_id, entry.user_id, questions, now, category_id)
        self.logger.info(
            f"[pair] match={match.match_id} a={peer.user_id} b={entry.user_id} "
            f"category={category_id} waited={now - peer.enqueued_at:.1f}s"
        )
        return match

    def _reconcile(self, match: Match, now: float, batch: _Batch) -> None:
        decision = self.supervisor.evaluate(match, now)
        if decision is None:
            return
        action, absent = decision
        if action == ABANDON:
            self.sessions.abandon(match, now, absent)
            self.logger.info(
                f"[abandon] match={match.match_id} absent={sorted(absent)} winner={match.result.winner_id}"
            )
            for player in match.players:
                if player not in absent and match.opponent_of(player) in match.disconnected_at:
                    self._notify(batch, player, 'opponent_disconnected', {
                        'match_id': match.match_id,
                        'forfeit_win': match.result.winner_id == player,
                    }, durable=True)
            self._announce_result(match, batch)
        elif action == EXPIRE:
            self.sessions.complete(match, now)
            self.logger.info(f"[expire] match={match.match_id} winner={match.result.winner_id}")
            self._announce_result(match, batch)

    def _announce_match(self, match: Match, batch: _Batch) -> None:
        for player in match.players:
            self._notify(batch, player, 'matched', {
                'match_id': match.match_id,
                'opponent_id': match.opponent_of(player),
                'category_id': match.category_id,
                'questions': [q.public_dict() for q in match.questions],
                'ready_timeout': self.supervisor.ready_timeout,
            })

    def _announce_result(self, match: Match, batch: _Batch) -> None:
        batch.finished.append(match)
        for player in match.players:
            self._notify(batch, player, 'match_result', match.result.for_player(player), durable=True)

    def _notify(self, batch: _Batch, user_id: str, event: str, payload: dict, durable: bool = False) -> None:
        transport_id = self.registry.lookup(user_id)
        message = _Outbound(user_id, event, payload, transport_id=transport_id, durable=durable)
        if transport_id is not None:
            batch.messages.append(message)
            return
        if durable:
            self._defer(message)
            self.logger.info(f"[deliver-later] user={user_id} event={event}")
        else:
            self.logger.info(f"[peer-unavailable] user={user_id} event={event}")

    def _defer(self, message: _Outbound) -> None:
        message.queued_at = self.clock()
        queued = self._pending.setdefault(message.user_id, [])
        queued.append(message)
        del queued[:-MAX_PENDING_PER_USER]

    def _expire_pending(self, now: float) -> None:
        if self.pending_ttl is None:
            return
        for user_id in list(self._pending):
            kept = [m for m in self._pending[user_id] if now - m.queued_at < self.pending_ttl]
            dropped = len(self._pending[user_id]) - len(kept)
            if dropped:
                self.logger.info(f"[pending-expired] user={user_id} dropped={dropped}")
            if kept:
                self._pending[user_id] = kept
            else:
                del self._pending[user_id]

    def _dispatch(self, batch: _Batch) -> None:
        for message in batch.messages:
            try:
                self.notifier.send(message.transport_id, message.event, message.payload)
                if message.close:
                    self.notifier.close(message.transport_id)
            except Exception as exc:
                self.logger.warning(
                    f"[deliver-fail] user={message.user_id} transport={message.transport_id} "
                    f"event={message.event} error={exc}"
                )
                if message.durable:
                    with self._lock:
                        self._defer(message)
        if self.result_store is None:
            return
        for match in batch.finished:
            try:
                self.result_store.save(match)
            except Exception:
                self.logger.exception(f"[persist-fail] match={match.match_id}")
