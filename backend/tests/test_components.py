import pytest

from conftest import make_questions
from battlequiz.auth import TokenVerifier, bearer_from_header
from battlequiz.services.battle.errors import (
    AlreadyQueued, PeerUnavailable, QuestionsUnavailable, RoomNotFound, Unauthenticated,
)
from battlequiz.services.battle.notifier import SocketIONotifier
from battlequiz.services.battle.queue import MatchmakingQueue, WaitingEntry
from battlequiz.services.battle.registry import ConnectionRegistry
from battlequiz.services.battle.scoring import abandoned_result, completed_result
from battlequiz.services.battle.sessions import SessionStore


def test_registry_register_lookup_remove():
    reg = ConnectionRegistry()
    assert reg.register('u1', 's1', 1.0) is None
    assert reg.lookup('u1') == 's1'
    assert reg.register('u1', 's2', 2.0) == 's1'
    assert reg.user_for('s1') is None
    assert reg.remove('s1') is None
    assert reg.remove('s2') == 'u1'
    assert reg.lookup('u1') is None
    assert len(reg) == 0


def test_registry_reregister_same_transport_is_not_a_supersede():
    reg = ConnectionRegistry()
    reg.register('u1', 's1', 1.0)
    assert reg.register('u1', 's1', 2.0) is None


def test_queue_open_category_pairs_with_anything():
    q = MatchmakingQueue()
    q.enqueue(WaitingEntry('a', 's-a', 1.0, 'science'), lambda p, e: (p, e))
    pair = q.enqueue(WaitingEntry('b', 's-b', 2.0, None), lambda p, e: (p.user_id, e.user_id))
    assert pair == ('a', 'b')
    assert len(q) == 0


def test_queue_failed_pair_leaves_entries_in_place():
    q = MatchmakingQueue()
    q.enqueue(WaitingEntry('a', 's-a', 1.0), lambda p, e: None)

    def broken(peer, entry):
        raise QuestionsUnavailable()

    with pytest.raises(QuestionsUnavailable):
        q.enqueue(WaitingEntry('b', 's-b', 2.0), broken)
    assert [e.user_id for e in q.entries()] == ['a']


def test_queue_rejects_duplicates_and_dequeue_is_idempotent():
    q = MatchmakingQueue()
    q.enqueue(WaitingEntry('a', 's-a', 1.0, 'x'), lambda p, e: None)
    with pytest.raises(AlreadyQueued):
        q.enqueue(WaitingEntry('a', 's-a2', 2.0, 'y'), lambda p, e: None)
    assert q.dequeue('a').category_id == 'x'
    assert q.dequeue('a') is None


def _finished_match(answers_a, answers_b):
    store = SessionStore()
    match = store.create_match('a', 'b', make_questions(3), now=0.0)
    store.acknowledge(match.match_id, 'a', 0.0)
    store.acknowledge(match.match_id, 'b', 0.0)
    for (uid, choices, t) in (('a', answers_a, 1.0), ('b', answers_b, 2.0)):
        for q, choice in zip(match.questions, choices):
            store.submit_answer(match.match_id, uid, q.id, choice, t)
    return match


def test_completed_result_counts_correct_choices():
    # correct choices for q1..q3 are 1, 2, 3
    match = _finished_match([1, 2, 0], [1, 2, 3])
    result = match.result
    assert result.state == 'COMPLETED'
    assert result.scores == {'a': 2, 'b': 3}
    assert result.winner_id == 'b'
    assert result.for_player('a')['outcome'] == 'LOSS'


def test_completed_result_tie_break_policies():
    match = _finished_match([1, 2, 3], [1, 2, 3])
    assert completed_result(match, 10.0, 'draw').winner_id is None
    # 'a' finished at t=1, 'b' at t=2
    assert completed_result(match, 10.0, 'completion_time').winner_id == 'a'


def test_abandoned_result_without_a_single_absentee_has_no_winner():
    match = _finished_match([1, 2, 3], [0, 0, 0])
    result = abandoned_result(match, 11.0, {'a', 'b'})
    assert result.winner_id is None
    assert set(result.outcomes.values()) == {'NO_CONTEST'}


def test_token_round_trip_and_rejections():
    verifier = TokenVerifier('s3cret', max_age=60)
    token = verifier.issue(42)
    assert verifier.verify(token) == '42'
    assert verifier.verify(f'Bearer {token}') == '42'
    with pytest.raises(Unauthenticated):
        TokenVerifier('other').verify(token)
    with pytest.raises(Unauthenticated):
        verifier.verify('')


def test_bearer_header_parsing():
    assert bearer_from_header('Bearer abc') == 'abc'
    assert bearer_from_header('bearer  abc ') == 'abc'
    assert bearer_from_header('Basic abc') is None
    assert bearer_from_header(None) is None


def test_queue_keeps_room_hosts_out_of_public_pairing():
    q = MatchmakingQueue()
    q.enqueue(WaitingEntry('host', 's-h', 1.0, room_code='ABC123'), lambda p, e: (p, e))
    assert q.enqueue(WaitingEntry('a', 's-a', 2.0), lambda p, e: (p, e)) is None

    with pytest.raises(RoomNotFound):
        q.claim('ZZZ999', WaitingEntry('b', 's-b', 3.0), lambda p, e: (p, e))
    pair = q.claim('ABC123', WaitingEntry('b', 's-b', 3.0), lambda p, e: (p.user_id, e.user_id))
    assert pair == ('host', 'b')
    assert [e.user_id for e in q.entries()] == ['a']


class _Manager:
    def __init__(self, connected):
        self.connected = connected

    def is_connected(self, sid, namespace):
        return sid in self.connected


class _Server:
    def __init__(self, connected):
        self.manager = _Manager(connected)


class _SocketIO:
    def __init__(self, connected):
        self.server = _Server(connected)
        self.emitted = []

    def emit(self, event, payload, to=None, namespace=None):
        self.emitted.append((event, payload, to, namespace))


def test_socketio_notifier_refuses_gone_transports():
    sio = _SocketIO(connected={'live'})
    notifier = SocketIONotifier(sio, namespace='/ws')
    notifier.send('live', 'pong', {})
    assert sio.emitted == [('pong', {}, 'live', '/ws')]
    with pytest.raises(PeerUnavailable):
        notifier.send('gone', 'match_result', {})
    assert len(sio.emitted) == 1
