import threading

import pytest

from conftest import token_for
from battlequiz.services.battle.errors import (
    DuplicateSubmission, MatchNotFound, NotActive, NotParticipant, UnknownQuestion,
)
from battlequiz.services.battle.sessions import MatchState


def start_match(coordinator, a='A', b='B', category='science', ready=True):
    coordinator.join_matchmaking(token_for(a), f'sid-{a}', category)
    result = coordinator.join_matchmaking(token_for(b), f'sid-{b}', category)
    match_id = result['match_id']
    if ready:
        coordinator.acknowledge(token_for(a), match_id)
        coordinator.acknowledge(token_for(b), match_id)
    return coordinator.sessions.get(match_id)


def answer_all(coordinator, match, uid, correct=True):
    for q in match.questions:
        choice = q.correct_choice if correct else (q.correct_choice + 1) % 4
        coordinator.submit_answer(token_for(uid), match.match_id, q.id, choice)


def test_match_starts_only_after_both_ready(coordinator, notifier):
    match = start_match(coordinator, ready=False)
    with pytest.raises(NotActive):
        coordinator.submit_answer(token_for('A'), match.match_id, 'q1', 0)

    coordinator.acknowledge(token_for('A'), match.match_id)
    assert match.state is MatchState.PENDING
    assert notifier.events('sid-B', 'opponent_ready')

    # Acknowledging twice is harmless
    coordinator.acknowledge(token_for('A'), match.match_id)
    assert match.state is MatchState.PENDING

    coordinator.acknowledge(token_for('B'), match.match_id)
    assert match.state is MatchState.ACTIVE
    assert match.started_at == coordinator.clock()
    assert notifier.events('sid-A', 'match_started')
    assert notifier.events('sid-B', 'match_started')


def test_both_all_correct_is_a_draw(coordinator, notifier, result_store):
    match = start_match(coordinator)
    answer_all(coordinator, match, 'A')
    assert match.state is MatchState.ACTIVE
    answer_all(coordinator, match, 'B')

    assert match.state is MatchState.COMPLETED
    result_a = notifier.events('sid-A', 'match_result')
    result_b = notifier.events('sid-B', 'match_result')
    assert len(result_a) == len(result_b) == 1
    assert result_a[0]['score'] == result_a[0]['opponent_score'] == 5
    assert result_a[0]['outcome'] == result_b[0]['outcome'] == 'DRAW'
    assert result_store.saved == [match]


def test_higher_score_wins(coordinator, notifier):
    match = start_match(coordinator)
    answer_all(coordinator, match, 'A', correct=True)
    answer_all(coordinator, match, 'B', correct=False)
    assert notifier.events('sid-A', 'match_result')[0]['outcome'] == 'WIN'
    loss = notifier.events('sid-B', 'match_result')[0]
    assert loss['outcome'] == 'LOSS'
    assert (loss['score'], loss['opponent_score']) == (0, 5)


def test_completion_time_breaks_ties_when_configured(make_coordinator, notifier, clock):
    coordinator = make_coordinator(tie_break='completion_time')
    match = start_match(coordinator)
    answer_all(coordinator, match, 'B')
    clock.advance(3)
    answer_all(coordinator, match, 'A')
    assert match.result.winner_id == 'B'
    assert notifier.events('sid-B', 'match_result')[0]['outcome'] == 'WIN'
    assert notifier.events('sid-A', 'match_result')[0]['outcome'] == 'LOSS'


def test_duplicate_submission_keeps_first_answer(coordinator):
    match = start_match(coordinator)
    first = match.questions[0]
    coordinator.submit_answer(token_for('A'), match.match_id, first.id, first.correct_choice)
    with pytest.raises(DuplicateSubmission):
        coordinator.submit_answer(token_for('A'), match.match_id, first.id, (first.correct_choice + 1) % 4)
    assert match.answers[('A', first.id)].choice == first.correct_choice
    assert match.answered_count('A') == 1


def test_outsider_cannot_submit(coordinator):
    match = start_match(coordinator)
    with pytest.raises(NotParticipant):
        coordinator.submit_answer(token_for('C'), match.match_id, 'q1', 0)
    with pytest.raises(NotParticipant):
        coordinator.match_snapshot(token_for('C'), match.match_id)


def test_unknown_question_and_match(coordinator):
    match = start_match(coordinator)
    with pytest.raises(UnknownQuestion):
        coordinator.submit_answer(token_for('A'), match.match_id, 'nope', 0)
    with pytest.raises(MatchNotFound):
        coordinator.submit_answer(token_for('A'), 'missing', 'q1', 0)


def test_submit_reports_progress_to_both_sides(coordinator, notifier):
    match = start_match(coordinator)
    coordinator.submit_answer(token_for('A'), match.match_id, 'q1', 1)
    accepted = notifier.events('sid-A', 'answer_accepted')[0]
    assert (accepted['answered'], accepted['remaining']) == (1, 4)
    assert notifier.events('sid-B', 'opponent_answered')[0]['answered'] == 1


def test_completed_match_rejects_further_answers(coordinator):
    match = start_match(coordinator)
    answer_all(coordinator, match, 'A')
    answer_all(coordinator, match, 'B')
    with pytest.raises(NotActive):
        coordinator.submit_answer(token_for('A'), match.match_id, 'q1', 0)
    with pytest.raises(NotActive):
        coordinator.acknowledge(token_for('A'), match.match_id)


def test_players_can_queue_again_after_a_match(coordinator):
    match = start_match(coordinator)
    answer_all(coordinator, match, 'A')
    answer_all(coordinator, match, 'B')
    assert coordinator.join_matchmaking(token_for('A'), 'sid-A')['status'] == 'waiting'


def test_snapshot_hides_answers_and_shows_progress(coordinator):
    match = start_match(coordinator)
    coordinator.submit_answer(token_for('A'), match.match_id, 'q2', 0)
    snap = coordinator.match_snapshot(token_for('B'), match.match_id)
    assert snap['state'] == 'ACTIVE'
    assert snap['opponent_id'] == 'A'
    assert snap['answered'] == []
    assert snap['opponent_answered_count'] == 1
    assert all(set(q) == {'id', 'text', 'options'} for q in snap['questions'])


def test_simultaneous_final_answers_complete_once(coordinator, notifier, result_store):
    for round_no in range(20):
        a, b = f'A{round_no}', f'B{round_no}'
        match = start_match(coordinator, a=a, b=b)
        barrier = threading.Barrier(2)
        errors = []

        def play(uid):
            barrier.wait()
            try:
                answer_all(coordinator, match, uid)
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=play, args=(uid,)) for uid in (a, b)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert errors == []
        assert match.state is MatchState.COMPLETED
        assert len(notifier.events(f'sid-{a}', 'match_result')) == 1
        assert len(notifier.events(f'sid-{b}', 'match_result')) == 1
        assert result_store.saved.count(match) == 1
    assert len(result_store.saved) == 20
