import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .errors import DuplicateSubmission, MatchNotFound, NotActive, NotParticipant, UnknownQuestion
from .scoring import TIE_BREAK_DRAW, MatchResult, abandoned_result, completed_result


class MatchState(str, Enum):
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    ABANDONED = 'ABANDONED'

    @property
    def terminal(self) -> bool:
        return self in (MatchState.COMPLETED, MatchState.ABANDONED)


@dataclass
class QuestionItem:
    id: str
    text: str
    options: List[str]
    correct_choice: int
    category_id: Optional[str] = None

    def public_dict(self) -> dict:
        # Never leak the correct choice to clients
        return {'id': self.id, 'text': self.text, 'options': list(self.options)}


@dataclass
class AnswerSubmission:
    match_id: str
    user_id: str
    question_id: str
    choice: int
    submitted_at: float


@dataclass
class Match:
    match_id: str
    player_a: str
    player_b: str
    questions: List[QuestionItem]
    created_at: float
    category_id: Optional[str] = None
    state: MatchState = MatchState.PENDING
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    ready: Set[str] = field(default_factory=set)
    answers: Dict[Tuple[str, str], AnswerSubmission] = field(default_factory=dict)
    disconnected_at: Dict[str, float] = field(default_factory=dict)
    result: Optional[MatchResult] = None

    @property
    def players(self) -> Tuple[str, str]:
        return (self.player_a, self.player_b)

    @property
    def question_ids(self) -> List[str]:
        return [q.id for q in self.questions]

    @property
    def answer_key(self) -> Dict[str, int]:
        return {q.id: q.correct_choice for q in self.questions}

    @property
    def is_live(self) -> bool:
        return not self.state.terminal

    def has_player(self, user_id: str) -> bool:
        return user_id in self.players

    def opponent_of(self, user_id: str) -> str:
        return self.player_b if user_id == self.player_a else self.player_a

    def answered_count(self, user_id: str) -> int:
        return sum(1 for (uid, _) in self.answers if uid == user_id)

    def completed_at(self, user_id: str) -> Optional[float]:
        """Timestamp of the player's final answer, or None if unfinished."""
        subs = [s for (uid, _), s in self.answers.items() if uid == user_id]
        if len(subs) < len(self.questions):
            return None
        return max(s.submitted_at for s in subs)

    def all_answered(self) -> bool:
        return len(self.answers) >= 2 * len(self.questions)

    def snapshot_for(self, user_id: str) -> dict:
        payload = {
            'match_id': self.match_id,
            'state': self.state.value,
            'category_id': self.category_id,
            'opponent_id': self.opponent_of(user_id),
            'questions': [q.public_dict() for q in self.questions],
            'answered': [qid for (uid, qid) in self.answers if uid == user_id],
            'opponent_answered_count': self.answered_count(self.opponent_of(user_id)),
            'ready': sorted(self.ready),
            'created_at': self.created_at,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
        if self.result is not None:
            payload['result'] = self.result.for_player(user_id)
        return payload


class SessionStore:
    """Owns every match from pairing to its terminal state.

    Live matches are indexed by id and by player. Terminal matches move to a
    bounded archive so late lookups and reconnects can still see the result.
    Not thread-safe on its own; the coordinator serializes access.
    """

    def __init__(self, tie_break: str = TIE_BREAK_DRAW, forfeit_awards_win: bool = True, archive_size: int = 500):
        self.tie_break = tie_break
        self.forfeit_awards_win = forfeit_awards_win
        self.archive_size = archive_size
        self._live: Dict[str, Match] = {}
        self._by_player: Dict[str, str] = {}
        self._archive: 'OrderedDict[str, Match]' = OrderedDict()

    def create_match(self, player_a: str, player_b: str, questions: List[QuestionItem], now: float,
                     category_id: Optional[str] = None) -> Match:
        match = Match(
            match_id=uuid.uuid4().hex,
            player_a=player_a,
            player_b=player_b,
            questions=list(questions),
            created_at=now,
            category_id=category_id,
        )
        self._live[match.match_id] = match
        self._by_player[player_a] = match.match_id
        self._by_player[player_b] = match.match_id
        return match

    def get(self, match_id: str) -> Match:
        match = self._live.get(match_id) or self._archive.get(match_id)
        if match is None:
            raise MatchNotFound()
        return match

    def live_match_for(self, user_id: str) -> Optional[Match]:
        match_id = self._by_player.get(user_id)
        return self._live.get(match_id) if match_id else None

    def live_matches(self) -> List[Match]:
        return list(self._live.values())

    def acknowledge(self, match_id: str, user_id: str, now: float) -> bool:
        """Record a ready signal. Returns True when this one started the match."""
        match = self.get(match_id)
        if not match.has_player(user_id):
            raise NotParticipant()
        if match.state.terminal:
            raise NotActive('Match has already finished')
        if match.state is MatchState.ACTIVE:
            return False
        match.ready.add(user_id)
        if len(match.ready) == 2:
            match.state = MatchState.ACTIVE
            match.started_at = now
            return True
        return False

    def submit_answer(self, match_id: str, user_id: str, question_id, choice, now: float) -> Tuple[AnswerSubmission, bool]:
        """Record one answer.

        Returns ``(submission, completed)``; ``completed`` is True when this
        answer was the last one outstanding and the match was scored.
        """
        match = self.get(match_id)
        if match.state is not MatchState.ACTIVE:
            raise NotActive()
        if not match.has_player(user_id):
            raise NotParticipant()
        question_id = str(question_id)
        if question_id not in match.answer_key:
            raise UnknownQuestion()
        key = (user_id, question_id)
        if key in match.answers:
            raise DuplicateSubmission()
        submission = AnswerSubmission(match_id, user_id, question_id, choice, now)
        match.answers[key] = submission
        if match.all_answered():
            self.complete(match, now)
            return submission, True
        return submission, False

    def complete(self, match: Match, now: float) -> MatchResult:
        if match.state.terminal:
            return match.result
        match.state = MatchState.COMPLETED
        match.finished_at = now
        match.result = completed_result(match, now, self.tie_break)
        self._archive_match(match)
        return match.result

    def abandon(self, match: Match, now: float, absent) -> MatchResult:
        if match.state.terminal:
            return match.result
        match.state = MatchState.ABANDONED
        match.finished_at = now
        match.result = abandoned_result(match, now, absent, self.forfeit_awards_win)
        self._archive_match(match)
        return match.result

    def clear(self) -> None:
        self._live.clear()
        self._by_player.clear()
        self._archive.clear()

    def archived_count(self) -> int:
        return len(self._archive)

    def _archive_match(self, match: Match) -> None:
        self._live.pop(match.match_id, None)
        for player in match.players:
            if self._by_player.get(player) == match.match_id:
                del self._by_player[player]
        self._archive[match.match_id] = match
        while len(self._archive) > self.archive_size:
            self._archive.popitem(last=False)
