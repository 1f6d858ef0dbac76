from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, Optional

if TYPE_CHECKING:
    from .sessions import Match

WIN = 'WIN'
LOSS = 'LOSS'
DRAW = 'DRAW'
NO_CONTEST = 'NO_CONTEST'

TIE_BREAK_DRAW = 'draw'
TIE_BREAK_COMPLETION_TIME = 'completion_time'
TIE_BREAK_POLICIES = (TIE_BREAK_DRAW, TIE_BREAK_COMPLETION_TIME)


@dataclass
class MatchResult:
    match_id: str
    state: str
    scores: Dict[str, int]
    outcomes: Dict[str, str]
    finished_at: float
    winner_id: Optional[str] = None
    forfeit_by: Optional[str] = None
    completion_times: Dict[str, Optional[float]] = field(default_factory=dict)

    def for_player(self, user_id: str) -> dict:
        """Shape the result from one player's point of view."""
        opponent_id = next((u for u in self.scores if u != user_id), None)
        return {
            'match_id': self.match_id,
            'state': self.state,
            'score': self.scores.get(user_id, 0),
            'opponent_score': self.scores.get(opponent_id, 0) if opponent_id else 0,
            'outcome': self.outcomes.get(user_id, NO_CONTEST),
            'forfeit': self.forfeit_by is not None,
            'winner_id': self.winner_id,
        }

    def to_dict(self) -> dict:
        return {
            'match_id': self.match_id,
            'state': self.state,
            'scores': dict(self.scores),
            'outcomes': dict(self.outcomes),
            'winner_id': self.winner_id,
            'forfeit_by': self.forfeit_by,
            'finished_at': self.finished_at,
        }


def score_answers(match: 'Match') -> Dict[str, int]:
    """One point per correct choice."""
    scores = {p: 0 for p in match.players}
    key = match.answer_key
    for sub in match.answers.values():
        if key.get(sub.question_id) == sub.choice:
            scores[sub.user_id] += 1
    return scores


def _outcomes_for_winner(players: Iterable[str], winner_id: Optional[str]) -> Dict[str, str]:
    if winner_id is None:
        return {p: DRAW for p in players}
    return {p: (WIN if p == winner_id else LOSS) for p in players}


def completed_result(match: 'Match', now: float, tie_break: str = TIE_BREAK_DRAW) -> MatchResult:
    """Score a match that ran to completion or hit its time limit.

    Equal scores are a draw unless ``tie_break`` is ``completion_time``, in
    which case the player whose final answer landed first wins. A player who
    did not answer everything counts as finishing last.
    """
    scores = score_answers(match)
    a, b = match.players
    times = {p: match.completed_at(p) for p in match.players}
    winner = None
    if scores[a] != scores[b]:
        winner = a if scores[a] > scores[b] else b
    elif tie_break == TIE_BREAK_COMPLETION_TIME:
        ta = times[a] if times[a] is not None else float('inf')
        tb = times[b] if times[b] is not None else float('inf')
        if ta != tb:
            winner = a if ta < tb else b
    return MatchResult(
        match_id=match.match_id,
        state='COMPLETED',
        scores=scores,
        outcomes=_outcomes_for_winner(match.players, winner),
        finished_at=now,
        winner_id=winner,
        completion_times=times,
    )


def abandoned_result(match: 'Match', now: float, absent: Iterable[str], forfeit_awards_win: bool = True) -> MatchResult:
    """Resolve an abandoned match.

    With exactly one absent player and forfeits enabled, the player who stayed
    wins regardless of score. Otherwise nobody wins.
    """
    absent = set(absent)
    scores = score_answers(match)
    present = [p for p in match.players if p not in absent]
    winner = None
    forfeit_by = None
    if len(absent) == 1:
        forfeit_by = next(iter(absent))
        if forfeit_awards_win and present:
            winner = present[0]
    if winner is not None:
        outcomes = _outcomes_for_winner(match.players, winner)
    else:
        outcomes = {p: NO_CONTEST for p in match.players}
    return MatchResult(
        match_id=match.match_id,
        state='ABANDONED',
        scores=scores,
        outcomes=outcomes,
        finished_at=now,
        winner_id=winner,
        forfeit_by=forfeit_by,
        completion_times={p: match.completed_at(p) for p in match.players},
    )
