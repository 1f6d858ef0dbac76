"""Database-backed collaborators of the coordinator.

Both open their own app context because they are called from socket
handlers and from the supervisor's background task.
"""
from typing import List, Optional

from battlequiz import db
from battlequiz.models import BattleMatch, Question
from .sessions import Match, QuestionItem


def _to_item(q: Question) -> QuestionItem:
    return QuestionItem(
        id=str(q.id),
        text=q.text,
        options=list(q.options or []),
        correct_choice=int(q.correct_option),
        category_id=q.category,
    )


class SqlQuestionSource:
    """Random question sets, topped up from other categories when one runs short."""

    def __init__(self, app):
        self.app = app

    def fetch(self, category_id: Optional[str], count: int) -> List[QuestionItem]:
        with self.app.app_context():
            base = Question.query.filter_by(is_active=True)
            if category_id:
                picked = base.filter_by(category=category_id).order_by(db.func.random()).limit(count).all()
            else:
                picked = []
            if len(picked) < count:
                seen = [q.id for q in picked]
                extra_q = base
                if seen:
                    extra_q = extra_q.filter(~Question.id.in_(seen))
                picked.extend(extra_q.order_by(db.func.random()).limit(count - len(picked)).all())
            return [_to_item(q) for q in picked]


class SqlResultStore:
    def __init__(self, app):
        self.app = app

    def save(self, match: Match) -> None:
        result = match.result
        if result is None:
            return
        with self.app.app_context():
            try:
                record = BattleMatch(
                    match_id=match.match_id,
                    category=match.category_id,
                    state=result.state,
                    player_a_id=int(match.player_a),
                    player_b_id=int(match.player_b),
                    player_a_score=result.scores.get(match.player_a, 0),
                    player_b_score=result.scores.get(match.player_b, 0),
                    winner_id=int(result.winner_id) if result.winner_id else None,
                    forfeit_by_id=int(result.forfeit_by) if result.forfeit_by else None,
                    question_ids=match.question_ids,
                    created_at=match.created_at,
                    started_at=match.started_at,
                    finished_at=result.finished_at,
                )
                db.session.add(record)
                db.session.commit()
                self.app.logger.info(f"[persist] match={match.match_id} state={result.state}")
            except Exception:
                db.session.rollback()
                raise
