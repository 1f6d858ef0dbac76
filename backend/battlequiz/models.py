from battlequiz import db, bcrypt
from flask_login import UserMixin
import time


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    category = db.Column(db.String(64), nullable=True, index=True)
    text = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False)  # list of option strings
    correct_option = db.Column(db.Integer, nullable=False)  # index into options
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'category': self.category,
            'text': self.text,
            'options': list(self.options or []),
        }
        if include_answer:
            data['correct_option'] = self.correct_option
        return data


class BattleMatch(db.Model):
    """Archived outcome of a finished battle. Live state never touches the database."""
    __tablename__ = 'battle_match'
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    category = db.Column(db.String(64), nullable=True)
    state = db.Column(db.String(16), nullable=False)  # COMPLETED, ABANDONED
    player_a_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    player_b_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    player_a_score = db.Column(db.Integer, default=0, nullable=False)
    player_b_score = db.Column(db.Integer, default=0, nullable=False)
    winner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    forfeit_by_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    question_ids = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.Float, nullable=False)
    started_at = db.Column(db.Float, nullable=True)
    finished_at = db.Column(db.Float, nullable=False, default=time.time)

    player_a = db.relationship('User', foreign_keys=[player_a_id])
    player_b = db.relationship('User', foreign_keys=[player_b_id])

    def to_dict(self, viewer_id=None):
        data = {
            'match_id': self.match_id,
            'category': self.category,
            'state': self.state,
            'players': [
                {'id': self.player_a_id, 'username': self.player_a.username if self.player_a else None,
                 'score': self.player_a_score},
                {'id': self.player_b_id, 'username': self.player_b.username if self.player_b else None,
                 'score': self.player_b_score},
            ],
            'winner_id': self.winner_id,
            'forfeit_by_id': self.forfeit_by_id,
            'question_ids': self.question_ids,
            'created_at': self.created_at,
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
        if viewer_id is not None:
            data['outcome'] = self.outcome_for(viewer_id)
        return data

    def outcome_for(self, user_id):
        if self.winner_id is None:
            return 'DRAW' if self.state == 'COMPLETED' else 'NO_CONTEST'
        return 'WIN' if self.winner_id == user_id else 'LOSS'
