from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from battlequiz import db
from battlequiz.auth import bearer_from_header
from battlequiz.models import BattleMatch, Question, User
from battlequiz.services.battle import get_coordinator
from battlequiz.services.battle.errors import MatchNotFound, NotParticipant

battle = Blueprint('battle', __name__)


def _credential():
    return bearer_from_header(request.headers.get('Authorization'))


@battle.route('/matches/<string:match_id>', methods=['GET'])
def get_match(match_id):
    """Live snapshot of a match, falling back to the archived record once it is gone from memory."""
    coordinator = get_coordinator()
    credential = _credential()
    try:
        return jsonify(coordinator.match_snapshot(credential, match_id))
    except MatchNotFound:
        user_id = int(coordinator.authenticate(credential))
    record = BattleMatch.query.filter_by(match_id=match_id).first()
    if not record:
        raise MatchNotFound()
    if user_id not in (record.player_a_id, record.player_b_id):
        raise NotParticipant()
    return jsonify(record.to_dict(viewer_id=user_id))


@battle.route('/queue', methods=['DELETE'])
def leave_queue():
    left = get_coordinator().leave_matchmaking(_credential())
    return jsonify({'left': left})


@battle.route('/stats', methods=['GET'])
@login_required
def get_stats():
    return jsonify(get_coordinator().stats())


@battle.route('/history', methods=['GET'])
@login_required
def get_history():
    try:
        limit = max(1, min(100, int(request.args.get('limit', 20))))
    except (TypeError, ValueError):
        limit = 20
    records = (
        BattleMatch.query
        .filter(db.or_(BattleMatch.player_a_id == current_user.id, BattleMatch.player_b_id == current_user.id))
        .order_by(BattleMatch.finished_at.desc())
        .limit(limit)
        .all()
    )
    return jsonify([r.to_dict(viewer_id=current_user.id) for r in records])


_OUTCOME_COLUMNS = {'WIN': 'wins', 'LOSS': 'losses', 'DRAW': 'draws', 'NO_CONTEST': 'no_contests'}


@battle.route('/leaderboard', methods=['GET'])
@login_required
def get_leaderboard():
    """Players ranked by win rate, then total wins. ``?sort=wins`` ranks by wins first."""
    sort = request.args.get('sort', 'rank')
    try:
        limit = max(1, min(100, int(request.args.get('limit', 50))))
    except (TypeError, ValueError):
        limit = 50

    table = {}
    for record in BattleMatch.query.all():
        for player_id in (record.player_a_id, record.player_b_id):
            row = table.setdefault(player_id, {
                'user_id': player_id, 'matches': 0,
                'wins': 0, 'losses': 0, 'draws': 0, 'no_contests': 0,
            })
            row['matches'] += 1
            row[_OUTCOME_COLUMNS[record.outcome_for(player_id)]] += 1

    names = {u.id: u.username for u in User.query.filter(User.id.in_(list(table))).all()} if table else {}
    rows = list(table.values())
    for row in rows:
        row['username'] = names.get(row['user_id'])
        row['win_rate'] = round(row['wins'] * 100.0 / row['matches'], 1)

    if sort == 'wins':
        rows.sort(key=lambda r: (-r['wins'], -r['win_rate'], r['user_id']))
    else:
        rows.sort(key=lambda r: (-r['win_rate'], -r['wins'], r['user_id']))
    for rank, row in enumerate(rows, start=1):
        row['rank'] = rank
    return jsonify(rows[:limit])


@battle.route('/questions', methods=['GET'])
def list_questions():
    query = Question.query.filter_by(is_active=True)
    category = request.args.get('category')
    if category:
        query = query.filter_by(category=category)
    return jsonify([q.to_dict() for q in query.order_by(Question.id).all()])


@battle.route('/questions', methods=['POST'])
@login_required
def create_question():
    data = request.get_json(silent=True) or {}
    text = (data.get('text') or '').strip()
    options = data.get('options')
    correct = data.get('correct_option')
    if not text or not isinstance(options, list) or len(options) < 2:
        return jsonify({'error': 'Question text and at least two options are required'}), 400
    if not isinstance(correct, int) or not 0 <= correct < len(options):
        return jsonify({'error': 'correct_option must index into options'}), 400

    question = Question(
        category=data.get('category') or None,
        text=text,
        options=[str(o) for o in options],
        correct_option=correct,
    )
    db.session.add(question)
    db.session.commit()
    return jsonify(question.to_dict(include_answer=True)), 201
