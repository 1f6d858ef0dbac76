from flask import Blueprint, request, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from battlequiz import db
from battlequiz.models import User
from battlequiz.services.battle import get_coordinator

main = Blueprint('main', __name__)


def _token_for(user):
    return get_coordinator().verifier.issue(user.id)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the battle quiz server!'})


@main.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    username = (data.get('username') or '').strip()
    password = data.get('password')
    if not username or not password:
        return jsonify({'error': 'Missing username or password'}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already exists'}), 400

    user = User(username=username)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    return jsonify({'user': user.to_dict(), 'token': _token_for(user)}), 201


@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(username=data.get('username')).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify({'user': user.to_dict(), 'token': _token_for(user)})
    return jsonify({'error': 'Invalid username or password'}), 401


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})


@main.route('/me')
@login_required
def me():
    return jsonify({'user': current_user.to_dict()})
