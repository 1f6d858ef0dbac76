from flask import request, session
from flask_socketio import emit, ConnectionRefusedError
from battlequiz import socketio
from battlequiz.services.battle import get_coordinator
from battlequiz.services.battle.errors import BattleError

NAMESPACE = '/ws'


def _credential():
    # Per-connection Socket.IO session, populated on connect
    return session.get('battle_token')


def _report(exc: BattleError):
    emit('error', exc.to_dict())


def _bad_request(message):
    emit('error', {'code': 'bad_request', 'message': message})


def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = token or request.args.get('token')
    try:
        user_id = get_coordinator().connect(token, request.sid)
    except BattleError as exc:
        raise ConnectionRefusedError(exc.to_dict())
    session['battle_token'] = token
    emit('connected', {'message': f'Connected to {NAMESPACE}', 'user_id': user_id})


def handle_disconnect(reason=None):
    get_coordinator().disconnect(request.sid)


def handle_join_matchmaking(data=None):
    category_id = (data or {}).get('category_id')
    try:
        return get_coordinator().join_matchmaking(_credential(), request.sid, category_id)
    except BattleError as exc:
        _report(exc)


def handle_leave_matchmaking(data=None):
    try:
        left = get_coordinator().leave_matchmaking(_credential())
    except BattleError as exc:
        _report(exc)
        return
    return {'left': left}


def handle_create_room(data=None):
    category_id = (data or {}).get('category_id')
    try:
        return get_coordinator().create_room(_credential(), request.sid, category_id)
    except BattleError as exc:
        _report(exc)


def handle_join_room(data=None):
    room_code = (data or {}).get('room_code')
    if not room_code:
        _bad_request('room_code is required')
        return
    try:
        return get_coordinator().join_room(_credential(), request.sid, room_code)
    except BattleError as exc:
        _report(exc)


def handle_ready(data=None):
    match_id = (data or {}).get('match_id')
    if not match_id:
        _bad_request('match_id is required')
        return
    try:
        return get_coordinator().acknowledge(_credential(), match_id)
    except BattleError as exc:
        _report(exc)


def handle_submit_answer(data=None):
    data = data or {}
    match_id = data.get('match_id')
    question_id = data.get('question_id')
    if not match_id or question_id is None:
        _bad_request('match_id and question_id are required')
        return
    try:
        choice = int(data.get('choice'))
    except (TypeError, ValueError):
        _bad_request('choice must be an option index')
        return
    try:
        return get_coordinator().submit_answer(_credential(), match_id, question_id, choice)
    except BattleError as exc:
        _report(exc)


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register the battle Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('join_matchmaking', handle_join_matchmaking, namespace=namespace)
    socketio.on_event('leave_matchmaking', handle_leave_matchmaking, namespace=namespace)
    socketio.on_event('create_room', handle_create_room, namespace=namespace)
    socketio.on_event('join_room', handle_join_room, namespace=namespace)
    socketio.on_event('ready', handle_ready, namespace=namespace)
    socketio.on_event('submit_answer', handle_submit_answer, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
