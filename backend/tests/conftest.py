import os
import sys
import pytest

# Ensure the backend root (containing the `battlequiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from battlequiz import create_app, db, socketio
from battlequiz.auth import TokenVerifier
from battlequiz.models import Question, User
from battlequiz.services.battle import get_coordinator
from battlequiz.services.battle.coordinator import BattleCoordinator
from battlequiz.services.battle.sessions import QuestionItem


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    TOKEN_MAX_AGE_SEC = 3600
    BATTLE_GRACE_PERIOD_SEC = 30
    BATTLE_MATCH_TIME_LIMIT_SEC = 60
    BATTLE_READY_TIMEOUT_SEC = 30
    BATTLE_QUESTION_COUNT = 5


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.closed = []
        self.fail_for = set()

    def send(self, transport_id, event, payload):
        if transport_id in self.fail_for:
            raise ConnectionError(f'{transport_id} is gone')
        self.sent.append((transport_id, event, payload))

    def close(self, transport_id):
        self.closed.append(transport_id)

    def events(self, transport_id, name=None):
        return [p for (t, e, p) in self.sent if t == transport_id and (name is None or e == name)]

    def names(self, transport_id):
        return [e for (t, e, _) in self.sent if t == transport_id]


class StaticQuestionSource:
    def __init__(self, questions=None):
        self.questions = questions if questions is not None else make_questions(5)
        self.calls = []

    def fetch(self, category_id, count):
        self.calls.append((category_id, count))
        return self.questions[:count]


class RecordingResultStore:
    def __init__(self):
        self.saved = []

    def save(self, match):
        self.saved.append(match)


def make_questions(n, category='science'):
    # Correct choice for question i is i % 4
    return [
        QuestionItem(id=f'q{i}', text=f'Question {i}?', options=['a', 'b', 'c', 'd'],
                     correct_choice=i % 4, category_id=category)
        for i in range(1, n + 1)
    ]


VERIFIER_SECRET = 'unit-secret'


def token_for(user_id):
    return TokenVerifier(VERIFIER_SECRET).issue(user_id)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def question_source():
    return StaticQuestionSource()


@pytest.fixture()
def result_store():
    return RecordingResultStore()


@pytest.fixture()
def make_coordinator(clock, notifier, question_source, result_store):
    def _make(**overrides):
        options = dict(grace_period=30, match_time_limit=60, ready_timeout=30, question_count=5, clock=clock)
        options.update(overrides)
        return BattleCoordinator(TokenVerifier(VERIFIER_SECRET), question_source, notifier, result_store, **options)
    return _make


@pytest.fixture()
def coordinator(make_coordinator):
    return make_coordinator()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import battlequiz.models  # noqa: F401
        db.create_all()
        yield application
        get_coordinator(application).shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def seeded_questions(flask_app):
    for i in range(6):
        db.session.add(Question(category='science', text=f'Science {i}?', options=['a', 'b', 'c', 'd'],
                                correct_option=i % 4))
    for i in range(3):
        db.session.add(Question(category='gk', text=f'GK {i}?', options=['w', 'x', 'y', 'z'],
                                correct_option=0))
    db.session.commit()
    return Question.query.all()


@pytest.fixture()
def make_user(flask_app):
    def _make(username, password='password'):
        user = User(username=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        token = get_coordinator(flask_app).verifier.issue(user.id)
        return user, token
    return _make


@pytest.fixture()
def make_sio_client(flask_app):
    clients = []

    def _make(token):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth={'token': token},
        )
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
