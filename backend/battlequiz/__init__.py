from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

SAMPLE_QUESTIONS = [
    ('science', 'What is the chemical symbol for water?', ['H2O', 'CO2', 'O2', 'NaCl'], 0),
    ('science', 'Which planet is known as the Red Planet?', ['Venus', 'Mars', 'Jupiter', 'Mercury'], 1),
    ('science', 'What gas do plants absorb from the air?', ['Oxygen', 'Nitrogen', 'Carbon dioxide', 'Helium'], 2),
    ('science', 'What is the hardest natural substance?', ['Gold', 'Iron', 'Quartz', 'Diamond'], 3),
    ('science', 'How many bones are in the adult human body?', ['206', '201', '212', '198'], 0),
    ('gk', 'Which is the largest ocean on Earth?', ['Atlantic', 'Indian', 'Pacific', 'Arctic'], 2),
    ('gk', 'How many continents are there?', ['5', '6', '7', '8'], 2),
    ('gk', 'Which country has the most people?', ['India', 'USA', 'Brazil', 'Russia'], 0),
    ('gk', 'What is the capital of Japan?', ['Osaka', 'Kyoto', 'Tokyo', 'Nagoya'], 2),
    ('gk', 'How many days are in a leap year?', ['365', '366', '364', '367'], 1),
]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from battlequiz.services.battle import init_battle, get_coordinator, BattleError
    init_battle(flask_app, socketio)

    from battlequiz.main import main
    flask_app.register_blueprint(main)

    from battlequiz.api.battle import battle
    flask_app.register_blueprint(battle, url_prefix='/api/battle')

    @flask_app.errorhandler(BattleError)
    def handle_battle_error(exc):
        return jsonify({'error': exc.message, 'code': exc.code}), exc.status

    from battlequiz.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    # Flask-Login: sessions and bearer tokens both resolve to a User
    from battlequiz.models import User, Question
    from battlequiz.auth import bearer_from_header

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(request):
        token = bearer_from_header(request.headers.get('Authorization'))
        if not token:
            return None
        try:
            user_id = get_coordinator().authenticate(token)
        except BattleError:
            return None
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required', 'code': 'unauthenticated'}), 401

    @click.command('seed-questions')
    @click.option('--reset', is_flag=True, help='Delete existing questions first.')
    def seed_questions_command(reset):
        """Loads a small sample question bank for local battles."""
        with flask_app.app_context():
            db.create_all()
            if reset:
                Question.query.delete()
            for category, text, options, correct in SAMPLE_QUESTIONS:
                db.session.add(Question(category=category, text=text, options=options, correct_option=correct))
            db.session.commit()
            print(f'Seeded {len(SAMPLE_QUESTIONS)} questions!')

    flask_app.cli.add_command(seed_questions_command)

    return flask_app
