"""Battle quiz domain services: matchmaking, live sessions, supervision.

The coordinator is the only owner of in-memory battle state. HTTP routes and
socket handlers reach it through ``get_coordinator()`` and never touch the
registry, queue or session store directly.
"""
from flask import current_app

from .coordinator import BattleCoordinator
from .errors import BattleError

EXTENSION_KEY = 'battle'


def init_battle(app, socketio, namespace='/ws'):
    """Create the app's coordinator and start its supervisor loop (outside tests)."""
    from battlequiz.auth import TokenVerifier
    from .notifier import SocketIONotifier
    from .stores import SqlQuestionSource, SqlResultStore

    coordinator = BattleCoordinator.from_config(
        app.config,
        verifier=TokenVerifier.from_app(app),
        question_source=SqlQuestionSource(app),
        notifier=SocketIONotifier(socketio, namespace=namespace),
        result_store=SqlResultStore(app),
        logger=app.logger,
    )
    app.extensions[EXTENSION_KEY] = coordinator
    if not app.config.get('TESTING') or app.config.get('ENABLE_SUPERVISOR_IN_TESTS'):
        coordinator.start(socketio)
    return coordinator


def get_coordinator(app=None) -> BattleCoordinator:
    app = app or current_app
    return app.extensions[EXTENSION_KEY]


__all__ = ['BattleCoordinator', 'BattleError', 'init_battle', 'get_coordinator']
