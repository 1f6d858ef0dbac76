import logging
from typing import Callable, Optional, Set, Tuple

from .sessions import Match, MatchState

ABANDON = 'abandon'
EXPIRE = 'expire'


class DisconnectSupervisor:
    """Decides when a live match must be forced into a terminal state.

    - any participant absent for at least ``grace_period`` -> abandon
    - PENDING longer than ``ready_timeout`` -> abandon, unready players forfeit
    - ACTIVE longer than ``match_time_limit`` -> expire (score what exists)

    The periodic loop runs as a Socket.IO background task; ``sweep`` is the
    coordinator callback that applies the decisions.
    """

    def __init__(self, grace_period: float = 30.0, match_time_limit: float = 60.0,
                 ready_timeout: float = 30.0, interval: float = 2.0, logger=None):
        self.grace_period = grace_period
        self.match_time_limit = match_time_limit
        self.ready_timeout = ready_timeout
        self.interval = interval
        self.logger = logger or logging.getLogger(__name__)
        self._task = None
        self._stopped = True
        # Bumped on every start and stop; a loop exits once its generation is stale
        self._generation = 0

    def evaluate(self, match: Match, now: float) -> Optional[Tuple[str, Set[str]]]:
        if match.state.terminal:
            return None
        absent = {p for p, since in match.disconnected_at.items() if now - since >= self.grace_period}
        if absent:
            return ABANDON, absent
        if match.state is MatchState.PENDING and now - match.created_at >= self.ready_timeout:
            return ABANDON, {p for p in match.players if p not in match.ready}
        if match.state is MatchState.ACTIVE and match.started_at is not None \
                and now - match.started_at >= self.match_time_limit:
            return EXPIRE, set()
        return None

    @property
    def running(self) -> bool:
        return not self._stopped

    def start(self, socketio, sweep: Callable[[], None]) -> None:
        if not self._stopped:
            return
        self._stopped = False
        self._generation += 1
        self._task = socketio.start_background_task(self._run, socketio, sweep, self._generation)
        self.logger.info(f"[supervisor-start] interval={self.interval}s grace={self.grace_period}s")

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._generation += 1
        self._task = None
        self.logger.info("[supervisor-stop]")

    def _run(self, socketio, sweep: Callable[[], None], generation: int) -> None:
        while generation == self._generation:
            socketio.sleep(self.interval)
            if generation != self._generation:
                break
            try:
                sweep()
            except Exception:
                # Keep the loop alive; the next tick retries
                self.logger.exception("[supervisor-error] sweep failed")
