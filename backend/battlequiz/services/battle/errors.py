class BattleError(Exception):
    """Base class for caller-facing battle errors.

    ``code`` is the stable identifier sent to clients, ``status`` the HTTP
    status used when the error surfaces through a REST route.
    """
    code = 'battle_error'
    status = 400
    default_message = 'Battle request failed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {'code': self.code, 'message': self.message}


class Unauthenticated(BattleError):
    code = 'unauthenticated'
    status = 401
    default_message = 'A valid credential is required'


class AlreadyQueued(BattleError):
    code = 'already_queued'
    status = 409
    default_message = 'You are already waiting for or playing a match'


class NotActive(BattleError):
    code = 'not_active'
    status = 409
    default_message = 'Match is not accepting answers'


class NotParticipant(BattleError):
    code = 'not_participant'
    status = 403
    default_message = 'You are not a player in this match'


class DuplicateSubmission(BattleError):
    code = 'duplicate_submission'
    status = 409
    default_message = 'You have already answered this question'


class MatchNotFound(BattleError):
    code = 'match_not_found'
    status = 404
    default_message = 'Match not found'


class UnknownQuestion(BattleError):
    code = 'unknown_question'
    status = 400
    default_message = 'Question is not part of this match'


class QuestionsUnavailable(BattleError):
    code = 'questions_unavailable'
    status = 503
    default_message = 'No questions available for this category'


class RoomNotFound(BattleError):
    code = 'room_not_found'
    status = 404
    default_message = 'No open room with that code'


class PeerUnavailable(BattleError):
    """Raised by a notifier when the target transport is no longer connected."""
    code = 'peer_unavailable'
    status = 503
    default_message = 'Peer is not connected'
