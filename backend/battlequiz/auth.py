from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from battlequiz.services.battle.errors import Unauthenticated

TOKEN_SALT = 'battlequiz-auth'


class TokenVerifier:
    """Signed bearer tokens carrying a user id."""

    def __init__(self, secret_key, max_age=86400):
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    def issue(self, user_id) -> str:
        return self._serializer.dumps({'uid': str(user_id)})

    def verify(self, credential) -> str:
        """Return the user id for ``credential`` or raise Unauthenticated."""
        if not credential or not isinstance(credential, str):
            raise Unauthenticated()
        token = credential
        if token.lower().startswith('bearer '):
            token = token[7:].strip()
        try:
            data = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise Unauthenticated('Credential has expired')
        except BadSignature:
            raise Unauthenticated('Credential is invalid')
        user_id = data.get('uid') if isinstance(data, dict) else None
        if not user_id:
            raise Unauthenticated('Credential is invalid')
        return user_id

    @classmethod
    def from_app(cls, app):
        return cls(app.config['SECRET_KEY'], int(app.config.get('TOKEN_MAX_AGE_SEC', 86400)))


def bearer_from_header(header_value):
    if not header_value:
        return None
    parts = header_value.split(' ', 1)
    if len(parts) == 2 and parts[0].lower() == 'bearer':
        return parts[1].strip()
    return None
