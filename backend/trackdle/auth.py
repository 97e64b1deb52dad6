"""Signed session tokens shared by HTTP requests and socket handshakes."""

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from trackdle import db
from trackdle.models import User
from trackdle.services.multiplayer.errors import AuthError

_TOKEN_SALT = 'trackdle-auth'


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=_TOKEN_SALT)


def issue_token(user: User) -> str:
    return _serializer().dumps({'id': user.id})


def user_from_token(token) -> User:
    """Resolve a token to its user or raise AuthError.

    Fails for a missing token, a bad or expired signature, and for a token
    whose user has since been deleted.
    """
    if not token:
        raise AuthError('Authentication required')
    max_age = int(current_app.config.get('AUTH_TOKEN_MAX_AGE_SEC', 0)) or None
    try:
        data = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise AuthError('Token expired')
    except BadSignature:
        raise AuthError('Authentication failed')
    user_id = data.get('id') if isinstance(data, dict) else None
    user = db.session.get(User, user_id) if user_id is not None else None
    if user is None:
        raise AuthError('User not found')
    return user


def load_user_from_request(req):
    """Flask-Login request loader for `Authorization: Bearer <token>`."""
    header = req.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    try:
        return user_from_token(header[len('Bearer '):].strip())
    except AuthError as exc:
        current_app.logger.info(f"[auth] rejected bearer token: {exc}")
        return None
