"""
Admin session management.

The admin gate is a fixed username/password pair from configuration. Passing
it also signs in (or lazily provisions) a backing admin account so admin
endpoints have a usable backend identity. The resulting AdminSession is kept
in client-side storage (the signed Flask session) under ADMIN_SESSION_KEY.
"""
import hmac
import logging
from functools import wraps

from flask import session, jsonify, g
from flask_login import current_user

from backend import BackendError, AuthApiError, get_backend
from constants import ADMIN_EMAIL, ADMIN_DISPLAY_NAME, ADMIN_SESSION_KEY

logger = logging.getLogger(__name__)


class InvalidCredentials(Exception):
    """Username/password did not match the configured admin pair."""


class AdminBootstrapFailed(Exception):
    """Credentials matched but the backing admin identity could not be signed in."""

    GENERIC_MESSAGE = "Admin sign-in failed. Please try again later."

    def __init__(self, message=None):
        super().__init__(message or self.GENERIC_MESSAGE)
        self.message = message or self.GENERIC_MESSAGE


class AdminSession:
    """Admin gate plus the backend identity and token it was granted."""

    def __init__(self, user_id=None, email=None, access_token=None, active=True):
        self.user_id = user_id
        self.email = email
        self.access_token = access_token
        self.active = active

    def __bool__(self):
        return bool(self.active)

    def __repr__(self):
        return f"<AdminSession user_id={self.user_id!r} active={self.active!r}>"

    @classmethod
    def from_auth(cls, auth):
        return cls(user_id=auth.user['id'], email=auth.user['email'], access_token=auth.access_token)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            return None
        return cls(
            user_id=data.get('user_id'),
            email=data.get('email'),
            access_token=data.get('access_token'),
            active=data.get('active') is True,
        )

    def to_dict(self):
        return {
            'active': bool(self.active),
            'user_id': self.user_id,
            'email': self.email,
            'access_token': self.access_token,
        }


def _as_bytes(value):
    return ('' if value is None else str(value)).encode('utf-8')


def _credentials_match(username, password, admin_username, admin_password):
    # Unconfigured credentials disable the gate entirely
    if not admin_username or not admin_password:
        return False
    username_ok = hmac.compare_digest(_as_bytes(username), _as_bytes(admin_username))
    password_ok = hmac.compare_digest(_as_bytes(password), _as_bytes(admin_password))
    return username_ok and password_ok


def _provision_admin_identity(backend, password):
    """Create the admin account and profile marker, then sign in once more."""
    created = backend.sign_up(ADMIN_EMAIL, password, {'full_name': ADMIN_DISPLAY_NAME})
    backend.table('profiles').upsert({
        'id': created.user['id'],
        'full_name': ADMIN_DISPLAY_NAME,
        'is_admin': True,
    })
    logger.info(f"Provisioned admin identity {ADMIN_EMAIL}")
    return backend.sign_in_with_password(ADMIN_EMAIL, password)


def admin_sign_in(backend, store, username, password, admin_username, admin_password):
    """
    Check the fixed admin pair, then sign in the backing admin identity.

    The session flag is set as soon as the pair matches and is cleared again
    if any backend step fails. Raises InvalidCredentials on a mismatch (no
    backend call is made) and AdminBootstrapFailed on backend failure.
    """
    if not _credentials_match(username, password, admin_username, admin_password):
        logger.warning("Admin sign-in rejected: invalid credentials")
        raise InvalidCredentials("Invalid admin credentials")

    store[ADMIN_SESSION_KEY] = AdminSession().to_dict()

    try:
        try:
            auth = backend.sign_in_with_password(ADMIN_EMAIL, password)
        except AuthApiError as e:
            logger.info(f"Admin identity sign-in failed ({e.message}); provisioning")
            auth = _provision_admin_identity(backend, password)
    except BackendError as e:
        clear_admin_session(store)
        logger.error(f"Admin bootstrap failed: {e.message}")
        raise AdminBootstrapFailed(e.message) from e

    admin = AdminSession.from_auth(auth)
    store[ADMIN_SESSION_KEY] = admin.to_dict()
    logger.info(f"Admin signed in as {admin.email}")
    return admin


def is_admin_session(store) -> bool:
    admin = AdminSession.from_dict(store.get(ADMIN_SESSION_KEY))
    return bool(admin)


def current_admin_session(store):
    """The stored AdminSession, or None when the flag is not set."""
    admin = AdminSession.from_dict(store.get(ADMIN_SESSION_KEY))
    return admin if admin else None


def clear_admin_session(store):
    store.pop(ADMIN_SESSION_KEY, None)


def check_is_admin(backend, user_id) -> bool:
    """Profile's is_admin marker; False when missing or the lookup fails."""
    try:
        profile = backend.table('profiles').single(id=user_id)
    except BackendError as e:
        logger.warning(f"is_admin lookup failed for {user_id}: {e.message}")
        return False
    return bool(profile) and profile.get('is_admin') is True


def admin_required(f):
    """Only let requests through that carry a live AdminSession for the logged-in user."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        admin = current_admin_session(session)
        if not admin or not current_user.is_authenticated or current_user.id != admin.user_id:
            return jsonify({'success': False, 'message': "Access denied. Please log in as admin."}), 403
        identity = get_backend().get_user(admin.access_token)
        if identity is None or identity.id != admin.user_id:
            clear_admin_session(session)
            return jsonify({'success': False, 'message': "Admin session expired. Please log in again."}), 403
        g.admin_session = admin
        return f(*args, **kwargs)
    return wrapper
