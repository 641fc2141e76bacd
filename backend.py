"""
Backend gateway for Campus Marketplace.

Everything the application persists or authenticates goes through this
module: password auth and sign-up, row operations on the four relations
(profiles, products, categories, favorites) and the remote procedures.
Rows cross the boundary as plain dicts; every failure of the underlying
store is raised as BackendError so callers never see SQLAlchemy exceptions.
"""
import logging
from contextlib import contextmanager

from flask import current_app
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy import func, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import generate_password_hash, check_password_hash

from constants import AUTH_TOKEN_MAX_AGE, AUTH_TOKEN_SALT
from models import Profile, Product, Category, Favorite

logger = logging.getLogger(__name__)

TABLES = {
    'profiles': Profile,
    'products': Product,
    'categories': Category,
    'favorites': Favorite,
}


class BackendError(Exception):
    """Any failure reported by the backend (connectivity, constraint, bad query)."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class AuthApiError(BackendError):
    """Rejected credentials or a sign-up for an email that already exists."""


class AuthResponse:
    """Identity plus access token returned by sign-in and sign-up."""

    def __init__(self, user: dict, access_token: str):
        self.user = user
        self.access_token = access_token

    def __repr__(self):
        return f"<AuthResponse user={self.user.get('email')!r}>"


class Table:
    """Row operations on a single relation with equality filters."""

    def __init__(self, backend, name: str, model):
        self.backend = backend
        self.name = name
        self.model = model

    def _column(self, column):
        if column not in self.model.__table__.columns:
            raise BackendError(f"column {self.name}.{column} does not exist", code='undefined_column')
        return getattr(self.model, column)

    def _query(self, filters):
        query = self.backend.db.session.query(self.model)
        for column, value in filters.items():
            query = query.filter(self._column(column) == value)
        return query

    def select(self, order_by=None, desc=False, **filters) -> list:
        """Rows matching every equality filter, optionally ordered by one column."""
        with self.backend.guard():
            query = self._query(filters)
            if order_by:
                column = self._column(order_by)
                query = query.order_by(column.desc() if desc else column.asc())
            return [row.to_dict() for row in query.all()]

    def match(self, filters: dict) -> list:
        return self.select(**filters)

    def single(self, **filters):
        """The one matching row, or None."""
        with self.backend.guard():
            row = self._query(filters).first()
            return row.to_dict() if row else None

    def count(self, **filters) -> int:
        with self.backend.guard():
            return self._query(filters).count()

    def insert(self, values) -> list:
        rows = values if isinstance(values, list) else [values]
        with self.backend.guard():
            created = []
            for row_values in rows:
                for column in row_values:
                    self._column(column)
                obj = self.model(**row_values)
                self.backend.db.session.add(obj)
                created.append(obj)
            self.backend.db.session.commit()
            return [obj.to_dict() for obj in created]

    def upsert(self, values: dict, on_conflict='id') -> dict:
        """Update the row whose `on_conflict` column matches, or insert it."""
        key = values.get(on_conflict)
        if key is not None and self.count(**{on_conflict: key}):
            changes = {k: v for k, v in values.items() if k != on_conflict}
            return self.update(changes, **{on_conflict: key})[0]
        return self.insert(values)[0]

    def update(self, values: dict, **filters) -> list:
        """Apply `values` to every matching row; returns the updated rows."""
        if not filters:
            raise BackendError(f"update on {self.name} requires a filter", code='missing_filter')
        with self.backend.guard():
            for column in values:
                self._column(column)
            objs = self._query(filters).all()
            for obj in objs:
                for column, value in values.items():
                    setattr(obj, column, value)
            self.backend.db.session.commit()
            return [obj.to_dict() for obj in objs]

    def delete(self, **filters) -> int:
        """Delete every matching row; returns the number deleted."""
        if not filters:
            raise BackendError(f"delete on {self.name} requires a filter", code='missing_filter')
        with self.backend.guard():
            objs = self._query(filters).all()
            for obj in objs:
                self.backend.db.session.delete(obj)
            self.backend.db.session.commit()
            return len(objs)


class Backend:
    """Auth, tables and remote procedures over the application database."""

    def __init__(self, db, app=None):
        self.db = db
        self.procedures = {
            'increment_views': self._increment_views,
        }
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.config.setdefault('AUTH_TOKEN_MAX_AGE', AUTH_TOKEN_MAX_AGE)
        app.extensions['backend'] = self

    @contextmanager
    def guard(self):
        """Translate store failures into BackendError, rolling back the session."""
        try:
            yield
        except BackendError:
            self.db.session.rollback()
            raise
        except IntegrityError as e:
            self.db.session.rollback()
            logger.warning(f"Backend constraint violation: {e.orig}")
            raise BackendError(f"Constraint violation: {e.orig}", code='conflict') from e
        except SQLAlchemyError as e:
            self.db.session.rollback()
            logger.error(f"Backend error: {e}", exc_info=True)
            raise BackendError(str(e), code='unavailable') from e

    def table(self, name: str) -> Table:
        model = TABLES.get(name)
        if model is None:
            raise BackendError(f"relation {name} does not exist", code='undefined_table')
        return Table(self, name, model)

    def ping(self):
        with self.guard():
            self.db.session.execute(text("SELECT 1"))

    # --- AUTH ---

    def _serializer(self):
        return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=AUTH_TOKEN_SALT)

    def _find_profile(self, email):
        return Profile.query.filter(func.lower(Profile.email) == str(email or '').strip().lower()).first()

    def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        with self.guard():
            profile = self._find_profile(email)
        if not profile or not password or not check_password_hash(profile.password_hash, str(password)):
            raise AuthApiError("Invalid login credentials", code='invalid_credentials')
        return AuthResponse(profile.to_dict(), self._serializer().dumps({'sub': profile.id}))

    def sign_up(self, email: str, password: str, data=None) -> AuthResponse:
        data = data or {}
        with self.guard():
            if self._find_profile(email):
                raise AuthApiError("User already registered", code='user_already_exists')
            profile = Profile(
                email=email.strip().lower(),
                password_hash=generate_password_hash(password),
                full_name=data.get('full_name'),
                phone=data.get('phone'),
                location=data.get('location'),
            )
            self.db.session.add(profile)
            self.db.session.commit()
            logger.info(f"Backend sign-up: {profile.email}")
            return AuthResponse(profile.to_dict(), self._serializer().dumps({'sub': profile.id}))

    def get_user(self, access_token: str):
        """Profile for a valid, unexpired token; None otherwise."""
        if not access_token:
            return None
        try:
            payload = self._serializer().loads(
                access_token, max_age=current_app.config['AUTH_TOKEN_MAX_AGE'])
        except (BadSignature, SignatureExpired):
            return None
        with self.guard():
            return self.db.session.get(Profile, payload.get('sub'))

    # --- REMOTE PROCEDURES ---

    def rpc(self, name: str, **params):
        procedure = self.procedures.get(name)
        if procedure is None:
            raise BackendError(f"function {name} does not exist", code='undefined_function')
        return procedure(**params)

    def _increment_views(self, product_id):
        with self.guard():
            self.db.session.execute(
                update(Product).where(Product.id == product_id).values(views=Product.views + 1)
            )
            self.db.session.commit()


def get_backend() -> Backend:
    return current_app.extensions['backend']
