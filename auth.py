import logging
from dataclasses import dataclass
from functools import wraps

from flask import abort, redirect, request, url_for
from flask_login import (
    LoginManager,
    current_user,
    login_user,
    logout_user,
    user_logged_in,
    user_logged_out,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from errors import DataAccessError, InvalidData, NotAuthenticated, NotAuthorized
from models import User, db
from store import Result

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
MIN_PASSWORD_LENGTH = 6

login_manager = LoginManager()
login_manager.login_view = "site.login"
login_manager.login_message = NotAuthenticated.message


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@dataclass(frozen=True)
class Identity:
    """Who is making the request. Passed explicitly to anything that needs it."""

    user_id: int
    email: str
    is_admin: bool = False

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.id, email=user.email, is_admin=bool(user.is_admin))


def current_identity():
    if current_user and current_user.is_authenticated:
        return Identity.from_user(current_user)
    return None


def _clean_email(email):
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise InvalidData("Please enter a valid email address")
    return email


def sign_up(email, password):
    try:
        email = _clean_email(email)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise InvalidData(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user = User(email=email, password_hash=generate_password_hash(password))
        db.session.add(user)
        db.session.commit()
    except InvalidData as e:
        return Result.fail(e)
    except IntegrityError:
        db.session.rollback()
        return Result.fail(InvalidData("An account with that email already exists"))
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error("sign_up failed: %s", e)
        return Result.fail(DataAccessError(str(e)))

    logger.info("New account %s", email)
    login_user(user)
    return Result.ok(Identity.from_user(user))


def sign_in(email, password, remember=False):
    try:
        user = User.query.filter_by(email=(email or "").strip().lower()).first()
    except SQLAlchemyError as e:
        logger.error("sign_in failed: %s", e)
        return Result.fail(DataAccessError(str(e)))

    if user is None or not check_password_hash(user.password_hash, password or ""):
        return Result.fail(NotAuthenticated("Invalid email or password"))

    login_user(user, remember=remember)
    return Result.ok(Identity.from_user(user))


def sign_out():
    identity = current_identity()
    if identity is None:
        return Result.fail(NotAuthenticated("Not signed in"))
    logout_user()
    return Result.ok(identity)


def get_current_session():
    identity = current_identity()
    if identity is None:
        return Result.fail(NotAuthenticated())
    return Result.ok(identity)


def grant_admin(email, admin=True):
    try:
        email = _clean_email(email)
    except InvalidData as e:
        return Result.fail(e)
    user = User.query.filter_by(email=email).first()
    if user is None:
        return Result.fail(InvalidData(f"No account for {email}"))
    user.is_admin = admin
    db.session.commit()
    return Result.ok(Identity.from_user(user))


def on_auth_state_change(callback, sender=None):
    """Call ``callback(event, identity)`` on sign in and sign out.

    Returns a function that removes the subscription.
    """

    def _signed_in(app, user, **extra):
        callback(SIGNED_IN, Identity.from_user(user))

    def _signed_out(app, user, **extra):
        callback(SIGNED_OUT, None)

    kwargs = {"weak": False}
    if sender is not None:
        kwargs["sender"] = sender
    user_logged_in.connect(_signed_in, **kwargs)
    user_logged_out.connect(_signed_out, **kwargs)

    def unsubscribe():
        user_logged_in.disconnect(_signed_in)
        user_logged_out.disconnect(_signed_out)

    return unsubscribe


def admin_required(view):
    """Checks the stored role on every request, not anything the browser sends."""

    @wraps(view)
    def wrapped(*args, **kwargs):
        identity = current_identity()
        if identity is None:
            return redirect(url_for("site.login", next=request.full_path))
        if not identity.is_admin:
            logger.warning("Non-admin %s tried %s", identity.email, request.path)
            abort(403, description=NotAuthorized.message)
        return view(*args, **kwargs)

    return wrapped
