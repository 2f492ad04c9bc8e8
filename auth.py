# auth.py
"""
Authentication and Authorization Module for the Property Listing backend
Handles registration, login, password hashing, bearer tokens and route guards
"""

import logging
from functools import wraps
from typing import Any, Dict, Optional

from flask import current_app, g
from flask_bcrypt import Bcrypt
from flask_login import LoginManager, UserMixin, current_user
from itsdangerous import BadData, URLSafeTimedSerializer
from pymongo.errors import DuplicateKeyError

from db_mongo import create_user, get_property, get_user_by_email
from errors import Conflict, Forbidden, InvalidCredentials, NotFound, Unauthorized, ValidationFailure

logger = logging.getLogger(__name__)

bcrypt = Bcrypt()
login_manager = LoginManager()
login_manager.session_protection = None

TOKEN_SALT = "auth-token"


# ========== USER MODEL ==========
class User(UserMixin):
    """Identity decoded from a bearer token"""
    def __init__(self, user_id):
        self.id = str(user_id)

    def get_id(self):
        return self.id


# ========== TOKENS ==========
def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user_id) -> str:
    """Sign a token embedding the user id"""
    return _serializer().dumps({"_id": str(user_id)})


def verify_token(token: str) -> Optional[str]:
    """Return the user id carried by a token, or None if it is invalid or expired"""
    max_age = current_app.config.get("TOKEN_MAX_AGE") or None
    try:
        data = _serializer().loads(token, max_age=max_age)
    except BadData:
        return None
    if not isinstance(data, dict) or not data.get("_id"):
        return None
    return str(data["_id"])


# ========== FLASK-LOGIN CONFIGURATION ==========
@login_manager.request_loader
def load_user_from_request(req):
    """Load the caller from an `Authorization: Bearer <token>` header"""
    scheme, _, token = req.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        g.auth_error = "No token provided"
        return None

    user_id = verify_token(token.strip())
    if user_id is None:
        g.auth_error = "Invalid token"
        return None
    return User(user_id)


@login_manager.unauthorized_handler
def unauthorized():
    raise Unauthorized(g.get("auth_error", "No token provided"))


# ========== AUTHENTICATION FUNCTIONS ==========
def hash_password(password):
    """Hash a password using bcrypt"""
    return bcrypt.generate_password_hash(password).decode("utf-8")


def check_password(password_hash, password):
    """Verify a password against its hash"""
    try:
        return bcrypt.check_password_hash(password_hash, password)
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def register_user(email: str, password: str) -> Dict[str, Any]:
    """
    Register a new user
    Returns the created user ({_id, email}); raises Conflict if the email is taken
    """
    if not email or not password:
        raise ValidationFailure("Email and password required")
    if "@" not in email:
        raise ValidationFailure("Invalid email format")

    try:
        user = create_user(email, hash_password(password))
    except DuplicateKeyError:
        raise Conflict("Email already registered")

    logger.info("Registered user %s", user["_id"])
    return user


def authenticate_user(email: str, password: str) -> str:
    """
    Check credentials and issue a token
    Raises InvalidCredentials for an unknown email or a wrong password
    """
    user = get_user_by_email(email) if email else None
    if not user or not password or not check_password(user.get("password", ""), password):
        raise InvalidCredentials("Invalid credentials")
    return issue_token(user["_id"])


# ========== DECORATORS ==========
def owner_required(f):
    """
    Decorator to require that the caller created the property in the `property_id` route arg.
    Use after login_required; exposes the property as g.property.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        prop = get_property(kwargs.get("property_id"))
        if not prop:
            raise NotFound("Property not found")
        if prop.get("createdBy") != current_user.id:
            raise Forbidden("Forbidden")
        g.property = prop
        return f(*args, **kwargs)
    return decorated_function
