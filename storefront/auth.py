import threading
import time
from collections import defaultdict, deque
from functools import wraps

from flask import current_app, flash, jsonify, redirect, session, url_for
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    create_refresh_token,
    get_jwt,
    get_jwt_identity,
    verify_jwt_in_request,
)
from werkzeug.security import check_password_hash, generate_password_hash

from storefront import db
from storefront.errors import AuthError, ConflictError, ForbiddenError, RateLimitError, ValidationError
from storefront.validation import (
    sanitize_string,
    validate_email,
    validate_object_id,
    validate_password,
    validate_phone,
)

USERS = "users"
LOGIN_ATTEMPTS = 5
LOGIN_WINDOW = 15 * 60
API_REQUESTS_PER_MINUTE = 1000

jwt = JWTManager()


class AttemptLimiter:
    """Sliding-window counter: at most `max_attempts` hits per key within `window` seconds."""

    def __init__(self, max_attempts, window, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.window = window
        self.clock = clock
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key):
        """Records an attempt; returns False once the key is over its limit."""
        now = self.clock()
        with self._lock:
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window:
                hits.popleft()
            if len(hits) >= self.max_attempts:
                return False
            hits.append(now)
            return True

    def reset(self, key=None):
        """Forgets the attempts of `key`, or of every key."""
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)


login_limiter = AttemptLimiter(LOGIN_ATTEMPTS, LOGIN_WINDOW)
api_limiter = AttemptLimiter(API_REQUESTS_PER_MINUTE, 60)


# --- JWT error responses ---
@jwt.unauthorized_loader
def _missing_token(reason):
    return jsonify({"status": 0, "message": "Access token required", "code": "NO_TOKEN"}), 401


@jwt.expired_token_loader
def _expired_token(jwt_header, jwt_payload):
    return jsonify({"status": 0, "message": "Token expired", "code": "TOKEN_EXPIRED"}), 401


@jwt.invalid_token_loader
def _invalid_token(reason):
    return jsonify({"status": 0, "message": "Invalid token", "code": "INVALID_TOKEN"}), 403


def _is_password_hash(value):
    # Werkzeug hashes look like "method:params$salt$hash".
    return isinstance(value, str) and value.count("$") >= 2 and ":" in value.split("$", 1)[0]


def public_user(user):
    return {
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user.get("name"),
        "role": user.get("role") or "user",
    }


def register_user(email, password, name=None, phone=None, role="user"):
    email = validate_email(email)
    validate_password(password, 6)

    if db.get_db()[USERS].find_one({"email": email}):
        raise ConflictError("User already exists with this email", code="USER_EXISTS")

    user = db.insert_one(
        USERS,
        {
            "email": email,
            "password": generate_password_hash(password),
            "name": sanitize_string(name, 100) if name else email.split("@")[0],
            "phone": validate_phone(phone),
            "role": role,
            "isActive": True,
        },
    )
    current_app.logger.info("Registered %s user %s", role, email)
    return user


def authenticate(email, password):
    if not email or not password:
        raise ValidationError("Email and password are required")
    email = validate_email(email)

    if not login_limiter.hit(email):
        raise RateLimitError("Too many login attempts. Please try again later.")

    user = db.get_db()[USERS].find_one({"email": email})
    if not user or not user.get("password"):
        raise AuthError("Invalid email or password")

    stored = user["password"]
    if _is_password_hash(stored):
        valid = check_password_hash(stored, password)
    else:
        # Accounts created before hashing stored the password as-is.
        valid = stored == password
        if valid:
            db.update_one(USERS, {"_id": user["_id"]}, {"$set": {"password": generate_password_hash(password)}})
            current_app.logger.info("Migrated plain-text password for %s", email)

    if not valid:
        raise AuthError("Invalid email or password")

    login_limiter.reset(email)
    return user


def issue_tokens(user):
    identity = str(user["_id"])
    claims = {"email": user["email"], "role": user.get("role") or "user"}
    return {
        "token": create_access_token(identity=identity, additional_claims=claims),
        "refreshToken": create_refresh_token(identity=identity),
    }


def refresh_access_token():
    """Issues a new access token for the identity of a valid refresh token."""
    user_id = get_jwt_identity()
    user = db.get_db()[USERS].find_one({"_id": validate_object_id(user_id)})
    if not user:
        raise AuthError("User not found", code="INVALID_TOKEN")
    return issue_tokens(user)["token"]


def admin_api_required(f):
    """Protects JSON endpoints: a valid bearer token with the admin role."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        verify_jwt_in_request()
        claims = get_jwt()
        if claims.get("role") != "admin":
            raise ForbiddenError("Admin access required")
        if not api_limiter.hit(get_jwt_identity()):
            raise RateLimitError("Too many requests")
        return f(*args, **kwargs)

    return decorated_function


def admin_required(f):
    """Decorator to protect admin panel pages that require an admin session."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get("admin_id"):
            flash("You need to be logged in as an admin to access this page.", "error")
            return redirect(url_for("admin.login"))
        return f(*args, **kwargs)

    return decorated_function


def login_admin_session(email, password):
    user = authenticate(email, password)
    if (user.get("role") or "user") != "admin":
        raise ForbiddenError("Access Denied: You do not have administrator privileges.")
    session["admin_id"] = str(user["_id"])
    session["admin_email"] = user["email"]
    return user


def logout_admin_session():
    session.pop("admin_id", None)
    session.pop("admin_email", None)


def ensure_admin(email, password):
    """Creates the admin account if it is missing. Returns True when one was created."""
    email = validate_email(email)
    if db.get_db()[USERS].find_one({"email": email}):
        return False
    register_user(email, password, name="Admin", role="admin")
    return True
