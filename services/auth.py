# /conquistas/services/auth.py
"""
Accounts, passwords and bearer tokens.

The admin role is a stored flag: granted at registration to emails listed in
ADMIN_EMAILS, or later with `flask promote-admin`. Tokens carry it as the
`role` claim, but the gate always re-reads the stored user.
"""

import datetime
import logging
import re
import uuid
from typing import Any, Dict, Iterable, Optional

import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from services.errors import AuthError, ConflictError, NotFoundError, ValidationError, guarded
from services.models import User

ALGORITHM = "HS256"
MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

log = logging.getLogger(__name__)


def _validate_credentials(username: Optional[str], email: str, password: Optional[str]) -> Dict[str, str]:
    errors = {}
    if username is not None and not username.strip():
        errors["username"] = "Username is required."
    if not _EMAIL_RE.match(email or ""):
        errors["email"] = "Enter a valid email address."
    if password is not None and len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = f"Password must have at least {MIN_PASSWORD_LENGTH} characters."
    return errors


class AuthService:
    def __init__(self, storage, secret: str, admin_emails: Iterable[str] = (), token_ttl_minutes: int = 60):
        self.storage = storage
        self.secret = secret
        self.admin_emails = {e.lower() for e in admin_emails}
        self.token_ttl = datetime.timedelta(minutes=token_ttl_minutes)

    # --- accounts ---
    @guarded("registering user")
    def register(self, username: str, email: str, password: str) -> User:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        errors = _validate_credentials(username, email, password or "")
        if errors:
            raise ValidationError("Missing required fields", errors)
        if self.storage.get_user_by_email(email):
            raise ConflictError("Email already registered", {"email": "This email is already registered."})
        row = {
            "id": uuid.uuid4().hex,
            "username": username,
            "email": email,
            "password_hash": generate_password_hash(password),
            "is_admin": email in self.admin_emails,
        }
        user = User.from_dict(self.storage.insert_user(row))
        log.info("Registered %s%s", email, " (admin)" if user.is_admin else "")
        return user

    @guarded("logging in")
    def login(self, email: str, password: str) -> User:
        row = self.storage.get_user_by_email((email or "").strip().lower())
        if not row or not check_password_hash(row["password_hash"], password or ""):
            raise AuthError("Invalid email or password")
        return User.from_dict(row)

    @guarded("loading user")
    def get_user(self, uid: str) -> Optional[User]:
        row = self.storage.get_user(uid)
        return User.from_dict(row) if row else None

    @guarded("updating profile")
    def update_profile(self, uid: str, username: Optional[str] = None, email: Optional[str] = None,
                       current_password: Optional[str] = None, new_password: Optional[str] = None) -> User:
        user = self.get_user(uid)
        if user is None:
            raise NotFoundError("User not found")
        if username is not None:
            user.username = username.strip()
        if email is not None:
            user.email = email.strip().lower()
        errors = _validate_credentials(user.username, user.email, new_password)
        if errors:
            raise ValidationError("Invalid profile", errors)
        if new_password is not None:
            if not check_password_hash(user.password_hash, current_password or ""):
                raise AuthError("Current password is incorrect", {"current_password": "Incorrect password."})
            user.password_hash = generate_password_hash(new_password)
        row = dict(user.to_dict(), password_hash=user.password_hash)
        return User.from_dict(self.storage.update_user(row))

    @guarded("changing admin role")
    def set_admin(self, email: str, is_admin: bool = True) -> User:
        row = self.storage.get_user_by_email((email or "").strip().lower())
        if not row:
            raise NotFoundError(f"No user with email {email}")
        row = dict(row, is_admin=is_admin)
        return User.from_dict(self.storage.update_user(row))

    # --- tokens ---
    def issue_token(self, user: User) -> str:
        payload = {
            "sub": user.id,
            "role": "admin" if user.is_admin else "user",
            "exp": datetime.datetime.now(datetime.timezone.utc) + self.token_ttl,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def user_from_token(self, token: str) -> User:
        try:
            decoded: Dict[str, Any] = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid token")
        uid = decoded.get("sub")
        user = self.get_user(uid) if uid else None
        if user is None:
            raise AuthError("Invalid token payload")
        return user
