"""
Authentication service
Password hashing, bearer tokens and the admin allow-list
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

import bcrypt

from database import Identity, ReservationStore, User
from .config import Settings, get_settings
from .exceptions import Unauthenticated, ValidationError

logger = logging.getLogger(__name__)


def admin_allow_list(emails: Iterable[str]) -> Callable[[str], bool]:
    """Build an ``is_admin(email)`` predicate from a list of addresses"""
    allowed = frozenset(email.strip().lower() for email in emails if email and email.strip())

    def is_admin(email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in allowed

    return is_admin


def is_admin_email(email: Optional[str], settings: Optional[Settings] = None) -> bool:
    """Check ``email`` against the configured ADMIN_EMAILS"""
    settings = settings or get_settings()
    return admin_allow_list(settings.admin_emails)(email)


class AuthService:
    """Identity oracle: verifies bearer tokens and manages accounts"""

    def __init__(self, store: Optional[ReservationStore] = None, settings: Optional[Settings] = None):
        self.store = store or ReservationStore()
        self.settings = settings or get_settings()

    @staticmethod
    def hash_password(password: str) -> str:
        """
        Hash a password using bcrypt

        Args:
            password: Plain text password

        Returns:
            Hashed password
        """
        salt = bcrypt.gensalt()
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Verify a password against its bcrypt hash"""
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))

    def create_user(self, email: str, password: str, full_name: Optional[str] = None) -> User:
        """
        Create a new user

        Raises:
            ValidationError: If the email is blank, the password too short, or the user exists
        """
        email = (email or '').strip()
        if not email or '@' not in email:
            raise ValidationError("A valid email address is required")
        if not password or len(password) < 8:
            raise ValidationError("Password must be at least 8 characters")
        if self.store.get_user_by_email(email):
            raise ValidationError(f"User with email {email} already exists")

        return self.store.create_user(email, self.hash_password(password), full_name)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user when the password matches, None otherwise"""
        user = self.store.get_user_by_email(email)
        if user and user.password_hash and self.verify_password(password, user.password_hash):
            return user
        return None

    def issue_token(self, user: User) -> str:
        """Create an opaque bearer token for ``user``"""
        token = secrets.token_urlsafe(32)
        expires_at = datetime.now(timezone.utc) + timedelta(hours=self.settings.session_ttl_hours)
        self.store.create_session(token, user.id, expires_at)
        return token

    def login(self, email: str, password: str) -> str:
        user = self.authenticate(email, password)
        if not user:
            raise Unauthenticated("Invalid email or password")
        return self.issue_token(user)

    def verify_token(self, token: Optional[str]) -> Identity:
        """
        Resolve a bearer token to the caller's identity

        Accepts the raw token or an ``Authorization`` header value.

        Raises:
            Unauthenticated: Missing, unknown or expired token
        """
        if token and token.startswith('Bearer '):
            token = token[len('Bearer '):]
        if not token or not token.strip():
            raise Unauthenticated()

        session = self.store.get_session(token.strip())
        if session is None:
            raise Unauthenticated()

        user, expires_at = session
        if expires_at <= datetime.now(timezone.utc):
            logger.info("Rejected expired session for user %s", user.id)
            self.store.delete_session(token.strip())
            raise Unauthenticated("Session expired")

        return Identity(user_id=user.id, email=user.email, full_name=user.full_name)

    def revoke_token(self, token: str) -> None:
        self.store.delete_session(token)

    def is_admin(self, email: Optional[str]) -> bool:
        return admin_allow_list(self.settings.admin_emails)(email)
