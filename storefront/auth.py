"""
Sign-up, sign-in and the session a visitor is in.

A session is either LoggedOut or LoggedIn(user_id, email, is_admin). The
signed token is the source of truth; AuthContext only caches the decoded
session for the visitor it belongs to.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

import bcrypt
import jwt

from .errors import AuthError
from .gateway import Gateway
from .schemas import USERS, Credentials, validate_fields

logger = logging.getLogger(__name__)

JWT_ALGO = "HS256"


@dataclass(frozen=True)
class LoggedOut:
    pass


@dataclass(frozen=True)
class LoggedIn:
    user_id: str
    email: str
    is_admin: bool = False


Session = Union[LoggedOut, LoggedIn]
LOGGED_OUT = LoggedOut()

AuthListener = Callable[[Session], None]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False


def create_token(session: LoggedIn, secret: str, expires_min: int) -> str:
    payload = {
        "sub": session.user_id,
        "email": session.email,
        "is_admin": session.is_admin,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_min),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGO)


def decode_token(token: str, secret: str) -> LoggedIn:
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Session expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthError("Invalid token") from e
    return LoggedIn(payload["sub"], payload.get("email", ""), bool(payload.get("is_admin")))


class AuthService:
    def __init__(self, gateway: Gateway, secret: str, expires_min: int = 60 * 24):
        self.gateway = gateway
        self.secret = secret
        self.expires_min = expires_min
        self._listeners: List[AuthListener] = []

    def on_auth_change(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _emit(self, session: Session) -> None:
        for listener in list(self._listeners):
            listener(session)

    async def sign_up(self, email: str, password: str, is_admin: bool = False) -> LoggedIn:
        creds = validate_fields(Credentials, {"email": email, "password": password})
        address = creds.email.lower()
        existing = await self.gateway.select(USERS, {"email": address}, limit=1)
        if existing.rows:
            raise AuthError("Email already registered")
        rows = await self.gateway.insert(USERS, {
            "email": address,
            "password_hash": hash_password(creds.password),
            "is_admin": is_admin,
        })
        logger.info("registered %s", address)
        return LoggedIn(rows[0]["id"], address, is_admin)

    async def sign_in(self, email: str, password: str) -> Tuple[str, LoggedIn]:
        result = await self.gateway.select(USERS, {"email": (email or "").strip().lower()}, limit=1)
        user = result.rows[0] if result.rows else None
        if not user or not verify_password(password or "", user.get("password_hash", "")):
            raise AuthError("Invalid login credentials")
        session = LoggedIn(user["id"], user["email"], bool(user.get("is_admin")))
        token = create_token(session, self.secret, self.expires_min)
        self._emit(session)
        return token, session

    def get_current_user(self, token: Optional[str]) -> Session:
        if not token:
            return LOGGED_OUT
        return decode_token(token, self.secret)

    def sign_out(self) -> Session:
        self._emit(LOGGED_OUT)
        return LOGGED_OUT


class AuthContext:
    """Per-visitor view of the auth state."""

    def __init__(self, service: Optional[AuthService] = None):
        self.service = service
        self.session: Session = LOGGED_OUT
        self.token: Optional[str] = None

    @property
    def is_logged_in(self) -> bool:
        return isinstance(self.session, LoggedIn)

    @property
    def is_admin_logged_in(self) -> bool:
        return isinstance(self.session, LoggedIn) and self.session.is_admin

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if isinstance(self.session, LoggedIn) else None

    async def login(self, email: str, password: str) -> LoggedIn:
        if self.service is None:
            raise AuthError("No auth service configured")
        self.token, self.session = await self.service.sign_in(email, password)
        return self.session

    def adopt(self, token: Optional[str]) -> Session:
        """Refresh the cached session from a token; a bad token logs the visitor out."""
        if self.service is None or not token:
            return self.session
        try:
            self.session = self.service.get_current_user(token)
            self.token = token
        except AuthError:
            self.logout()
        return self.session

    def logout(self) -> None:
        self.session = LOGGED_OUT
        self.token = None
        if self.service is not None:
            self.service.sign_out()
