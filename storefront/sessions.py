from __future__ import annotations
import logging
import secrets
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Optional

from .auth import AuthContext, AuthService
from .cart import Cart
from .notifications import Notifier
from .orders import CheckoutForm

logger = logging.getLogger(__name__)


@dataclass
class StorefrontSession:
    """Everything one visitor holds between requests. Lives in memory only."""

    notifier: Notifier = field(default_factory=Notifier)
    form: CheckoutForm = field(default_factory=CheckoutForm)
    auth: AuthContext = field(default_factory=AuthContext)
    cart: Cart = field(init=False)
    last_seen: float = 0.0

    def __post_init__(self) -> None:
        self.cart = Cart(self.notifier)


class SessionStore:
    """
    Visitor sessions keyed by cookie value, least recently used first.

    A session idle for more than `idle_seconds` is dropped, and once more than
    `max_sessions` are held the least recently used ones go.
    """

    def __init__(self, auth_service: Optional[AuthService] = None, *,
                 max_sessions: int = 10_000, idle_seconds: float = 2 * 60 * 60,
                 clock: Callable[[], float] = time.monotonic):
        self.auth_service = auth_service
        self.max_sessions = max_sessions
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._sessions: "OrderedDict[str, StorefrontSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: Optional[str]) -> tuple[str, StorefrontSession]:
        now = self.clock()
        self._expire(now)
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            session_id = secrets.token_urlsafe(24)
            session = StorefrontSession(auth=AuthContext(self.auth_service))
            self._sessions[session_id] = session
            self._evict()
        else:
            self._sessions.move_to_end(session_id)
        session.last_seen = now
        return session_id, session

    def peek(self, session_id: Optional[str]) -> Optional[StorefrontSession]:
        """Like get(), but returns None instead of starting a session."""
        if not session_id:
            return None
        self._expire(self.clock())
        if session_id not in self._sessions:
            return None
        return self.get(session_id)[1]

    def _expire(self, now: float) -> None:
        while self._sessions:
            oldest_id, oldest = next(iter(self._sessions.items()))
            if now - oldest.last_seen <= self.idle_seconds:
                break
            del self._sessions[oldest_id]

    def _evict(self) -> None:
        while len(self._sessions) > self.max_sessions:
            session_id, _ = self._sessions.popitem(last=False)
            logger.debug("evicted session %s...", session_id[:6])

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def clear(self) -> None:
        self._sessions.clear()
