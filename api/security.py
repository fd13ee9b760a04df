import os
import hmac
import logging
import hashlib
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from fastapi import Cookie, Depends, HTTPException

from api.session_cache import SessionCache

logger = logging.getLogger(__name__)

SESSION_COOKIE = "token"
SESSION_TTL = timedelta(hours=int(os.getenv("SESSION_TTL_HOURS", "168")))  # 7 days

PBKDF2_ITERATIONS = 200_000


# --- Passwords

def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${dk.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algo, iterations, salt, expected = stored.split("$")
        rounds = int(iterations)
    except (AttributeError, ValueError):
        return False
    if algo != "pbkdf2_sha256":
        return False
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), rounds)
    return hmac.compare_digest(dk.hex(), expected)


# --- Login sessions

class LoginSession:
    def __init__(self, token: str, user_id: str, expires_at: datetime):
        self.token = token
        self.user_id = user_id
        self.expires_at = expires_at
        self.history_cache: SessionCache = SessionCache()

    @property
    def expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at


class SessionRegistry:
    """Server-side login sessions keyed by the opaque cookie token."""

    def __init__(self, ttl: timedelta = SESSION_TTL):
        self.ttl = ttl
        self._sessions: Dict[str, LoginSession] = {}
        self._lock = threading.Lock()

    def open(self, user_id: str) -> LoginSession:
        token = secrets.token_urlsafe(32)
        session = LoginSession(token, user_id, datetime.now(timezone.utc) + self.ttl)
        with self._lock:
            self._sweep()
            self._sessions[token] = session
        logger.info("Opened session for user %s", user_id)
        return session

    def _sweep(self) -> None:
        # caller holds the lock
        for token in [t for t, s in self._sessions.items() if s.expired]:
            self._sessions.pop(token).history_cache.invalidate()

    def get(self, token: str) -> Optional[LoginSession]:
        with self._lock:
            session = self._sessions.get(token)
            if session is not None and session.expired:
                del self._sessions[token]
                session.history_cache.invalidate()
                session = None
        return session

    def close(self, token: str) -> bool:
        with self._lock:
            session = self._sessions.pop(token, None)
        if session is None:
            return False
        session.history_cache.invalidate()
        logger.info("Closed session for user %s", session.user_id)
        return True

    def __len__(self) -> int:
        return len(self._sessions)


sessions = SessionRegistry()


def get_sessions() -> SessionRegistry:
    return sessions


def current_session(
    token: Optional[str] = Cookie(None),
    registry: SessionRegistry = Depends(get_sessions),
) -> LoginSession:
    """Raise 401 unless the session cookie maps to a live login session."""
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")
    session = registry.get(token)
    if session is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return session
