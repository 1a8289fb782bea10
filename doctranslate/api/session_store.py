"""
Thread-safe visitor session management
"""
import hashlib
import logging
import os
import secrets
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from doctranslate.config import SESSION_SWEEP_INTERVAL, SESSION_TIMEOUT_HOURS

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """An anonymous visitor, identified by an unguessable token"""
    session_id: str
    created_at: float
    last_seen: float
    degraded_token: bool = False

    def is_expired(self, now: float, timeout_seconds: float) -> bool:
        return now - self.last_seen >= timeout_seconds


def session_digest(session_id: str) -> str:
    """Directory-safe, non-reversible name for per-session storage"""
    return hashlib.sha256(session_id.encode('utf-8')).hexdigest()[:16]


def _fallback_token() -> str:
    seed = f"{time.time_ns()}:{socket.gethostname()}:{os.getpid()}:{id(object())}"
    return hashlib.sha256(seed.encode('utf-8')).hexdigest()


def generate_session_token():
    """
    Returns:
        (token, degraded): 64 hex characters from 32 secure random bytes; if
        the secure source is unavailable, a SHA-256 digest of time, host and
        process id with degraded=True
    """
    try:
        return secrets.token_bytes(32).hex(), False
    except (NotImplementedError, OSError) as e:
        logger.warning(f"Secure random source unavailable ({e}), session token is weaker than normal")
        return _fallback_token(), True


class SessionStore:
    """Thread-safe manager for visitor sessions"""

    def __init__(self, timeout_seconds: float = SESSION_TIMEOUT_HOURS * 3600,
                 sweep_interval: float = SESSION_SWEEP_INTERVAL,
                 clock: Callable[[], float] = time.time):
        self.timeout_seconds = timeout_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._listeners: List[Callable[[str], None]] = []

    def add_listener(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(session_id)``, called after a session is deleted or expires"""
        self._listeners.append(callback)

    def _notify_removed(self, session_ids: List[str]) -> None:
        for session_id in session_ids:
            for callback in self._listeners:
                try:
                    callback(session_id)
                except Exception as e:
                    logger.error(f"Session removal listener failed for {session_id[:8]}...: {e}", exc_info=True)

    def _create(self, now: float) -> Session:
        token, degraded = generate_session_token()
        session = Session(session_id=token, created_at=now, last_seen=now, degraded_token=degraded)
        self._sessions[token] = session
        return session

    def resolve(self, token: Optional[str]) -> Session:
        """
        Return the live session for ``token``, refreshing its last-seen time,
        or a brand-new session when the token is empty, unknown or expired.
        """
        expired = []
        with self._lock:
            now = self._clock()
            session = self._sessions.get(token) if token else None
            if session is not None and session.is_expired(now, self.timeout_seconds):
                del self._sessions[token]
                expired.append(token)
                session = None
            if session is None:
                session = self._create(now)
                logger.debug(f"New session {session.session_id[:8]}...")
            else:
                session.last_seen = now
            snapshot = Session(**session.__dict__)
        self._notify_removed(expired)
        return snapshot

    def lookup(self, token: Optional[str]) -> Optional[Session]:
        """Read-only: never creates a session nor refreshes last_seen"""
        if not token:
            return None
        with self._lock:
            session = self._sessions.get(token)
            if session is None or session.is_expired(self._clock(), self.timeout_seconds):
                return None
            return Session(**session.__dict__)

    def delete(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            removed = self._sessions.pop(token, None) is not None
        if removed:
            self._notify_removed([token])
        return removed

    def sweep(self) -> int:
        """Delete expired sessions and return how many were removed"""
        with self._lock:
            now = self._clock()
            expired = [token for token, session in self._sessions.items()
                       if session.is_expired(now, self.timeout_seconds)]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.info(f"Session sweep removed {len(expired)} expired session(s)")
            self._notify_removed(expired)
        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _sweep_loop(self):
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}")

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name='session-sweeper', daemon=True)
        self._sweeper.start()

    def stop_sweeper(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None
