"""
Login sessions between CAPTCHA round trips, plus the portal cookie jar.

A LoginSession only lives in process memory. Once the portal accepts the
login, its cookies are captured, sealed with the Vault and can later be
loaded back into a requests.Session.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import requests

from .captcha import CaptchaChallenge, CaptchaState
from .config import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

SESSION_ERROR_INDICATORS = [
    'vtopLoginForm',
    'Session Expired',
    'Please login',
    'Unauthorized',
    'Access Denied',
    '401 Unauthorized',
    '403 Forbidden',
]


@dataclass
class Credential:
    registration_id: str
    secret: str = field(repr=False)


@dataclass
class LoginSession:
    session_id: str
    registration_id: str
    lease: object
    created_at: float
    credential: Optional[Credential] = field(default=None, repr=False)
    challenge: Optional[CaptchaChallenge] = field(default=None, repr=False)
    captcha_hash: Optional[str] = None
    captcha_attempts: int = 0
    state: CaptchaState = CaptchaState.NO_CHALLENGE

    def present(self, challenge: CaptchaChallenge):
        self.challenge = challenge
        self.captcha_hash = challenge.hash
        self.state = CaptchaState.PRESENTED

    @property
    def is_orphaned(self) -> bool:
        return self.lease is not None and (self.lease.closed or self.lease.page.is_closed)


class SessionRegistry:
    """
    Sessions keyed by id, each valid for ``ttl`` seconds from creation.

    Expiry is checked on every read. With ``use_timers`` a daemon timer also
    drops each entry when it expires and hands it to ``on_expire``.
    """

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic,
                 use_timers: bool = True, on_expire: Optional[Callable[[LoginSession], None]] = None):
        self.ttl = ttl
        self.clock = clock
        self.use_timers = use_timers
        self.on_expire = on_expire
        self._sessions: Dict[str, LoginSession] = {}
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def is_expired(self, session: LoginSession) -> bool:
        return self.clock() - session.created_at >= self.ttl

    def create(self, registration_id: str, lease, credential: Optional[Credential] = None) -> LoginSession:
        session = LoginSession(
            session_id=uuid.uuid4().hex,
            registration_id=registration_id,
            lease=lease,
            created_at=self.clock(),
            credential=credential,
        )
        with self._lock:
            self._sessions[session.session_id] = session
            if self.use_timers:
                timer = threading.Timer(self.ttl, self._expire_by_timer, args=(session.session_id,))
                timer.daemon = True
                self._timers[session.session_id] = timer
                timer.start()
        logger.debug("[%s] Login session %s opened", registration_id, session.session_id)
        return session

    def get(self, session_id: str) -> Optional[LoginSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if not self.is_expired(session):
                return session
            self._pop(session_id)
        logger.info("[%s] Login session %s expired", session.registration_id, session_id)
        self._notify(session)
        return None

    def destroy(self, session_id: str) -> Optional[LoginSession]:
        with self._lock:
            return self._pop(session_id)

    def sweep(self) -> List[LoginSession]:
        """Drop expired and orphaned sessions and return them for cleanup."""
        with self._lock:
            stale = [s for s in self._sessions.values() if self.is_expired(s) or s.is_orphaned]
            for session in stale:
                self._pop(session.session_id)
        if stale:
            logger.info("Swept %d stale login session(s)", len(stale))
        return stale

    def clear(self) -> List[LoginSession]:
        with self._lock:
            sessions = list(self._sessions.values())
            for session in sessions:
                self._pop(session.session_id)
        return sessions

    def _pop(self, session_id: str) -> Optional[LoginSession]:
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
        return self._sessions.pop(session_id, None)

    def _expire_by_timer(self, session_id: str):
        with self._lock:
            self._timers.pop(session_id, None)
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("[%s] Login session %s timed out", session.registration_id, session_id)
            self._notify(session)

    def _notify(self, session: LoginSession):
        if self.on_expire is not None:
            self.on_expire(session)


def capture_cookies(page, domain: str) -> List[dict]:
    """Portal cookies from the page's browser context; everything else is dropped."""
    cookies = page.cookies()
    kept = [c for c in cookies if c.get('domain', '').lstrip('.').endswith(domain)]
    logger.info("Captured %d of %d cookies for %s", len(kept), len(cookies), domain)
    return kept


def seal_cookies(vault, cookies: List[dict]) -> bytes:
    return vault.encrypt(json.dumps(cookies, separators=(",", ":")))


def open_cookies(vault, blob: bytes) -> List[dict]:
    return json.loads(vault.decrypt(blob).decode("utf-8"))


def restore_session(cookies: List[dict], user_agent: Optional[str] = None) -> requests.Session:
    """Load captured browser cookies into a requests session."""
    session = requests.Session()
    session.headers.update({'User-Agent': user_agent or DEFAULT_USER_AGENT})
    for cookie in cookies:
        domain = cookie.get('domain', '')
        session.cookies.set(cookie['name'], cookie['value'], domain=domain, path=cookie.get('path', '/'))
    return session


def verify_session(session: requests.Session, url: str, timeout: int = 10) -> bool:
    """Check that the portal still honours the restored cookies."""
    try:
        res = session.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("Session check failed: %s", e)
        return False
    if res.status_code != 200:
        logger.info("Session check returned status %d", res.status_code)
        return False
    if any(indicator in res.text for indicator in SESSION_ERROR_INDICATORS):
        logger.info("Session expired or invalid")
        return False
    return True
