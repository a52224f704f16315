#!/usr/bin/env python3
"""
Login state machine.

begin_login -> (captcha_required -> submit_captcha/refresh_captcha)* -> success

Every call returns an AuthOutcome; portal failures never escape as
exceptions. The browser context of a login stays open between CAPTCHA round
trips and is released as soon as the login ends either way.
"""

import logging
import secrets
import time

from playwright.sync_api import Error as PlaywrightError

from .behavior import policy_for
from .browser import BrowserPool
from .captcha import CaptchaChallenge, CaptchaHandler, CaptchaImage, CaptchaState, SubmitVerdict
from .config import Settings
from .driver import BrowserSessionDriver, LoginStage
from .errors import (InputValidationError, InvalidCaptchaError, InvalidCredentialsError, PortalAuthError,
                     PortalUnavailableError, RateLimitedError, SessionExpiredError)
from .identity import normalize_registration_id
from .ocr import get_matcher
from .outcomes import AuthOutcome
from .rate_limiter import FixedWindowRateLimiter
from .session_store import (Credential, SessionRegistry, capture_cookies, open_cookies,
                            restore_session, seal_cookies, verify_session)
from .vault import Vault

logger = logging.getLogger(__name__)


class PortalAuthenticator:
    def __init__(self, settings=None, pool=None, vault=None, rate_limiter=None, registry=None,
                 matcher=None, policy=None, persist_session=None, clock=time.monotonic):
        self.settings = settings or Settings.from_env()
        self.pool = pool or BrowserPool(self.settings)
        self.vault = vault or Vault.from_settings(self.settings)
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            self.settings.rate_limit, self.settings.rate_window_ms, clock=clock)
        self.registry = registry or SessionRegistry(
            self.settings.session_ttl, clock=clock, use_timers=self.settings.use_ttl_timers)
        self.registry.on_expire = self._release_session
        self.persist_session = persist_session
        policy = policy or policy_for(self.settings)
        matcher = matcher or get_matcher(self.settings)
        self.captcha = CaptchaHandler(self.settings.profile, matcher, policy,
                                      self.settings.step_timeout_ms, self.settings.nav_timeout_ms)
        self.driver = BrowserSessionDriver(self.settings, self.captcha, policy)

    def begin_login(self, registration_id, secret) -> AuthOutcome:
        try:
            regno = normalize_registration_id(registration_id)
        except InputValidationError as e:
            return AuthOutcome.from_error(e)
        if not secret:
            return AuthOutcome.from_error(InputValidationError("Password is required"))
        if not self.rate_limiter.check(regno, self.settings.rate_limit, self.settings.rate_window_ms):
            logger.info("[%s] Rate limited", regno)
            return AuthOutcome.from_error(
                RateLimitedError("Too many attempts. Please try again in a minute."))

        logger.info("[%s] Starting authentication", regno)
        credential = Credential(regno, secret)
        lease = None
        keep_lease = False
        try:
            lease = self.pool.acquire()
            page = lease.page
            self.driver.prepare_form(page, credential)
            stage = self.driver.submit_credentials(page)
            if stage is LoginStage.CAPTCHA_REQUIRED:
                session = self.registry.create(regno, lease, credential)
                keep_lease = True
                challenge = self._present(session, self.captcha.extract(page))
                logger.info("[%s] CAPTCHA required (session %s)", regno, session.session_id)
                return AuthOutcome.captcha_required(challenge)
            if stage is LoginStage.CREDENTIALS_REJECTED:
                logger.info("[%s] Credentials rejected", regno)
                return AuthOutcome.from_error(InvalidCredentialsError("Invalid credentials"))
            return self._complete(page, regno)
        except PortalAuthError as e:
            logger.warning("[%s] Login failed: %s", regno, e)
            return AuthOutcome.from_error(e)
        except PlaywrightError as e:
            logger.warning("[%s] Browser error: %s", regno, e)
            return AuthOutcome.from_error(PortalUnavailableError(str(e)))
        finally:
            if not keep_lease:
                self.pool.release(lease)

    def submit_captcha(self, session_id, solution_text=None) -> AuthOutcome:
        """Answer the pending CAPTCHA; ``None`` lets the template matcher read it."""
        session = self._live_session(session_id)
        if session is None:
            return AuthOutcome.session_expired(session_id)
        regno = session.registration_id
        page = session.lease.page
        try:
            solution = self.captcha.solve(session.challenge.image, solution_text)
            self.captcha.submit(page, solution)
            session.state = CaptchaState.SUBMITTED
            verdict = self.captcha.classify(page)
        except InvalidCaptchaError as e:
            # unreadable image: the session stays so the caller can refresh or answer by hand
            return AuthOutcome.from_error(e, session_id=session_id)
        except PortalAuthError as e:
            self._discard(session)
            return AuthOutcome.from_error(e)
        except PlaywrightError as e:
            self._discard(session)
            return AuthOutcome.from_error(PortalUnavailableError(str(e)))

        if verdict is SubmitVerdict.CREDENTIALS_REJECTED:
            logger.info("[%s] Credentials rejected after CAPTCHA", regno)
            self._discard(session)
            return AuthOutcome.from_error(InvalidCredentialsError("Invalid credentials"))

        if verdict is SubmitVerdict.ACCEPTED:
            session.state = CaptchaState.ACCEPTED
            self.registry.destroy(session_id)
            try:
                return self._complete(page, regno)
            except PortalAuthError as e:
                return AuthOutcome.from_error(e)
            except PlaywrightError as e:
                return AuthOutcome.from_error(PortalUnavailableError(str(e)))
            finally:
                self.pool.release(session.lease)

        session.captcha_attempts += 1
        logger.info("[%s] Wrong CAPTCHA (attempt %d/%d)", regno, session.captcha_attempts,
                    self.settings.max_captcha_attempts)
        if session.captcha_attempts >= self.settings.max_captcha_attempts:
            return self._force_new_challenge(session)
        try:
            challenge = self._present(session, self.captcha.extract(page))
        except PlaywrightError as e:
            self._discard(session)
            return AuthOutcome.from_error(PortalUnavailableError(str(e)))
        session.state = CaptchaState.REJECTED_RETRY
        return AuthOutcome.retry(challenge)

    def refresh_captcha(self, session_id) -> AuthOutcome:
        session = self._live_session(session_id)
        if session is None:
            return AuthOutcome.session_expired(session_id)
        try:
            image = self.captcha.refresh(session.lease.page)
        except PortalAuthError as e:
            self._discard(session)
            return AuthOutcome.from_error(e)
        except PlaywrightError as e:
            self._discard(session)
            return AuthOutcome.from_error(PortalUnavailableError(str(e)))
        image = image or CaptchaImage.make_placeholder()
        if image.digest == session.captcha_hash:
            logger.warning("[%s] CAPTCHA refresh returned the same image", session.registration_id)
            return AuthOutcome.rejected("CaptchaUnchanged", "The portal did not issue a new CAPTCHA",
                                        session_id=session_id)
        challenge = self._present(session, image)
        session.captcha_attempts = 0
        return AuthOutcome.new_challenge(challenge)

    def restore(self, sealed: bytes, verify: bool = True):
        """
        Rebuild an HTTP session from sealed cookies saved after a login.

        With ``verify`` the portal must still honour the cookies, otherwise
        SessionExpiredError is raised.
        """
        session = restore_session(open_cookies(self.vault, sealed), self.settings.user_agent)
        if verify and not verify_session(session, self.settings.url(self.settings.profile.verify_path)):
            raise SessionExpiredError("The portal no longer accepts the saved session")
        return session

    def sweep(self) -> int:
        stale = self.registry.sweep()
        for session in stale:
            self._release_session(session)
        return len(stale)

    def close(self):
        for session in self.registry.clear():
            self._release_session(session)
        self.pool.close()

    def _live_session(self, session_id):
        session = self.registry.get(session_id)
        if session is not None and session.is_orphaned:
            self._discard(session)
            return None
        return session

    def _present(self, session, image) -> CaptchaChallenge:
        challenge = CaptchaChallenge.of(image or CaptchaImage.make_placeholder(), session.session_id)
        session.present(challenge)
        return challenge

    def _force_new_challenge(self, session) -> AuthOutcome:
        """
        Reload the login page, fill it in again and hand back its fresh CAPTCHA.

        A reload that keeps the old image gets one explicit refresh; if the
        portal still serves the same CAPTCHA the login is abandoned.
        """
        regno = session.registration_id
        old_hash = session.captcha_hash
        page = session.lease.page
        try:
            self.driver.prepare_form(page, session.credential, reload=True)
            image = self.captcha.extract(page)
            if image is not None and image.digest == old_hash:
                logger.info("[%s] Reloaded login form kept the old CAPTCHA, refreshing it", regno)
                image = self.captcha.refresh(page)
        except (PortalAuthError, PlaywrightError) as e:
            logger.warning("[%s] Could not reload the login form: %s", regno, e)
            image = None
        if image is None or image.placeholder:
            self._discard(session)
            return AuthOutcome.exhausted(session_id=session.session_id)
        if image.digest == old_hash:
            logger.warning("[%s] Portal keeps serving the same CAPTCHA", regno)
            self._discard(session)
            return AuthOutcome.rejected("CaptchaUnchanged", "The portal did not issue a new CAPTCHA")
        challenge = self._present(session, image)
        session.captcha_attempts = 0
        session.state = CaptchaState.REJECTED_EXHAUSTED
        return AuthOutcome.exhausted(challenge)

    def _complete(self, page, regno) -> AuthOutcome:
        identity = self.driver.extract_identity(page, regno)
        identity.session_token = secrets.token_hex(32)
        sealed = seal_cookies(self.vault, capture_cookies(page, self.settings.profile.cookie_domain))
        if self.persist_session is not None:
            self.persist_session(regno, identity, sealed)
        logger.info("[%s] Login succeeded (%s identity)", regno, identity.source.value)
        return AuthOutcome.success(identity)

    def _discard(self, session):
        self.registry.destroy(session.session_id)
        self._release_session(session)

    def _release_session(self, session):
        self.pool.release(session.lease)
