#!/usr/bin/env python3
"""
VTOP login form driver.

Works on any PageQuery: walks the landing page into the student login form,
fills the credentials, submits them and reads back who logged in.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple
from urllib.parse import urljoin

from playwright.sync_api import Error as PlaywrightError

from .behavior import human_click, human_type, pause
from .errors import ExtractionFailedError, FormNotFoundError, with_retries
from .identity import AuthenticatedIdentity, fallback_identity, parse_identity

logger = logging.getLogger(__name__)


class LoginStage(Enum):
    CAPTCHA_REQUIRED = "captcha_required"
    CREDENTIALS_REJECTED = "credentials_rejected"
    LOGIN_SUCCESS = "login_success"


@dataclass(frozen=True)
class FieldLocator:
    """Exact selectors first, then the n-th match of a positional selector, then any generic input."""
    label: str
    selectors: Sequence[str]
    positional: Tuple[str, int]
    generic: Sequence[str]

    def locate(self, page):
        handle = page.find_element(self.selectors)
        if handle is not None:
            return handle
        selector, index = self.positional
        matches = page.find_elements(selector)
        if len(matches) > index:
            logger.debug("%s field found by position", self.label)
            return matches[index]
        handle = page.find_element(self.generic)
        if handle is not None:
            logger.debug("%s field found by generic fallback", self.label)
            return handle
        raise FormNotFoundError(f"Could not find {self.label} field; the login page layout may have changed")


class BrowserSessionDriver:
    def __init__(self, settings, captcha_handler, policy):
        self.settings = settings
        self.profile = settings.profile
        self.captcha = captcha_handler
        self.policy = policy
        self.username = FieldLocator("username", self.profile.username_selectors,
                                     self.profile.username_positional, self.profile.username_generic)
        self.password = FieldLocator("password", self.profile.password_selectors,
                                     self.profile.password_positional, self.profile.password_generic)

    def _retry(self, page, fn, label):
        return with_retries(fn, attempts=self.settings.transient_retries, delay_ms=1000,
                            wait=page.wait, label=label)

    def open_login_page(self, page):
        self._retry(page, lambda: page.goto(self.settings.login_url, self.settings.nav_timeout_ms),
                    "login page")
        pause(page, self.policy.action_delay())

    def reload_login_page(self, page):
        self._retry(page, lambda: page.reload(self.settings.nav_timeout_ms), "login reload")
        pause(page, self.policy.action_delay())

    def select_student_mode(self, page):
        """Pick "Student" on the landing page. A page already showing the form is left alone."""
        if page.find_element(self.profile.username_selectors) is not None:
            return
        control = page.find_element(self.profile.student_mode_selectors)
        if control is None:
            raise FormNotFoundError("Student login option not found")
        human_click(page, control, self.policy)
        field_selectors = tuple(self.profile.username_selectors) + tuple(self.profile.username_generic)
        if not page.wait_for_any(field_selectors, self.settings.step_timeout_ms):
            raise FormNotFoundError("Student login form did not appear")
        pause(page, self.policy.action_delay())

    def fill_credentials(self, page, credential):
        human_type(page, self.username.locate(page), credential.registration_id.upper(), self.policy)
        pause(page, self.policy.field_gap())
        human_type(page, self.password.locate(page), credential.secret, self.policy)
        pause(page, self.policy.action_delay())

    def prepare_form(self, page, credential, reload=False):
        """Bring the page to a filled-in login form."""
        if reload:
            self.reload_login_page(page)
        else:
            self.open_login_page(page)
        self.select_student_mode(page)
        self.fill_credentials(page, credential)

    def is_login_page(self, page) -> bool:
        return page.find_element(self.profile.login_markers) is not None

    def submit_credentials(self, page) -> LoginStage:
        """
        Submit the filled form and classify where the portal sent us.

        A CAPTCHA already on the form must be answered first, so nothing is
        submitted in that case.
        """
        if self.captcha.detect(page) is not None:
            return LoginStage.CAPTCHA_REQUIRED
        button = page.find_element(self.profile.submit_selectors)
        if button is None:
            raise FormNotFoundError("Submit control not found")
        start_url = page.url
        human_click(page, button, self.policy)
        page.wait_for_result(start_url, self.profile.result_selectors, self.settings.nav_timeout_ms)
        return self.classify(page)

    def classify(self, page) -> LoginStage:
        if self.captcha.detect(page) is not None:
            return LoginStage.CAPTCHA_REQUIRED
        text = page.read_visible_text().lower()
        if any(phrase in text for phrase in self.profile.credential_error_keywords):
            return LoginStage.CREDENTIALS_REJECTED
        if self.is_login_page(page):
            return LoginStage.CREDENTIALS_REJECTED
        return LoginStage.LOGIN_SUCCESS

    def _navigation_targets(self, page) -> List[str]:
        targets = []
        keywords = self.profile.profile_link_keywords
        try:
            links = page.links()
        except PlaywrightError as e:
            logger.debug("Could not list links: %s", e)
            links = []
        for text, href in links:
            if not href or href.startswith(("#", "javascript:")):
                continue
            if any(k in text.lower() or k in href.lower() for k in keywords):
                targets.append(urljoin(page.url, href))
        targets.extend(self.settings.url(path) for path in self.profile.dashboard_paths)
        seen = set()
        return [t for t in targets if not (t in seen or seen.add(t))]

    def extract_identity(self, page, registration_id: str) -> AuthenticatedIdentity:
        """
        Read the student's identity from the post-login pages.

        Retries on other dashboard/profile pages, then settles for the
        provisional identity derived from the registration number.
        """
        attempts = self.settings.identity_attempts
        targets = self._navigation_targets(page)
        domain = self.profile.student_email_domain
        for attempt in range(1, attempts + 1):
            try:
                identity = parse_identity(page.read_visible_text(), registration_id, domain)
                logger.info("[%s] Identity extracted on attempt %d", registration_id, attempt)
                return identity
            except ExtractionFailedError:
                logger.info("[%s] Identity extraction attempt %d/%d found nothing",
                            registration_id, attempt, attempts)
            if attempt < attempts and targets:
                target = targets.pop(0)
                try:
                    page.goto(target, self.settings.step_timeout_ms)
                    pause(page, self.policy.action_delay())
                except PlaywrightError as e:
                    logger.debug("Could not open %s: %s", target, e)
        logger.warning("[%s] Identity unreadable, using provisional identity", registration_id)
        return fallback_identity(registration_id, domain)
