#!/usr/bin/env python3
"""
CAPTCHA challenge handling: detect, extract, hash, solve, submit, classify.

Images travel as raw bytes or data URLs and are never re-encoded; any
recompression would corrupt the OCR input.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import unquote_to_bytes

from .behavior import human_click, human_type, pause
from .errors import FormNotFoundError, InvalidCaptchaError

logger = logging.getLogger(__name__)

_PLACEHOLDER_SVG = (
    '<svg width="300" height="100" xmlns="http://www.w3.org/2000/svg">'
    '<rect width="300" height="100" fill="#f5f5f5"/>'
    '<text x="150" y="50" text-anchor="middle" font-size="14" fill="#666">'
    'CAPTCHA unavailable</text></svg>'
)


class CaptchaState(Enum):
    NO_CHALLENGE = "no_challenge"
    PRESENTED = "presented"
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED_RETRY = "rejected_retry"
    REJECTED_EXHAUSTED = "rejected_exhausted"


class SubmitVerdict(Enum):
    ACCEPTED = "accepted"
    WRONG_CAPTCHA = "wrong_captcha"
    CREDENTIALS_REJECTED = "credentials_rejected"


@dataclass(frozen=True)
class CaptchaImage:
    data: bytes
    mime_type: str = "image/png"
    placeholder: bool = False

    @classmethod
    def from_data_url(cls, url: str) -> "CaptchaImage":
        header, sep, payload = url.partition(",")
        if not sep or not header.startswith("data:"):
            raise ValueError("Not a data URL")
        mime_type = header[5:].split(";")[0] or "application/octet-stream"
        if header.endswith(";base64"):
            data = base64.b64decode(payload)
        else:
            data = unquote_to_bytes(payload)
        return cls(data, mime_type)

    @classmethod
    def make_placeholder(cls) -> "CaptchaImage":
        return cls(_PLACEHOLDER_SVG.encode("utf-8"), "image/svg+xml", placeholder=True)

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class CaptchaChallenge:
    image: CaptchaImage
    session_id: Optional[str]
    hash: str

    @classmethod
    def of(cls, image: CaptchaImage, session_id: Optional[str] = None) -> "CaptchaChallenge":
        return cls(image, session_id, image.digest)

    def bind(self, session_id: str) -> "CaptchaChallenge":
        return CaptchaChallenge(self.image, session_id, self.hash)


class CaptchaHandler:
    def __init__(self, profile, matcher, policy, step_timeout_ms=10000, nav_timeout_ms=30000):
        self.profile = profile
        self.matcher = matcher
        self.policy = policy
        self.step_timeout_ms = step_timeout_ms
        self.nav_timeout_ms = nav_timeout_ms

    def detect(self, page):
        """First element matched by the ordered CAPTCHA heuristics, or None."""
        return page.find_element(self.profile.captcha_image_selectors)

    def extract(self, page) -> Optional[CaptchaImage]:
        """
        Read the CAPTCHA image losslessly.

        Returns None when no CAPTCHA is on the page and a placeholder image when
        one is there but could not be read.
        """
        handle = self.detect(page)
        if handle is None:
            return None
        try:
            src = page.get_attribute(handle, "src") or ""
            if src.startswith("data:image"):
                return CaptchaImage.from_data_url(src)
            if page.tag_name(handle) == "canvas":
                url = page.canvas_data_url(handle)
                if url:
                    return CaptchaImage.from_data_url(url)
            return CaptchaImage(page.screenshot(handle), "image/png")
        except Exception as e:
            logger.warning("CAPTCHA extraction failed: %s", e)
            return CaptchaImage.make_placeholder()

    def solve(self, image: CaptchaImage, manual: Optional[str] = None) -> str:
        if manual is not None:
            return manual.strip()
        if image.placeholder:
            raise InvalidCaptchaError("No readable CAPTCHA image to solve")
        result = self.matcher.solve(image.data)
        logger.info("Auto-solver read %d characters (min confidence %.2f)",
                    len(result.text), result.min_confidence)
        return result.text

    def fill(self, page, solution: str):
        field = page.find_element(self.profile.captcha_input_selectors)
        if field is None:
            raise FormNotFoundError("CAPTCHA input not found")
        human_type(page, field, solution, self.policy)

    def submit(self, page, solution: str):
        self.fill(page, solution)
        button = page.find_element(self.profile.submit_selectors)
        if button is None:
            raise FormNotFoundError("Submit control not found")
        pause(page, self.policy.action_delay())
        start_url = page.url
        human_click(page, button, self.policy)
        if not page.wait_for_result(start_url, self.profile.result_selectors, self.nav_timeout_ms):
            logger.warning("Portal neither navigated nor reported an error after the CAPTCHA submit")

    def classify(self, page) -> SubmitVerdict:
        """
        Verdict on the page left by a CAPTCHA submit.

        Only a page that no longer shows the login form counts as accepted.
        """
        text = page.read_visible_text().lower()
        if self.is_captcha_error(text):
            return SubmitVerdict.WRONG_CAPTCHA
        if any(phrase in text for phrase in self.profile.credential_error_keywords):
            return SubmitVerdict.CREDENTIALS_REJECTED
        if self.detect(page) is not None:
            return SubmitVerdict.WRONG_CAPTCHA
        if page.find_element(self.profile.login_markers) is not None:
            return SubmitVerdict.CREDENTIALS_REJECTED
        return SubmitVerdict.ACCEPTED

    def is_captcha_error(self, text: str) -> bool:
        # both keywords on the same line; the form itself carries a "Captcha" label
        for line in text.lower().splitlines():
            if (any(k in line for k in self.profile.captcha_keywords)
                    and any(k in line for k in self.profile.captcha_error_keywords)):
                return True
        return False

    def refresh(self, page) -> Optional[CaptchaImage]:
        """Ask the portal itself for a new CAPTCHA and read it back."""
        control = page.find_element(self.profile.captcha_refresh_selectors)
        if control is None:
            raise FormNotFoundError("CAPTCHA refresh control not found")
        human_click(page, control, self.policy)
        pause(page, max(800, self.policy.action_delay()))
        return self.extract(page)
