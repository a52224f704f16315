"""
Error taxonomy for the VTOP login core.

Every exception carries a short ``code`` string; the orchestrator turns these
into the ``reason`` of a discriminated outcome so callers never have to parse
messages.
"""

import logging
from typing import Callable, Optional, TypeVar

from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PortalAuthError(Exception):
    code = "AuthError"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        if code:
            self.code = code


class InputValidationError(PortalAuthError):
    code = "InvalidInput"


class RateLimitedError(PortalAuthError):
    code = "RateLimited"


class FormNotFoundError(PortalAuthError):
    """All selector strategies for a form element were exhausted (markup drift)."""
    code = "FormNotFound"


class InvalidCredentialsError(PortalAuthError):
    code = "InvalidCredentials"


class InvalidCaptchaError(PortalAuthError):
    code = "InvalidCaptcha"


class SessionExpiredError(PortalAuthError):
    code = "SessionExpired"


class ExtractionFailedError(PortalAuthError):
    code = "ExtractionFailed"


class PortalUnavailableError(PortalAuthError):
    """Navigation or rendering kept timing out after local retries."""
    code = "PortalUnavailable"


class VaultError(PortalAuthError):
    code = "VaultError"


def with_retries(fn: Callable[[], T], attempts: int = 3, delay_ms: int = 1000,
                 wait: Optional[Callable[[int], None]] = None, label: str = "step") -> T:
    """
    Run ``fn`` and retry it on Playwright timeouts only.

    Anything else propagates immediately; after the last timeout the failure
    surfaces as PortalUnavailableError.
    """
    last_exc = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except PlaywrightTimeoutError as e:
            last_exc = e
            logger.warning("%s timed out (attempt %d/%d)", label, attempt, attempts)
            if attempt < attempts and wait is not None:
                wait(delay_ms)
    raise PortalUnavailableError(f"{label} timed out after {attempts} attempts: {last_exc}")
