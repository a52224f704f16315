"""Headless VTOP student login with CAPTCHA handling and sealed session cookies."""

from .errors import PortalAuthError
from .identity import AuthenticatedIdentity, IdentitySource
from .orchestrator import PortalAuthenticator
from .outcomes import AuthOutcome, AuthStatus

__all__ = [
    "AuthOutcome",
    "AuthStatus",
    "AuthenticatedIdentity",
    "IdentitySource",
    "PortalAuthError",
    "PortalAuthenticator",
]
