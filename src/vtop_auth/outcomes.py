"""Discriminated results returned by the authenticator."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .captcha import CaptchaChallenge
from .identity import AuthenticatedIdentity


class AuthStatus(Enum):
    SUCCESS = "success"
    CAPTCHA_REQUIRED = "captcha_required"
    REJECTED = "rejected"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    SESSION_EXPIRED = "session_expired"
    CHALLENGE = "challenge"


@dataclass(frozen=True)
class AuthOutcome:
    status: AuthStatus
    identity: Optional[AuthenticatedIdentity] = None
    session_id: Optional[str] = None
    challenge: Optional[CaptchaChallenge] = None
    reason: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, identity):
        return cls(AuthStatus.SUCCESS, identity=identity)

    @classmethod
    def captcha_required(cls, challenge):
        return cls(AuthStatus.CAPTCHA_REQUIRED, session_id=challenge.session_id, challenge=challenge)

    @classmethod
    def rejected(cls, reason, message=None, session_id=None):
        return cls(AuthStatus.REJECTED, session_id=session_id, reason=reason, message=message)

    @classmethod
    def from_error(cls, error, session_id=None):
        return cls.rejected(error.code, str(error), session_id=session_id)

    @classmethod
    def retry(cls, challenge):
        return cls(AuthStatus.RETRY, session_id=challenge.session_id, challenge=challenge,
                   reason="InvalidCaptcha")

    @classmethod
    def exhausted(cls, challenge=None, session_id=None):
        return cls(AuthStatus.EXHAUSTED, session_id=challenge.session_id if challenge else session_id,
                   challenge=challenge, reason="MaxAttemptsReached")

    @classmethod
    def session_expired(cls, session_id=None):
        return cls(AuthStatus.SESSION_EXPIRED, session_id=session_id, reason="SessionExpired")

    @classmethod
    def new_challenge(cls, challenge):
        return cls(AuthStatus.CHALLENGE, session_id=challenge.session_id, challenge=challenge)

    @property
    def ok(self) -> bool:
        return self.status is AuthStatus.SUCCESS

    def to_dict(self) -> dict:
        data = {"status": self.status.value}
        if self.identity is not None:
            data["identity"] = self.identity.to_dict()
        if self.session_id is not None:
            data["session_id"] = self.session_id
        if self.challenge is not None:
            data["captcha"] = {
                "image": self.challenge.image.to_data_url(),
                "hash": self.challenge.hash,
                "placeholder": self.challenge.image.placeholder,
            }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.message is not None:
            data["message"] = self.message
        return data
