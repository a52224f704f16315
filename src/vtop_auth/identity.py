#!/usr/bin/env python3
"""
Student identity: registration number checks, regex extraction over the
dashboard's visible text, and the branch-code fallback.
"""

import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from .errors import ExtractionFailedError, InputValidationError

REGNO_PATTERN = re.compile(r"^\d{2}[A-Z]{3}\d{4}$")

BRANCHES = {
    'BCE': 'Civil Engineering',
    'BCS': 'Computer Science',
    'ECE': 'Electronics & Communication',
    'EEE': 'Electrical & Electronics',
    'MEC': 'Mechanical Engineering',
    'CSE': 'Computer Science & Engineering',
    'BIT': 'Information Technology',
    'CHE': 'Chemical Engineering',
    'BIO': 'Biotechnology',
}

_NAME_PATTERNS = (
    re.compile(r"(?:Student\s+Name|Name\s+of\s+the\s+Student|Name)\s*[:\-]\s*([A-Za-z][A-Za-z .']{2,80})"),
    re.compile(r"\b(?:Welcome|Hello|Hi)\b[,!\s]+([A-Za-z][A-Za-z .']{2,80})"),
)
_BRANCH_PATTERN = re.compile(
    r"(?:Programme|Program|Branch)\s*[:\-]?\s*([A-Za-z.&()\s]+?(?:Engineering|Science|Technology))",
    re.IGNORECASE,
)
_SEMESTER_PATTERN = re.compile(r"\b(?:Semester|Sem)\b\s*[:\-]?\s*([0-9]{1,2}|[IVX]{1,4})\b", re.IGNORECASE)
_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_NAME_NOISE = re.compile(r"\b(?:welcome|hello|hi|student|dear|mr|mrs|ms|logout|profile|settings|dashboard|home)\b",
                         re.IGNORECASE)


class IdentitySource(Enum):
    EXTRACTED = "extracted"
    FALLBACK = "fallback"


@dataclass
class AuthenticatedIdentity:
    name: str
    registration_id: str
    email: str
    branch: str
    semester: str
    session_token: Optional[str] = None
    source: IdentitySource = IdentitySource.EXTRACTED

    @property
    def provisional(self) -> bool:
        return self.source is IdentitySource.FALLBACK

    def to_dict(self) -> dict:
        data = asdict(self)
        data["source"] = self.source.value
        return data


def normalize_registration_id(value) -> str:
    if not value or not str(value).strip():
        raise InputValidationError("Registration number is required", code="InvalidInput")
    regno = str(value).strip().upper()
    if not REGNO_PATTERN.match(regno):
        raise InputValidationError("Invalid registration number format", code="InvalidRegNo")
    return regno


def branch_for(registration_id: str) -> str:
    code = registration_id[2:5].upper()
    return BRANCHES.get(code, f"{code} Engineering")


def default_email(registration_id: str, domain: str) -> str:
    return f"{registration_id.lower()}@{domain}"


def clean_name(raw: str) -> str:
    text = _NAME_NOISE.sub(" ", raw)
    text = re.sub(r"[^A-Za-z\s]", " ", text)
    words = [w for w in text.split() if len(w) > 1]
    return " ".join(words[:4])


def _first_line(match) -> str:
    return match.group(1).splitlines()[0].strip()


def parse_identity(text: str, registration_id: str, email_domain: str) -> AuthenticatedIdentity:
    """
    Pull the student's identity out of visible page text.

    Raises ExtractionFailedError unless a plausible name is found; the other
    fields fall back to values derived from the registration number.
    """
    name = ""
    for pattern in _NAME_PATTERNS:
        for match in pattern.finditer(text):
            candidate = clean_name(_first_line(match))
            if len(candidate) >= 2:
                name = candidate
                break
        if name:
            break
    if not name:
        raise ExtractionFailedError("No student name in page text")

    branch_match = _BRANCH_PATTERN.search(text)
    semester_match = _SEMESTER_PATTERN.search(text)
    email = default_email(registration_id, email_domain)
    for candidate in _EMAIL_PATTERN.findall(text):
        if candidate.lower().endswith("@" + email_domain):
            email = candidate.lower()
            break

    return AuthenticatedIdentity(
        name=name,
        registration_id=registration_id,
        email=email,
        branch=" ".join(branch_match.group(1).split()) if branch_match else branch_for(registration_id),
        semester=semester_match.group(1).upper() if semester_match else "Current",
    )


def fallback_identity(registration_id: str, email_domain: str) -> AuthenticatedIdentity:
    return AuthenticatedIdentity(
        name="VIT Student",
        registration_id=registration_id,
        email=default_email(registration_id, email_domain),
        branch=branch_for(registration_id),
        semester="Current",
        source=IdentitySource.FALLBACK,
    )
