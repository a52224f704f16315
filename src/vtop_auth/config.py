#!/usr/bin/env python3
import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import List, Mapping, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class PortalProfile:
    """
    Everything that depends on the portal's current markup.

    The portal has changed its markup several times, so these lists are data:
    a JSON file named by VTOP_PROFILE can override any of them.
    """
    login_path: str = "/login"
    content_path: str = "/content"
    dashboard_paths: Tuple[str, ...] = ("/student/home", "/student/dashboard", "/content")
    verify_path: str = "/content"
    cookie_domain: str = "vit.ac.in"

    student_mode_selectors: Tuple[str, ...] = (
        'a[onclick*="stdForm"]',
        'form#stdForm button',
        'img#student',
    )
    username_selectors: Tuple[str, ...] = (
        'input#username',
        'input[name="username"]',
        'input[name="uname"]',
    )
    username_positional: Tuple[str, int] = ('form input[type="text"]', 0)
    username_generic: Tuple[str, ...] = ('input[type="text"]', 'input:not([type])')
    password_selectors: Tuple[str, ...] = (
        'input#password',
        'input[name="password"]',
        'input[name="passwd"]',
    )
    password_positional: Tuple[str, int] = ('form input[type="password"]', 0)
    password_generic: Tuple[str, ...] = ('input[type="password"]',)
    submit_selectors: Tuple[str, ...] = (
        'button#submitBtn',
        'button[type="submit"]',
        'input[type="submit"]',
    )

    captcha_image_selectors: Tuple[str, ...] = (
        'img[src^="data:image"]',
        'img.img-fluid.bg-light.border-0',
        '#captchaBlock img',
        'img[src*="captcha" i]',
        'img[alt*="captcha" i]',
        'canvas[id*="captcha" i]',
        'canvas[class*="captcha" i]',
    )
    captcha_input_selectors: Tuple[str, ...] = (
        'input#captchaStr',
        'input[name="captchaStr"]',
        'input[name*="captcha" i]',
        'input[id*="captcha" i]',
    )
    captcha_refresh_selectors: Tuple[str, ...] = (
        'button[onclick*="loadCaptcha"]',
        'button#button-addon2',
        'a[onclick*="loadCaptcha"]',
    )
    result_selectors: Tuple[str, ...] = (
        '.error',
        '.alert-danger',
        '.text-danger',
    )
    login_markers: Tuple[str, ...] = ('form#vtopLoginForm', 'input#username')

    captcha_keywords: Tuple[str, ...] = ("captcha",)
    captcha_error_keywords: Tuple[str, ...] = ("invalid", "wrong", "incorrect", "mismatch")
    credential_error_keywords: Tuple[str, ...] = (
        "invalid credentials",
        "invalid username",
        "invalid password",
        "incorrect password",
        "invalid login",
        "username or password",
        "user id or password",
        "account is locked",
        "authentication failed",
    )
    profile_link_keywords: Tuple[str, ...] = ("profile", "dashboard", "home")

    student_email_domain: str = "vitstudent.ac.in"

    @classmethod
    def from_file(cls, path) -> "PortalProfile":
        with open(path, "r", encoding="utf-8") as f:
            overrides = json.load(f)
        return cls().with_overrides(overrides)

    def with_overrides(self, overrides: Mapping) -> "PortalProfile":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown profile keys: {', '.join(sorted(unknown))}")
        converted = {}
        for key, value in overrides.items():
            converted[key] = tuple(value) if isinstance(value, list) else value
        return replace(self, **converted)


def _env_bool(env: Mapping, name: str, default: str) -> bool:
    return env.get(name, default).lower() in ("true", "1", "yes")


def _env_offsets(value: Optional[str]) -> Optional[List[int]]:
    if not value:
        return None
    return [int(part) for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and .env)."""
    base_url: str = "https://vtopcc.vit.ac.in/vtop"
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    viewport: Tuple[int, int] = (1920, 1080)
    nav_timeout_ms: int = 30000
    step_timeout_ms: int = 10000
    transient_retries: int = 3
    session_ttl: float = 600.0
    use_ttl_timers: bool = True
    max_captcha_attempts: int = 3
    identity_attempts: int = 3
    rate_limit: int = 3
    rate_window_ms: int = 60000
    encryption_key: Optional[str] = None
    template_db: Path = PROJECT_ROOT / "captcha" / "model.pkl"
    human_behavior: bool = True
    captcha_cells: int = 6
    captcha_cell_width: int = 32
    captcha_cell_height: int = 30
    captcha_cell_pitch: int = 30
    captcha_cell_offsets: Optional[List[int]] = None
    browser_init_backoff_ms: int = 250
    browser_init_max_wait_ms: int = 30000
    profile: PortalProfile = field(default_factory=PortalProfile)

    @classmethod
    def from_env(cls, env: Optional[Mapping] = None) -> "Settings":
        env = os.environ if env is None else env
        profile_path = env.get("VTOP_PROFILE")
        profile = PortalProfile.from_file(profile_path) if profile_path else PortalProfile()
        return cls(
            base_url=env.get("VTOP_BASE_URL", cls.base_url).rstrip("/"),
            headless=_env_bool(env, "VTOP_HEADLESS", "true"),
            user_agent=env.get("VTOP_USER_AGENT", DEFAULT_USER_AGENT),
            nav_timeout_ms=int(env.get("VTOP_NAV_TIMEOUT_MS", "30000")),
            step_timeout_ms=int(env.get("VTOP_STEP_TIMEOUT_MS", "10000")),
            session_ttl=float(env.get("VTOP_SESSION_TTL", "600")),
            max_captcha_attempts=int(env.get("VTOP_MAX_CAPTCHA_ATTEMPTS", "3")),
            rate_limit=int(env.get("VTOP_RATE_LIMIT", "3")),
            rate_window_ms=int(env.get("VTOP_RATE_WINDOW_MS", "60000")),
            encryption_key=env.get("VTOP_ENCRYPTION_KEY") or None,
            template_db=Path(env.get("VTOP_TEMPLATE_DB", str(cls.template_db))),
            human_behavior=_env_bool(env, "VTOP_HUMAN_BEHAVIOR", "true"),
            captcha_cells=int(env.get("VTOP_CAPTCHA_CELLS", "6")),
            captcha_cell_width=int(env.get("VTOP_CAPTCHA_CELL_WIDTH", "32")),
            captcha_cell_height=int(env.get("VTOP_CAPTCHA_CELL_HEIGHT", "30")),
            captcha_cell_pitch=int(env.get("VTOP_CAPTCHA_CELL_PITCH", "30")),
            captcha_cell_offsets=_env_offsets(env.get("VTOP_CAPTCHA_CELL_OFFSETS")),
            profile=profile,
        )

    def url(self, path: str) -> str:
        if path.startswith("http"):
            return path
        return self.base_url + path

    @property
    def login_url(self) -> str:
        return self.url(self.profile.login_path)
