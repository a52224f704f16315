#!/usr/bin/env python3
import argparse
import getpass
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import PROJECT_ROOT, Settings
from .errors import PortalAuthError
from .orchestrator import PortalAuthenticator
from .outcomes import AuthStatus
from .vault import load_record, save_record

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=logging.INFO, log_file=None):
    """Console logging, plus a rotating file (10MB x 5) when ``log_file`` is given."""
    root = logging.getLogger('vtop_auth')
    root.setLevel(level)
    if root.handlers:
        return root
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5,
                                           encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    return root


def default_session_path(regno):
    return PROJECT_ROOT / "tmp" / "sessions" / f"{regno.strip().upper()}.bin"


def save_captcha_image(challenge, directory):
    """Write the CAPTCHA to disk so it can be opened in an image viewer."""
    os.makedirs(directory, exist_ok=True)
    ext = "svg" if challenge.image.mime_type == "image/svg+xml" else "png"
    path = os.path.join(directory, f"captcha_{challenge.hash[:12]}.{ext}")
    with open(path, "wb") as f:
        f.write(challenge.image.data)
    return path


def verify_saved(authenticator, path):
    """Check that a saved session record is still accepted by the portal."""
    try:
        authenticator.restore(load_record(path))
    except PortalAuthError as e:
        print(f"❌ Saved session unusable: {e}")
        return False
    print(f"✅ Saved session is still valid: {path}")
    return True


def run(args, authenticator=None, prompt=input, get_password=getpass.getpass):
    """Business logic for the CLI. Returns True when a session was saved or verified."""
    settings = Settings.from_env()
    if args.visible:
        settings.headless = False
    if args.no_human:
        settings.human_behavior = False
    out_path = Path(args.out) if args.out else default_session_path(args.regno)

    def persist(user_id, identity, sealed):
        save_record(out_path, sealed)
        print(f"💾 Encrypted session saved: {out_path}")

    if authenticator is None:
        authenticator = PortalAuthenticator(settings, persist_session=persist)
    else:
        authenticator.persist_session = persist

    if args.verify:
        try:
            return verify_saved(authenticator, out_path)
        finally:
            authenticator.close()

    password = get_password(f"VTOP password for {args.regno}: ")
    print(f"🔐 Logging in as {args.regno.strip().upper()}...")

    try:
        outcome = authenticator.begin_login(args.regno, password)
        rounds = 0
        while outcome.status in (AuthStatus.CAPTCHA_REQUIRED, AuthStatus.RETRY,
                                 AuthStatus.EXHAUSTED, AuthStatus.CHALLENGE) and outcome.challenge:
            rounds += 1
            if rounds > args.max_rounds:
                print(f"❌ Gave up after {args.max_rounds} CAPTCHA rounds.")
                return False
            if outcome.status is AuthStatus.RETRY:
                print("⚠️ Wrong CAPTCHA, the portal issued a new one.")
            elif outcome.status is AuthStatus.EXHAUSTED:
                print("⚠️ Too many wrong CAPTCHAs, the login form was reloaded.")

            session_id = outcome.session_id
            if args.manual:
                path = save_captcha_image(outcome.challenge, args.captcha_dir)
                print(f"🧩 CAPTCHA image: {path}")
                answer = prompt("Enter CAPTCHA (blank for a new one): ").strip()
                if not answer:
                    outcome = authenticator.refresh_captcha(session_id)
                    if outcome.status is AuthStatus.REJECTED and outcome.reason == "CaptchaUnchanged":
                        print("⚠️ The portal returned the same CAPTCHA.")
                        outcome = authenticator.submit_captcha(session_id, prompt("Enter CAPTCHA: ").strip())
                    continue
                outcome = authenticator.submit_captcha(session_id, answer)
            else:
                print("🤖 Solving CAPTCHA with the template matcher...")
                outcome = authenticator.submit_captcha(session_id)

        if outcome.status is AuthStatus.SUCCESS:
            identity = outcome.identity
            print(f"✅ Logged in: {identity.name} ({identity.registration_id})")
            print(f"   Branch: {identity.branch} | Semester: {identity.semester} | Email: {identity.email}")
            if identity.provisional:
                print("   Note: profile could not be read; details are derived from the registration number.")
            return True
        if outcome.status is AuthStatus.SESSION_EXPIRED:
            print("❌ Login session expired. Please start again.")
        else:
            print(f"❌ Login failed: {outcome.reason} {outcome.message or ''}".rstrip())
        return False
    finally:
        authenticator.close()


def main():
    parser = argparse.ArgumentParser(description="VTOP Student Login")
    parser.add_argument("regno", help="Registration number (e.g. 24BCE1234)")
    parser.add_argument("-o", "--out", type=str, help="Where to write the encrypted session")
    parser.add_argument("--verify", action="store_true", help="Check the saved session instead of logging in")
    parser.add_argument("--manual", action="store_true", help="Type the CAPTCHA yourself instead of using OCR")
    parser.add_argument("--captcha-dir", default=str(PROJECT_ROOT / "tmp" / "captcha"),
                        help="Directory for CAPTCHA images in manual mode")
    parser.add_argument("--max-rounds", type=int, default=6, help="Maximum CAPTCHA rounds before giving up")
    parser.add_argument("--visible", action="store_true", help="Show the browser window")
    parser.add_argument("--no-human", action="store_true", help="Disable human-like typing delays")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=str, help="Also log to this file (rotated at 10MB)")
    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        ok = run(args)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        sys.exit(130)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
