#!/usr/bin/env python3
"""
VTOP Login Environment Check Script (Playwright version)
"""

import importlib
import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(PROJECT_ROOT, 'src'))


def print_result(msg, success=True):
    prefix = "  ✅" if success else "  ❌"
    print(f"{prefix} {msg}")


def check_env():
    print("="*60)
    print(f"🔍 VTOP Login Health Check ({datetime.now().strftime('%Y-%m-%d %H:%M:%S')})")
    print("="*60)

    all_passed = True

    # 1. Required Libraries
    print("\n📦 [1/5] Checking Required Libraries")
    required_libs = ['PIL', 'numpy', 'scipy', 'playwright', 'requests', 'dotenv', 'cryptography']
    for lib in required_libs:
        try:
            importlib.import_module(lib)
            print_result(f"{lib} found")
        except ImportError:
            print_result(f"{lib} NOT found (run: pip install -e .)", False)
            all_passed = False

    # 2. Playwright Browser Engines
    print("\n🌐 [2/5] Checking Playwright Browsers")
    try:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import sync_playwright
        with sync_playwright() as p:
            try:
                browser = p.chromium.launch()
                browser.close()
                print_result("Chromium engine found")
            except PlaywrightError as e:
                print_result(f"Chromium engine fail to load ({e})", False)
                print("     (Run: playwright install chromium)")
                all_passed = False
    except ImportError:
        print_result("playwright library not loaded", False)
        all_passed = False

    try:
        from vtop_auth.config import Settings
        settings = Settings.from_env()
    except ImportError as e:
        print_result(f"vtop_auth not importable ({e})", False)
        return False

    # 3. Template Database
    print("\n💾 [3/5] Checking Template Database")
    pkl_path = str(settings.template_db)
    if os.path.exists(pkl_path):
        from vtop_auth.ocr import TemplateLibrary
        library = TemplateLibrary.load(pkl_path)
        symbols = sorted({t.symbol for t in library.templates})
        print_result(f"model.pkl found ({len(library)} templates, {len(symbols)} symbols)")
    else:
        print_result(f"{pkl_path} NOT found. Manual CAPTCHA entry only.", False)
        print("     (Run: scripts/build_templates.py <labelled samples dir>)")
        all_passed = False

    # 4. Encryption Key
    print("\n🔑 [4/5] Checking Encryption Key")
    if settings.encryption_key:
        from vtop_auth.errors import VaultError
        from vtop_auth.vault import parse_key
        try:
            parse_key(settings.encryption_key)
            print_result("VTOP_ENCRYPTION_KEY is a valid 32-byte key")
        except VaultError as e:
            print_result(f"VTOP_ENCRYPTION_KEY invalid ({e})", False)
            all_passed = False
    else:
        print_result("VTOP_ENCRYPTION_KEY not set; sealed sessions will not survive a restart", False)
        print("     (Generate one: openssl rand -hex 32)")
        all_passed = False

    # 5. Session Directory Permissions
    print("\n📂 [5/5] Checking Session Directory Permissions")
    target_path = os.path.join(PROJECT_ROOT, 'tmp', 'sessions')
    try:
        os.makedirs(target_path, exist_ok=True)
        test_file = os.path.join(target_path, '.env_check')
        with open(test_file, 'w') as f:
            f.write('ok')
        os.remove(test_file)
        print_result(f"Write permission verified: {target_path}")
    except OSError as e:
        print_result(f"Cannot use directory: {target_path} ({type(e).__name__})", False)
        all_passed = False

    print("\n" + "="*60)
    if all_passed:
        print("✨ All checks passed!")
    else:
        print("❌ Some requirements are missing. Check the solutions above.")
    print("="*60)
    return all_passed


if __name__ == "__main__":
    sys.exit(0 if check_env() else 1)
