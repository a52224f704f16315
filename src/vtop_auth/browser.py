"""
One shared Chromium per process, one context per login attempt.

The browser starts lazily on first use. Concurrent first callers wait on a
busy flag with backoff instead of launching a second browser.
"""

import logging
import threading
import time

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .errors import PortalUnavailableError
from .page_query import PlaywrightPageQuery

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-blink-features=AutomationControlled',
]

BLOCKED_RESOURCES = ('stylesheet', 'font', 'media')

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
if (!window.chrome) {
    window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };
}
Object.defineProperty(navigator, 'plugins', {
    get: () => [1, 2, 3, 4, 5].map(() => ({
        description: 'Portable Document Format',
        filename: 'internal-pdf-viewer',
        length: 1,
        name: 'Chrome PDF Plugin'
    })),
});
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
"""


def _block_heavy_resources(route):
    # images stay: the CAPTCHA is one
    if route.request.resource_type in BLOCKED_RESOURCES:
        route.abort()
    else:
        route.continue_()


class BrowserLease:
    """A browser context and its single page, owned by one login attempt."""

    def __init__(self, context, page):
        self.context = context
        self.page = page
        self.closed = False

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self.context.close()
        except PlaywrightError as e:
            logger.debug("Context already gone: %s", e)


class BrowserPool:
    def __init__(self, settings, playwright_factory=sync_playwright, sleep=time.sleep):
        self.settings = settings
        self.playwright_factory = playwright_factory
        self.sleep = sleep
        self.acquired = 0
        self._playwright = None
        self._browser = None
        self._initializing = False
        self._lock = threading.Lock()

    def _connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    def _ensure_browser(self):
        waited = 0
        while True:
            with self._lock:
                if self._connected():
                    return self._browser
                if not self._initializing:
                    self._initializing = True
                    break
            if waited >= self.settings.browser_init_max_wait_ms:
                raise PortalUnavailableError("Timed out waiting for the shared browser to start")
            self.sleep(self.settings.browser_init_backoff_ms / 1000.0)
            waited += self.settings.browser_init_backoff_ms

        try:
            if self._playwright is None:
                self._playwright = self.playwright_factory().start()
            browser = self._playwright.chromium.launch(headless=self.settings.headless, args=LAUNCH_ARGS)
            logger.info("Browser launched (%s)", "headless" if self.settings.headless else "visible")
            with self._lock:
                self._browser = browser
            return browser
        except PlaywrightError as e:
            raise PortalUnavailableError(f"Browser failed to start: {e}")
        finally:
            with self._lock:
                self._initializing = False

    def acquire(self) -> BrowserLease:
        browser = self._ensure_browser()
        width, height = self.settings.viewport
        context = browser.new_context(
            user_agent=self.settings.user_agent,
            viewport={'width': width, 'height': height},
        )
        context.set_default_timeout(self.settings.step_timeout_ms)
        context.set_default_navigation_timeout(self.settings.nav_timeout_ms)
        context.add_init_script(STEALTH_SCRIPT)
        page = context.new_page()
        page.route("**/*", _block_heavy_resources)
        with self._lock:
            self.acquired += 1
        return BrowserLease(context, PlaywrightPageQuery(page))

    def release(self, lease: BrowserLease):
        if lease is not None:
            lease.close()

    def close(self):
        with self._lock:
            browser, playwright = self._browser, self._playwright
            self._browser = self._playwright = None
        if browser is not None:
            try:
                browser.close()
            except PlaywrightError as e:
                logger.debug("Browser already closed: %s", e)
        if playwright is not None:
            playwright.stop()
        logger.info("Browser stopped")
