"""
Narrow capability interface over a live page.

Driver and CAPTCHA logic only talk to a PageQuery, so they can be exercised
against a fake DOM without a browser.
"""

import abc
import logging
from typing import List, Optional, Sequence, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)

_CANVAS_TO_DATA_URL = "el => (el.toDataURL ? el.toDataURL('image/png') : null)"


class PageQuery(abc.ABC):

    @property
    @abc.abstractmethod
    def url(self) -> str: ...

    @property
    @abc.abstractmethod
    def is_closed(self) -> bool: ...

    @abc.abstractmethod
    def goto(self, url: str, timeout_ms: int): ...

    @abc.abstractmethod
    def reload(self, timeout_ms: int): ...

    @abc.abstractmethod
    def wait(self, ms: int): ...

    @abc.abstractmethod
    def find_element(self, selectors: Sequence[str], visible_only: bool = True):
        """Return the first element matched by the selectors, in order, or None."""

    @abc.abstractmethod
    def find_elements(self, selector: str) -> list: ...

    @abc.abstractmethod
    def wait_for_any(self, selectors: Sequence[str], timeout_ms: int) -> bool: ...

    def wait_for_result(self, start_url: str, selectors: Sequence[str], timeout_ms: int,
                        poll_ms: int = 250) -> bool:
        """
        Wait until the page leaves ``start_url`` or one of ``selectors`` shows up.

        Returns False on timeout or when the page was closed meanwhile.
        """
        waited = 0
        while waited < timeout_ms:
            if self.is_closed:
                return False
            if self.url != start_url or self.find_element(selectors) is not None:
                return True
            self.wait(poll_ms)
            waited += poll_ms
        return False

    @abc.abstractmethod
    def read_visible_text(self) -> str: ...

    @abc.abstractmethod
    def get_attribute(self, handle, name: str) -> Optional[str]: ...

    @abc.abstractmethod
    def tag_name(self, handle) -> str: ...

    @abc.abstractmethod
    def bounding_box(self, handle) -> Optional[dict]: ...

    @abc.abstractmethod
    def screenshot(self, handle, max_width: int = 400, max_height: int = 200) -> bytes: ...

    @abc.abstractmethod
    def canvas_data_url(self, handle) -> Optional[str]: ...

    @abc.abstractmethod
    def click(self, handle, click_count: int = 1): ...

    @abc.abstractmethod
    def type_character(self, char: str): ...

    @abc.abstractmethod
    def move_mouse(self, x: float, y: float): ...

    @property
    @abc.abstractmethod
    def mouse_position(self) -> Tuple[float, float]: ...

    @abc.abstractmethod
    def links(self) -> List[Tuple[str, str]]:
        """(visible text, href) for every anchor on the page."""

    @abc.abstractmethod
    def cookies(self) -> List[dict]: ...


class PlaywrightPageQuery(PageQuery):
    def __init__(self, page):
        self.page = page
        self._mouse = (0.0, 0.0)

    @property
    def url(self):
        return self.page.url

    @property
    def is_closed(self):
        return self.page.is_closed()

    def goto(self, url, timeout_ms):
        self.page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)

    def reload(self, timeout_ms):
        self.page.reload(wait_until="domcontentloaded", timeout=timeout_ms)

    def wait(self, ms):
        self.page.wait_for_timeout(ms)

    def find_element(self, selectors, visible_only=True):
        for selector in selectors:
            try:
                handle = self.page.query_selector(selector)
            except PlaywrightError as e:
                logger.debug("Selector %s rejected: %s", selector, e)
                continue
            if handle is None:
                continue
            if visible_only and not handle.is_visible():
                continue
            return handle
        return None

    def find_elements(self, selector):
        try:
            return [h for h in self.page.query_selector_all(selector) if h.is_visible()]
        except PlaywrightError as e:
            logger.debug("Selector %s rejected: %s", selector, e)
            return []

    def wait_for_any(self, selectors, timeout_ms):
        try:
            self.page.wait_for_selector(", ".join(selectors), state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False

    def wait_for_result(self, start_url, selectors, timeout_ms, poll_ms=250):
        done = super().wait_for_result(start_url, selectors, timeout_ms, poll_ms)
        if done and not self.page.is_closed():
            try:
                self.page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug("Page still loading after submit")
        return done

    def read_visible_text(self):
        try:
            return self.page.inner_text("body", timeout=5000)
        except PlaywrightTimeoutError:
            return ""

    def get_attribute(self, handle, name):
        return handle.get_attribute(name)

    def tag_name(self, handle):
        return handle.evaluate("el => el.tagName").lower()

    def bounding_box(self, handle):
        return handle.bounding_box()

    def screenshot(self, handle, max_width=400, max_height=200):
        box = handle.bounding_box()
        if box is None:
            return handle.screenshot(type="png")
        clip = {
            "x": max(0, box["x"]),
            "y": max(0, box["y"]),
            "width": min(box["width"], max_width),
            "height": min(box["height"], max_height),
        }
        return self.page.screenshot(clip=clip, type="png")

    def canvas_data_url(self, handle):
        return handle.evaluate(_CANVAS_TO_DATA_URL)

    def click(self, handle, click_count=1):
        handle.click(click_count=click_count)

    def type_character(self, char):
        self.page.keyboard.type(char)

    def move_mouse(self, x, y):
        self.page.mouse.move(x, y)
        self._mouse = (x, y)

    @property
    def mouse_position(self):
        return self._mouse

    def links(self):
        pairs = self.page.eval_on_selector_all(
            "a",
            "els => els.map(a => [(a.textContent || '').trim(), a.getAttribute('href') || ''])",
        )
        return [(text, href) for text, href in pairs]

    def cookies(self):
        return self.page.context.cookies()
