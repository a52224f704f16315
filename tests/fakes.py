#!/usr/bin/env python3
"""
In-memory stand-ins for the browser: a fake VTOP portal page behind the
PageQuery interface, a pool that hands out leases on it, and a manual clock.
"""

import base64
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))
from vtop_auth.page_query import PageQuery  # noqa: E402

BASE_URL = "https://vtopcc.vit.ac.in/vtop"
DEFAULT_DASHBOARD_TEXT = (
    "VTOP Student Home\n"
    "Welcome, ASHA KUMAR\n"
    "Programme: B.Tech Civil Engineering\n"
    "Semester: 5\n"
    "Logout"
)


class FakeElement:
    def __init__(self, role, tag="input", attrs=None, visible=True, box=None):
        self.role = role
        self.tag = tag
        self.attrs = dict(attrs or {})
        self.visible = visible
        self.box = box or {"x": 10.0, "y": 10.0, "width": 120.0, "height": 30.0}
        self.value = ""

    def __repr__(self):
        return f"FakeElement({self.role!r})"


def vtop_login_markup():
    """Selector -> element map of the student login form as the portal serves it."""
    username = FakeElement("username", attrs={"id": "username"})
    password = FakeElement("password", attrs={"id": "password", "type": "password"})
    return {
        'form#vtopLoginForm': FakeElement("form", tag="form"),
        'input#username': username,
        'input#password': password,
        'img[src^="data:image"]': FakeElement("captcha_image", tag="img"),
        'input#captchaStr': FakeElement("captcha_input", attrs={"id": "captchaStr"}),
        'button#submitBtn': FakeElement("submit", tag="button"),
        'button[onclick*="loadCaptcha"]': FakeElement("refresh", tag="button"),
    }


def landing_markup():
    return {'a[onclick*="stdForm"]': FakeElement("student_mode", tag="a")}


class FakePortalPage(PageQuery):
    """
    A VTOP login flow with a configurable CAPTCHA.

    ``captcha`` is "always" (the form carries a CAPTCHA from the start) or
    "none". Every reload, refresh and failed submit issues a new CAPTCHA
    unless ``refresh_changes`` is False.
    """

    def __init__(self, password="pw", captcha="always", solution="CORRECT",
                 login_markup=None, dashboard_text=DEFAULT_DASHBOARD_TEXT,
                 pages=None, refresh_changes=True):
        self.password = password
        self.captcha_mode = captcha
        self.solution = solution
        self.login_markup = login_markup if login_markup is not None else vtop_login_markup()
        if captcha == "none":
            for selector in [s for s, el in self.login_markup.items()
                             if getattr(el, "role", None) in ("captcha_image", "captcha_input", "refresh")]:
                del self.login_markup[selector]
        self.dashboard_text = dashboard_text
        self.pages = pages or {}
        self.refresh_changes = refresh_changes

        self.state = "blank"
        self._url = "about:blank"
        self._closed = False
        self._mouse = (0.0, 0.0)
        self.generation = 1
        self.error = ""
        self.focused = None
        self.submits = 0
        self.visited = []
        self.waited_ms = 0
        self.typed = []

    # -- portal behaviour -------------------------------------------------

    def captcha_bytes(self, generation=None):
        return b"captcha-generation-%d" % (generation or self.generation)

    def captcha_data_url(self):
        return "data:image/png;base64," + base64.b64encode(self.captcha_bytes()).decode("ascii")

    def _new_captcha(self):
        if self.refresh_changes:
            self.generation += 1

    def _clear_form(self):
        for el in self._all_login_elements():
            el.value = ""

    def _all_login_elements(self):
        for value in self.login_markup.values():
            for el in (value if isinstance(value, list) else [value]):
                yield el

    def _field(self, role):
        for el in self._all_login_elements():
            if el.role == role:
                return el
        return None

    def _submit(self):
        self.submits += 1
        captcha_input = self._field("captcha_input")
        if self.captcha_mode == "always" and (captcha_input is None or captcha_input.value != self.solution):
            self.error = "Invalid Captcha"
            self._new_captcha()
            return
        password = self._field("password")
        if password is None or password.value != self.password:
            self.error = "Invalid credentials. Please try again."
            self._new_captcha()
            return
        self.error = ""
        self.state = "dashboard"
        self._url = BASE_URL + "/content"

    def _elements(self):
        if self.state == "landing":
            return landing_markup()
        if self.state == "login":
            if self.error:
                return dict(self.login_markup, **{'.error': FakeElement("error", tag="div")})
            return self.login_markup
        return {}

    # -- PageQuery --------------------------------------------------------

    @property
    def url(self):
        return self._url

    @property
    def is_closed(self):
        return self._closed

    def goto(self, url, timeout_ms):
        self.visited.append(url)
        self._url = url
        if url.endswith("/login"):
            self.state = "landing"
            self.error = ""
            self._clear_form()
        elif self.state not in ("landing", "login", "blank"):
            self.state = "page"
            self.dashboard_text = self.pages.get(url, "")

    def reload(self, timeout_ms):
        if self.state in ("landing", "login"):
            self.error = ""
            self._clear_form()
            self._new_captcha()

    def wait(self, ms):
        self.waited_ms += ms

    def find_element(self, selectors, visible_only=True):
        elements = self._elements()
        for selector in selectors:
            value = elements.get(selector)
            if isinstance(value, list):
                value = value[0] if value else None
            if value is None:
                continue
            if visible_only and not value.visible:
                continue
            return value
        return None

    def find_elements(self, selector):
        value = self._elements().get(selector)
        if value is None:
            return []
        items = value if isinstance(value, list) else [value]
        return [el for el in items if el.visible]

    def wait_for_any(self, selectors, timeout_ms):
        return self.find_element(selectors) is not None

    def read_visible_text(self):
        if self.state == "landing":
            return "VTOP Login\nEmployee\nStudent\nParent"
        if self.state == "login":
            lines = ["Username", "Password"]
            if self.captcha_mode == "always":
                lines.append("Captcha")
            if self.error:
                lines.append(self.error)
            return "\n".join(lines)
        if self.state in ("dashboard", "page"):
            return self.dashboard_text
        return ""

    def get_attribute(self, handle, name):
        if handle.role == "captcha_image" and name == "src":
            return self.captcha_data_url()
        return handle.attrs.get(name)

    def tag_name(self, handle):
        return handle.tag

    def bounding_box(self, handle):
        return handle.box

    def screenshot(self, handle, max_width=400, max_height=200):
        return b"screenshot-" + self.captcha_bytes()

    def canvas_data_url(self, handle):
        return None

    def click(self, handle, click_count=1):
        self.focused = handle
        if handle.role == "student_mode":
            self.state = "login"
            self._url = BASE_URL + "/login"
        elif handle.role == "submit":
            self._submit()
        elif handle.role == "refresh":
            self._new_captcha()
        elif click_count >= 3:
            handle.value = ""

    def type_character(self, char):
        self.typed.append(char)
        if self.focused is not None:
            self.focused.value += char

    def move_mouse(self, x, y):
        self._mouse = (x, y)

    @property
    def mouse_position(self):
        return self._mouse

    def links(self):
        if self.state in ("dashboard", "page"):
            return [("Home", "#"), ("My Profile", "/vtop/studentsRecord/StudentProfileAllView")]
        return []

    def cookies(self):
        if self.state in ("dashboard", "page"):
            return [
                {"name": "JSESSIONID", "value": "A1B2C3", "domain": "vtopcc.vit.ac.in", "path": "/vtop"},
                {"name": "SERVERID", "value": "s1", "domain": ".vtopcc.vit.ac.in", "path": "/"},
                {"name": "_ga", "value": "GA1.2", "domain": ".google.com", "path": "/"},
            ]
        return []


class StalledSubmitPage(FakePortalPage):
    """Swallows the submit: no navigation, no error message."""

    def _submit(self):
        self.submits += 1


class FakeLease:
    def __init__(self, page):
        self.page = page
        self.closed = False

    def close(self):
        self.closed = True
        self.page._closed = True


class FakePool:
    def __init__(self, page_factory=FakePortalPage):
        self.page_factory = page_factory
        self.acquired = 0
        self.leases = []
        self.closed = False

    def acquire(self):
        self.acquired += 1
        lease = FakeLease(self.page_factory())
        self.leases.append(lease)
        return lease

    def release(self, lease):
        if lease is not None:
            lease.close()

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
