"""
Human-like input pacing.

Delays and mouse paths come from a TimingPolicy; the helpers below hold no
state of their own. NoDelayPolicy makes every run deterministic.
"""

import random
from typing import List, Optional, Tuple

Point = Tuple[float, float]


class TimingPolicy:
    """Zero-delay base policy; subclasses add the randomness."""

    def keystroke_delay(self) -> int:
        return 0

    def action_delay(self) -> int:
        return 0

    def field_gap(self) -> int:
        return 0

    def mouse_path(self, start: Point, end: Point) -> List[Point]:
        return [end]

    def click_point(self, box: dict) -> Point:
        return (box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)


class NoDelayPolicy(TimingPolicy):
    pass


class HumanTimingPolicy(TimingPolicy):
    def __init__(self, rng: Optional[random.Random] = None,
                 keystroke_ms=(50, 200), pause_chance=0.1, pause_ms=(200, 500),
                 action_ms=(100, 1500), mouse_steps=(8, 16), jitter_px=3.0):
        self.rng = rng or random.Random()
        self.keystroke_ms = keystroke_ms
        self.pause_chance = pause_chance
        self.pause_ms = pause_ms
        self.action_ms = action_ms
        self.mouse_steps = mouse_steps
        self.jitter_px = jitter_px

    def keystroke_delay(self):
        delay = self.rng.randint(*self.keystroke_ms)
        if self.rng.random() < self.pause_chance:
            # a "thinking" pause between characters
            delay += self.rng.randint(*self.pause_ms)
        return delay

    def action_delay(self):
        return self.rng.randint(*self.action_ms)

    def field_gap(self):
        return self.rng.randint(400, 900)

    def mouse_path(self, start, end):
        steps = self.rng.randint(*self.mouse_steps)
        (x0, y0), (x1, y1) = start, end
        points = []
        for i in range(1, steps + 1):
            t = i / steps
            # ease-in-out so the pointer accelerates and settles
            eased = t * t * (3 - 2 * t)
            x = x0 + (x1 - x0) * eased
            y = y0 + (y1 - y0) * eased
            if i < steps:
                x += self.rng.uniform(-self.jitter_px, self.jitter_px)
                y += self.rng.uniform(-self.jitter_px, self.jitter_px)
            points.append((x, y))
        return points

    def click_point(self, box):
        jitter_x = self.rng.uniform(-box["width"] * 0.2, box["width"] * 0.2)
        jitter_y = self.rng.uniform(-box["height"] * 0.2, box["height"] * 0.2)
        return (box["x"] + box["width"] / 2 + jitter_x,
                box["y"] + box["height"] / 2 + jitter_y)


def policy_for(settings) -> TimingPolicy:
    return HumanTimingPolicy() if settings.human_behavior else NoDelayPolicy()


def pause(page, delay_ms: int):
    if delay_ms > 0:
        page.wait(delay_ms)


def move_to(page, handle, policy: TimingPolicy) -> bool:
    box = page.bounding_box(handle)
    if not box:
        return False
    target = policy.click_point(box)
    for x, y in policy.mouse_path(page.mouse_position, target):
        page.move_mouse(x, y)
    return True


def human_click(page, handle, policy: TimingPolicy, click_count: int = 1):
    pause(page, policy.action_delay())
    move_to(page, handle, policy)
    page.click(handle, click_count=click_count)


def human_type(page, handle, text: str, policy: TimingPolicy):
    """Focus the field, select any existing value, and type one character at a time."""
    human_click(page, handle, policy, click_count=3)
    for char in text:
        page.type_character(char)
        pause(page, policy.keystroke_delay())
