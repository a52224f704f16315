#!/usr/bin/env python3
import os
import random
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))
from vtop_auth.behavior import HumanTimingPolicy, NoDelayPolicy, human_click, human_type, policy_for
from vtop_auth.config import Settings

from fakes import FakePortalPage


class TestPolicies(unittest.TestCase):

    def test_no_delay_policy(self):
        policy = NoDelayPolicy()
        self.assertEqual(policy.keystroke_delay(), 0)
        self.assertEqual(policy.action_delay(), 0)
        self.assertEqual(policy.mouse_path((0, 0), (50, 40)), [(50, 40)])
        self.assertEqual(policy.click_point({"x": 0, "y": 0, "width": 10, "height": 20}), (5, 10))

    def test_keystroke_range(self):
        policy = HumanTimingPolicy(rng=random.Random(7))
        delays = [policy.keystroke_delay() for _ in range(500)]
        self.assertGreaterEqual(min(delays), 50)
        self.assertLessEqual(max(delays), 700)
        # roughly one keystroke in ten carries the extra pause
        self.assertTrue(any(d > 200 for d in delays))

    def test_pause_chance_bounds(self):
        never = HumanTimingPolicy(rng=random.Random(1), pause_chance=0.0)
        always = HumanTimingPolicy(rng=random.Random(1), pause_chance=1.0)
        for _ in range(100):
            self.assertLessEqual(never.keystroke_delay(), 200)
            self.assertGreaterEqual(always.keystroke_delay(), 250)

    def test_action_range(self):
        policy = HumanTimingPolicy(rng=random.Random(3))
        for _ in range(100):
            self.assertTrue(100 <= policy.action_delay() <= 1500)

    def test_mouse_path_ends_on_target(self):
        policy = HumanTimingPolicy(rng=random.Random(5))
        path = policy.mouse_path((0.0, 0.0), (200.0, 100.0))
        self.assertTrue(8 <= len(path) <= 16)
        self.assertEqual(path[-1], (200.0, 100.0))

    def test_seeded_policies_repeat(self):
        a = HumanTimingPolicy(rng=random.Random(42))
        b = HumanTimingPolicy(rng=random.Random(42))
        self.assertEqual([a.keystroke_delay() for _ in range(20)], [b.keystroke_delay() for _ in range(20)])

    def test_policy_for_settings(self):
        self.assertIsInstance(policy_for(Settings(human_behavior=False)), NoDelayPolicy)
        self.assertIsInstance(policy_for(Settings(human_behavior=True)), HumanTimingPolicy)


class TestEmulator(unittest.TestCase):

    def setUp(self):
        self.page = FakePortalPage()
        self.page.state = "login"
        self.field = self.page.login_markup['input#username']

    def test_human_type_replaces_value(self):
        self.field.value = "OLD"
        human_type(self.page, self.field, "24BCE1234", NoDelayPolicy())
        self.assertEqual(self.field.value, "24BCE1234")
        self.assertEqual(self.page.waited_ms, 0)

    def test_human_type_waits_between_keys(self):
        policy = HumanTimingPolicy(rng=random.Random(9))
        human_type(self.page, self.field, "abc", policy)
        self.assertGreaterEqual(self.page.waited_ms, 3 * 50)

    def test_human_click_moves_pointer_into_box(self):
        human_click(self.page, self.field, HumanTimingPolicy(rng=random.Random(2)))
        x, y = self.page.mouse_position
        box = self.field.box
        self.assertTrue(box["x"] <= x <= box["x"] + box["width"])
        self.assertTrue(box["y"] <= y <= box["y"] + box["height"])
        self.assertIs(self.page.focused, self.field)


if __name__ == '__main__':
    unittest.main()
