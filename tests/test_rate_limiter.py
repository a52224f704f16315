#!/usr/bin/env python3
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))
from vtop_auth.rate_limiter import FixedWindowRateLimiter

from fakes import FakeClock


class TestFixedWindowRateLimiter(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.limiter = FixedWindowRateLimiter(3, 60000, clock=self.clock)

    def test_quota_per_window(self):
        self.assertEqual([self.limiter.check("24BCE1234") for _ in range(4)], [True, True, True, False])

    def test_rejections_do_not_consume_quota(self):
        for _ in range(3):
            self.limiter.check("k")
        for _ in range(10):
            self.assertFalse(self.limiter.check("k"))
        self.assertEqual(self.limiter.remaining("k"), 0)

    def test_window_resets(self):
        for _ in range(3):
            self.limiter.check("k")
        self.clock.advance(59.5)
        self.assertFalse(self.limiter.check("k"))
        self.clock.advance(0.5)
        self.assertTrue(self.limiter.check("k"))
        self.assertEqual(self.limiter.remaining("k"), 2)

    def test_keys_are_independent(self):
        for _ in range(3):
            self.limiter.check("a")
        self.assertFalse(self.limiter.check("a"))
        self.assertTrue(self.limiter.check("b"))

    def test_per_call_limit_and_window(self):
        self.assertTrue(self.limiter.check("user", limit=1, window_ms=1000))
        self.assertFalse(self.limiter.check("user", limit=1, window_ms=1000))
        self.clock.advance(1.0)
        self.assertTrue(self.limiter.check("user", limit=1, window_ms=1000))

    def test_remaining_honours_per_call_limit(self):
        self.limiter.check("user", limit=5)
        self.assertEqual(self.limiter.remaining("user", limit=5), 4)
        self.assertEqual(self.limiter.remaining("user"), 2)
        self.assertEqual(self.limiter.remaining("other", limit=5), 5)

    def test_reset(self):
        for _ in range(3):
            self.limiter.check("k")
        self.limiter.reset("k")
        self.assertTrue(self.limiter.check("k"))


if __name__ == '__main__':
    unittest.main()
