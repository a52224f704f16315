#!/usr/bin/env python3
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))
from vtop_auth.errors import ExtractionFailedError, InputValidationError
from vtop_auth.identity import (IdentitySource, branch_for, clean_name, fallback_identity,
                                normalize_registration_id, parse_identity)

DOMAIN = "vitstudent.ac.in"


class TestRegistrationId(unittest.TestCase):

    def test_normalized(self):
        self.assertEqual(normalize_registration_id(" 24bce1234 "), "24BCE1234")

    def test_bad_format(self):
        for value in ("bad-format", "24BCE123", "2BCE12345", "24BC11234"):
            with self.assertRaises(InputValidationError) as ctx:
                normalize_registration_id(value)
            self.assertEqual(ctx.exception.code, "InvalidRegNo")

    def test_missing(self):
        for value in ("", "   ", None):
            with self.assertRaises(InputValidationError) as ctx:
                normalize_registration_id(value)
            self.assertEqual(ctx.exception.code, "InvalidInput")


class TestParseIdentity(unittest.TestCase):

    def test_profile_page(self):
        text = ("Student Profile\n"
                "Name : PRIYA NAIR\n"
                "Register Number : 21BCS0042\n"
                "Program : B.Tech Computer Science\n"
                "VIT Email : priya.nair2021@vitstudent.ac.in\n"
                "Semester : 6")
        identity = parse_identity(text, "21BCS0042", DOMAIN)
        self.assertEqual(identity.name, "PRIYA NAIR")
        self.assertEqual(identity.branch, "B.Tech Computer Science")
        self.assertEqual(identity.semester, "6")
        self.assertEqual(identity.email, "priya.nair2021@vitstudent.ac.in")
        self.assertEqual(identity.source, IdentitySource.EXTRACTED)

    def test_welcome_banner_with_defaults(self):
        identity = parse_identity("Welcome Arjun Mehta\nLogout", "24MEC0007", DOMAIN)
        self.assertEqual(identity.name, "Arjun Mehta")
        self.assertEqual(identity.branch, "Mechanical Engineering")
        self.assertEqual(identity.semester, "Current")
        self.assertEqual(identity.email, "24mec0007@vitstudent.ac.in")

    def test_no_name(self):
        with self.assertRaises(ExtractionFailedError):
            parse_identity("Loading, please wait", "24BCE1234", DOMAIN)

    def test_clean_name(self):
        self.assertEqual(clean_name("Mr. A. B. Kumar Raja Singh Dev"), "Kumar Raja Singh Dev")


class TestFallback(unittest.TestCase):

    def test_known_branch(self):
        identity = fallback_identity("24BCE1234", DOMAIN)
        self.assertEqual(identity.name, "VIT Student")
        self.assertEqual(identity.branch, "Civil Engineering")
        self.assertEqual(identity.semester, "Current")
        self.assertEqual(identity.email, "24bce1234@vitstudent.ac.in")
        self.assertTrue(identity.provisional)

    def test_unknown_branch(self):
        self.assertEqual(branch_for("22XYZ0001"), "XYZ Engineering")

    def test_to_dict(self):
        data = fallback_identity("24BIT0001", DOMAIN).to_dict()
        self.assertEqual(data["source"], "fallback")
        self.assertEqual(data["branch"], "Information Technology")
        self.assertIsNone(data["session_token"])


if __name__ == '__main__':
    unittest.main()
