"""
Unit tests for glpi_bridge.utils.dates module
Tests date parsing and formatting functions
"""
import unittest
from datetime import date, datetime, timezone, timedelta
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from glpi_bridge.utils.dates import (
    lookback_start, months_between, parse_date, to_glpi_date, to_glpi_datetime, utc_now_iso
)


class TestDateUtils(unittest.TestCase):
    """Test date parsing and formatting utilities."""

    def test_parse_iso(self):
        self.assertEqual(parse_date("2024-01-15"), datetime(2024, 1, 15))
        self.assertEqual(parse_date("2024-01-15T10:30:00"), datetime(2024, 1, 15, 10, 30))

    def test_parse_day_first(self):
        """Spreadsheet dates are written day first."""
        self.assertEqual(parse_date("15/01/2024 10:30"), datetime(2024, 1, 15, 10, 30))
        self.assertEqual(parse_date("05/03/2024"), datetime(2024, 3, 5))

    def test_parse_date_objects(self):
        self.assertEqual(parse_date(date(2024, 2, 1)), datetime(2024, 2, 1))
        value = datetime(2024, 2, 1, 8, 0)
        self.assertIs(parse_date(value), value)

    def test_parse_invalid(self):
        self.assertIsNone(parse_date(None))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date("not a date"))

    def test_parse_aware_value_is_naive(self):
        result = parse_date("2024-01-15T10:30:00Z")
        self.assertIsNotNone(result)
        self.assertIsNone(result.tzinfo)

    def test_glpi_formats(self):
        self.assertEqual(to_glpi_datetime("2024-01-15T10:30:00"), "2024-01-15 10:30:00")
        self.assertEqual(to_glpi_date("15/01/2024"), "2024-01-15")
        self.assertIsNone(to_glpi_datetime(None))
        self.assertRegex(to_glpi_datetime(datetime.now()), r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$')

    def test_months_between(self):
        self.assertEqual(months_between("2024-01-01", "2025-01-01"), 12)
        self.assertEqual(months_between("2024-01-01", "2024-01-05"), 1)
        self.assertEqual(months_between("2024-01-01", None), 12)
        self.assertEqual(months_between("x", "2024-01-01", default=6), 6)


class TestSyncWindow(unittest.TestCase):
    """Test timestamps used by the sync state."""

    def test_utc_now_iso_is_aware(self):
        parsed = datetime.fromisoformat(utc_now_iso())
        self.assertEqual(parsed.utcoffset(), timedelta(0))

    def test_lookback_from_last_sync(self):
        result = lookback_start("2024-03-01T10:00:00+00:00")
        self.assertEqual(result, datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc))

    def test_naive_last_sync_is_utc(self):
        result = lookback_start("2024-03-01T10:00:00")
        self.assertEqual(result.tzinfo, timezone.utc)

    def test_default_window(self):
        before = datetime.now(timezone.utc) - timedelta(hours=24)
        result = lookback_start(None)
        after = datetime.now(timezone.utc) - timedelta(hours=24)
        self.assertTrue(before <= result <= after)


if __name__ == '__main__':
    unittest.main()
