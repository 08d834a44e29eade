"""Tests for LinkConfig defaults, validation and environment parsing."""
from __future__ import annotations

import unittest

from blescanner.config import LinkConfig


class LinkConfigTest(unittest.TestCase):
    def test_defaults(self) -> None:
        config = LinkConfig()
        self.assertEqual(config.max_retries, 3)
        self.assertEqual(config.retry_delay, 0.0)
        self.assertTrue(config.clear_devices_on_scan)
        self.assertTrue(config.pairing_enabled)
        self.assertFalse(config.pairing_failure_consumes_retry)
        self.assertIsNone(config.adapter)

    def test_rejects_invalid_values(self) -> None:
        for kwargs in (
            {"max_retries": -1},
            {"retry_delay": -0.5},
            {"scan_timeout": 0},
            {"connect_timeout": 0},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValueError):
                    LinkConfig(**kwargs)

    def test_from_env(self) -> None:
        config = LinkConfig.from_env(
            {
                "BLESCANNER_MAX_RETRIES": "5",
                "BLESCANNER_SCAN_TIMEOUT": "none",
                "BLESCANNER_CLEAR_DEVICES_ON_SCAN": "no",
                "BLESCANNER_PAIRING_FAILURE_CONSUMES_RETRY": "1",
                "BLESCANNER_ADAPTER": "hci1",
                "UNRELATED": "ignored",
            }
        )
        self.assertEqual(config.max_retries, 5)
        self.assertIsNone(config.scan_timeout)
        self.assertFalse(config.clear_devices_on_scan)
        self.assertTrue(config.pairing_failure_consumes_retry)
        self.assertEqual(config.adapter, "hci1")

    def test_from_env_names_the_bad_variable(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            LinkConfig.from_env({"BLESCANNER_PAIRING_ENABLED": "maybe"})
        self.assertIn("BLESCANNER_PAIRING_ENABLED", str(ctx.exception))

    def test_with_overrides_skips_none(self) -> None:
        base = LinkConfig(max_retries=2, adapter="hci0")
        updated = base.with_overrides(max_retries=None, adapter="hci1", scan_timeout=1.5)
        self.assertEqual(updated.max_retries, 2)
        self.assertEqual(updated.adapter, "hci1")
        self.assertEqual(updated.scan_timeout, 1.5)
        self.assertEqual(base.adapter, "hci0")

    def test_with_overrides_rejects_unknown_fields(self) -> None:
        with self.assertRaises(ValueError):
            LinkConfig().with_overrides(retries=4)


if __name__ == "__main__":
    unittest.main()
