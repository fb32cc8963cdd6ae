from __future__ import annotations

import unittest

from utils.addressing import ZERO_ADDRESS, is_address, is_zero_address, normalize_address, same_address
from utils.ttl_cache import TTLCache


class AddressingTests(unittest.TestCase):
    def test_normalize_and_compare(self) -> None:
        mixed = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
        self.assertEqual(normalize_address(f"  {mixed} "), mixed.lower())
        self.assertTrue(same_address(mixed, mixed.lower()))
        self.assertFalse(same_address("", ""))
        self.assertFalse(same_address(None, mixed))

    def test_validation(self) -> None:
        self.assertTrue(is_address("0x" + "a" * 40))
        self.assertFalse(is_address("0x" + "a" * 39))
        self.assertFalse(is_address("a" * 42))
        self.assertFalse(is_address(None))
        self.assertTrue(is_zero_address(ZERO_ADDRESS))
        self.assertTrue(is_zero_address(""))
        self.assertFalse(is_zero_address("0x" + "1" * 40))


class TTLCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = [0.0]
        self.cache: TTLCache[str] = TTLCache(10, now=lambda: self.clock[0])

    def test_entries_expire_after_ttl(self) -> None:
        self.cache.set("k", "v")
        self.clock[0] = 10.0
        self.assertEqual(self.cache.get("k"), "v")
        self.clock[0] = 10.01
        self.assertIsNone(self.cache.get("k"))
        self.assertEqual(len(self.cache), 0)

    def test_overwrite_refreshes_age(self) -> None:
        self.cache.set("k", "old")
        self.clock[0] = 8.0
        self.cache.set("k", "new")
        self.clock[0] = 15.0
        self.assertEqual(self.cache.get("k"), "new")

    def test_pop_and_clear(self) -> None:
        self.cache.set("a", "1")
        self.cache.set("b", "2")
        self.cache.pop("a")
        self.cache.pop("missing")
        self.assertIsNone(self.cache.get("a"))
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)


if __name__ == "__main__":
    unittest.main()
