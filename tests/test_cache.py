import unittest
from display_sync.cache import TTLCache

class FakeClock:
    def __init__(self):
        self.now = 1000.0
    def __call__(self):
        return self.now

class TestTTLCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache(clock=self.clock)

    def test_set_then_get(self):
        self.cache.set("media", [1, 2, 3], 5)
        self.assertEqual(self.cache.get("media"), [1, 2, 3])
        self.assertTrue(self.cache.has("media"))

    def test_missing_key(self):
        self.assertIsNone(self.cache.get("nope"))
        self.assertFalse(self.cache.has("nope"))

    def test_valid_exactly_at_expiry(self):
        self.cache.set("k", "v", 1)
        self.clock.now += 60
        self.assertEqual(self.cache.get("k"), "v")

    def test_expired_one_tick_after(self):
        self.cache.set("k", "v", 1)
        self.clock.now += 60.001
        self.assertIsNone(self.cache.get("k"))
        # Purged on access
        self.assertNotIn("k", self.cache._values)

    def test_has_purges_expired(self):
        self.cache.set("k", "v", 1)
        self.clock.now += 61
        self.assertFalse(self.cache.has("k"))
        self.assertNotIn("k", self.cache._expires)

    def test_zero_ttl_never_expires(self):
        self.cache.set("k", "v", 0)
        self.clock.now += 365 * 86400
        self.assertEqual(self.cache.get("k"), "v")

    def test_reset_without_ttl_clears_old_expiry(self):
        self.cache.set("k", "v", 1)
        self.cache.set("k", "v2", 0)
        self.clock.now += 3600
        self.assertEqual(self.cache.get("k"), "v2")

    def test_delete_is_idempotent(self):
        self.cache.set("k", "v", 5)
        self.cache.delete("k")
        self.cache.delete("k")
        self.assertIsNone(self.cache.get("k"))

    def test_clear(self):
        self.cache.set("a", 1, 5)
        self.cache.set("b", 2, 0)
        self.cache.clear()
        self.assertFalse(self.cache.has("a"))
        self.assertFalse(self.cache.has("b"))

if __name__ == '__main__':
    unittest.main()
