"""
Unit tests for the catalog TTL cache.

Tests:
- Entries expire after the TTL
- Clearing the cache
"""

from cloudfleet.cache import TTLCache

from fakes import FakeClock


class TestTTLCache:
    """Test TTLCache."""

    def test_get_missing(self):
        """Test a missing key returns None."""
        assert TTLCache(60, FakeClock()).get("regions") is None

    def test_entry_valid_until_ttl(self):
        """Test an entry is served until its TTL elapses."""
        clock = FakeClock()
        cache = TTLCache(60, clock)
        cache.set("regions", ["eastus"])

        clock.sleep(59)
        assert cache.get("regions") == ["eastus"]

        clock.sleep(1)
        assert cache.get("regions") is None

    def test_set_refreshes_expiry(self):
        """Test overwriting an entry restarts its TTL."""
        clock = FakeClock()
        cache = TTLCache(10, clock)
        cache.set("plans", [1])
        clock.sleep(8)
        cache.set("plans", [2])
        clock.sleep(8)

        assert cache.get("plans") == [2]

    def test_clear(self):
        """Test clear drops every entry."""
        cache = TTLCache(60, FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()

        assert cache.get("a") is None
        assert cache.get("b") is None
