"""
LocationCache behaviour: TTL expiry, failure handling and concurrency.
"""

import threading
import unittest

from qrtrace.errors import GeocoderError
from qrtrace.geocoder import Geocoder
from qrtrace.location_cache import LOCATION_UNAVAILABLE, LocationCache

from conftest import FakeClock, FakeGeocoder


class TestCaching(unittest.TestCase):

    def setUp(self):
        self.geocoder = FakeGeocoder()
        self.clock = FakeClock(0)
        self.cache = LocationCache(self.geocoder, ttl_seconds=3600, clock=self.clock)

    def test_second_lookup_is_served_from_cache(self):
        first = self.cache.resolve(40.7128, -74.006)
        second = self.cache.resolve(40.7128, -74.006)
        self.assertEqual(first, second)
        self.assertEqual(len(self.geocoder.calls), 1)

    def test_distinct_coordinates_are_distinct_keys(self):
        self.cache.resolve(40.7128, -74.006)
        self.cache.resolve(40.7128, -74.0061)
        self.assertEqual(len(self.geocoder.calls), 2)
        self.assertEqual(len(self.cache), 2)

    def test_hit_just_before_expiry(self):
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(3599)
        self.cache.resolve(1.0, 2.0)
        self.assertEqual(len(self.geocoder.calls), 1)

    def test_entry_expires_at_ttl(self):
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(3600)
        self.cache.resolve(1.0, 2.0)
        self.assertEqual(len(self.geocoder.calls), 2)

    def test_refreshed_entry_gets_new_ttl(self):
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(4000)
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(3000)
        self.cache.resolve(1.0, 2.0)
        self.assertEqual(len(self.geocoder.calls), 2)

    def test_purge_expired(self):
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(1800)
        self.cache.resolve(3.0, 4.0)
        self.clock.advance(1800)

        self.assertEqual(self.cache.purge_expired(), 1)
        self.assertEqual(len(self.cache), 1)

    def test_write_sweeps_expired_entries(self):
        self.cache.resolve(1.0, 2.0)
        self.clock.advance(3600)
        self.cache.resolve(3.0, 4.0)
        self.assertEqual(len(self.cache), 1)

    def test_ttl_must_be_positive(self):
        with self.assertRaises(ValueError):
            LocationCache(self.geocoder, ttl_seconds=0)


class TestLookupFailure(unittest.TestCase):

    def setUp(self):
        self.geocoder = FakeGeocoder()
        self.cache = LocationCache(self.geocoder, ttl_seconds=3600, clock=FakeClock(0))

    def test_failure_returns_fallback_name(self):
        self.geocoder.failing = True
        self.assertEqual(self.cache.resolve(1.0, 2.0), LOCATION_UNAVAILABLE)

    def test_failure_is_not_cached(self):
        self.geocoder.failing = True
        self.cache.resolve(1.0, 2.0)
        self.assertEqual(len(self.cache), 0)

        self.geocoder.failing = False
        name = self.cache.resolve(1.0, 2.0)
        self.assertNotEqual(name, LOCATION_UNAVAILABLE)
        self.assertEqual(len(self.geocoder.calls), 2)

    def test_unexpected_errors_propagate(self):
        class Broken(Geocoder):
            def lookup(self, latitude, longitude):
                raise RuntimeError("bug")

        cache = LocationCache(Broken(), ttl_seconds=60)
        with self.assertRaises(RuntimeError):
            cache.resolve(1.0, 2.0)


class BlockingGeocoder(Geocoder):
    """Blocks lookups for one coordinate until released."""

    def __init__(self, blocked_key):
        self.blocked_key = blocked_key
        self.entered = threading.Event()
        self.release = threading.Event()

    def lookup(self, latitude, longitude):
        if (latitude, longitude) == self.blocked_key:
            self.entered.set()
            if not self.release.wait(timeout=5):
                raise GeocoderError("never released")
        return f"{latitude},{longitude}"


class TestConcurrency(unittest.TestCase):

    def test_slow_lookup_does_not_block_other_keys(self):
        geocoder = BlockingGeocoder(blocked_key=(1.0, 1.0))
        cache = LocationCache(geocoder, ttl_seconds=60)
        results = {}

        t = threading.Thread(target=lambda: results.setdefault("slow", cache.resolve(1.0, 1.0)))
        t.start()
        try:
            self.assertTrue(geocoder.entered.wait(timeout=5))
            # answered while the other lookup is still in flight
            self.assertEqual(cache.resolve(2.0, 2.0), "2.0,2.0")
            self.assertNotIn("slow", results)
        finally:
            geocoder.release.set()
            t.join(timeout=5)

        self.assertEqual(results["slow"], "1.0,1.0")

    def test_concurrent_resolves_agree(self):
        geocoder = FakeGeocoder()
        cache = LocationCache(geocoder, ttl_seconds=60)
        results = []
        lock = threading.Lock()

        def worker():
            name = cache.resolve(5.0, 6.0)
            with lock:
                results.append(name)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        self.assertEqual(len(results), 20)
        self.assertEqual(len(set(results)), 1)
        self.assertEqual(len(cache), 1)


if __name__ == "__main__":
    unittest.main()
