"""
Time-bounded cache of reverse-geocoding results.

Shields scans from repeated external lookups for the same coordinates.
Entries expire lazily: they are dropped when read past their expiry or by an
opportunistic purge, and a hit is never served at or after expiry. Failed
lookups are never cached.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .errors import GeocoderError
from .geocoder import Geocoder
from .logging_config import audit_log

LOCATION_UNAVAILABLE = "Unknown location"

DEFAULT_TTL_SECONDS = 3600

CoordinateKey = Tuple[float, float]


class LocationCache:
    """
    Thread-safe coordinate -> place name cache with TTL.

    The lock guards the map only; it is released while the geocoder runs, so
    a slow lookup never blocks other keys or other requests.
    """

    def __init__(
        self,
        geocoder: Geocoder,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._geocoder = geocoder
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[CoordinateKey, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def resolve(self, latitude: float, longitude: float) -> str:
        """
        Place name for the exact coordinate pair.

        Returns LOCATION_UNAVAILABLE when the lookup fails; the next call for
        the same key retries.
        """
        key = (latitude, longitude)
        cached = self._get(key)
        if cached is not None:
            return cached

        try:
            name = self._geocoder.lookup(latitude, longitude)
        except GeocoderError as e:
            audit_log.location_lookup_failed(latitude, longitude, str(e))
            return LOCATION_UNAVAILABLE

        now = self._clock()
        with self._lock:
            # every write also sweeps expired entries
            self._drop_expired(now)
            self._entries[key] = (name, now + self._ttl)
        return name

    def _get(self, key: CoordinateKey) -> Optional[str]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            name, expires_at = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return name

    def purge_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._drop_expired(self._clock())

    def _drop_expired(self, now: float) -> int:
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
