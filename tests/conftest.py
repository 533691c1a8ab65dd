import threading

import pytest
from fastapi.testclient import TestClient

from qrtrace.db import SqliteStorage
from qrtrace.errors import GeocoderError
from qrtrace.geocoder import Geocoder
from qrtrace.history import HistoryAggregator
from qrtrace.issuer import BatchIssuer
from qrtrace.keys import StaticSecretProvider
from qrtrace.location_cache import LocationCache
from qrtrace.main import build_services, create_app
from qrtrace.scans import ScanRecorder
from qrtrace.tokens import TokenCodec
from qrtrace.util import b64url_encode, canonicalize

TEST_SECRET = "qrtrace-test-secret"


class FakeGeocoder(Geocoder):
    """Records every lookup; fails while `failing` is set."""

    def __init__(self, name="Main Street 1, Springfield"):
        self.name = name
        self.failing = False
        self.calls = []
        self._lock = threading.Lock()

    def lookup(self, latitude, longitude):
        with self._lock:
            self.calls.append((latitude, longitude))
        if self.failing:
            raise GeocoderError("geocoder unavailable")
        return f"{self.name} ({latitude}, {longitude})"


class FakeClock:
    def __init__(self, start=1_700_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def sign_claims(secrets, claims):
    """Build a correctly signed token around arbitrary claims."""
    body = canonicalize(claims)
    return f"{b64url_encode(body)}.{b64url_encode(secrets.sign(body))}"


@pytest.fixture
def secrets():
    return StaticSecretProvider(TEST_SECRET)


@pytest.fixture
def codec(secrets):
    return TokenCodec(secrets)


@pytest.fixture
def storage(tmp_path):
    store = SqliteStorage(tmp_path / "qrtrace.db")
    store.init()
    yield store
    store.close()


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def locations(geocoder):
    return LocationCache(geocoder, ttl_seconds=3600)


@pytest.fixture
def issuer(codec, storage):
    return BatchIssuer(codec, storage)


@pytest.fixture
def recorder(codec, storage, locations, clock):
    return ScanRecorder(codec, storage, locations, clock=clock)


@pytest.fixture
def history(storage):
    return HistoryAggregator(storage)


@pytest.fixture
def services(storage, secrets, geocoder):
    return build_services(storage=storage, secrets=secrets, geocoder=geocoder)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))
