"""
qrtrace

Signed QR tokens for physical product units and their batches, scan
verification, and a provenance ledger of where and when each unit was seen.

Usage:
    from qrtrace import (
        TokenCodec, StaticSecretProvider, SqliteStorage,
        BatchIssuer, ScanRecorder, HistoryAggregator, LocationCache, Channel,
    )

    codec = TokenCodec(StaticSecretProvider("change-me"))
    storage = SqliteStorage("data/qrtrace.db")
    storage.init()

    batch = BatchIssuer(codec, storage).issue_batch("Olive Oil 1L", "station-07", 24)
"""

__version__ = "0.1.0"

from .db import SqliteStorage, Storage
from .errors import (
    BatchIssuanceFailed,
    BatchNotFound,
    ConfigError,
    GeocoderError,
    InvalidInput,
    NotFound,
    ProductNotFound,
    QRTraceError,
    RejectReason,
    StorageError,
    TokenRejected,
)
from .geocoder import Geocoder, NominatimGeocoder
from .history import BatchHistory, HistoryAggregator, UnitHistory
from .issuer import BatchIssuer, IssuedBatch
from .keys import FileSecretProvider, SecretProvider, StaticSecretProvider
from .location_cache import LOCATION_UNAVAILABLE, LocationCache
from .records import Channel, MasterTokenRecord, ProductRecord, ScanEntry
from .scans import BatchScanResult, ScanRecorder, UnitScanResult
from .tokens import MasterPayload, TokenCodec, TokenPayload, UnitPayload

__all__ = [
    "__version__",

    # Tokens
    "TokenCodec",
    "TokenPayload",
    "UnitPayload",
    "MasterPayload",
    "SecretProvider",
    "StaticSecretProvider",
    "FileSecretProvider",

    # Records and storage
    "Channel",
    "ProductRecord",
    "MasterTokenRecord",
    "ScanEntry",
    "Storage",
    "SqliteStorage",

    # Services
    "BatchIssuer",
    "IssuedBatch",
    "ScanRecorder",
    "UnitScanResult",
    "BatchScanResult",
    "HistoryAggregator",
    "BatchHistory",
    "UnitHistory",
    "LocationCache",
    "LOCATION_UNAVAILABLE",
    "Geocoder",
    "NominatimGeocoder",

    # Errors
    "QRTraceError",
    "ConfigError",
    "InvalidInput",
    "RejectReason",
    "TokenRejected",
    "NotFound",
    "ProductNotFound",
    "BatchNotFound",
    "BatchIssuanceFailed",
    "StorageError",
    "GeocoderError",
]
