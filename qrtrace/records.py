"""
Stored record types for qrtrace.

These are the shapes the storage boundary hands back to the core. They are
plain immutable values; the core never mutates a record after creation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .util import utc_rfc3339


class Channel(str, Enum):
    """The two independent scan ledgers."""
    CONSUMER = "consumer"
    SELLER = "seller"


@dataclass(frozen=True)
class ProductRecord:
    """Persisted projection of a unit token."""
    unit_id: str
    name: str
    station_id: str
    batch_id: str
    signed_token: str
    created_at: int

    def identity(self) -> Dict[str, Any]:
        return {"name": self.name, "stationId": self.station_id, "unitId": self.unit_id}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unitId": self.unit_id,
            "name": self.name,
            "stationId": self.station_id,
            "batchId": self.batch_id,
            "signedToken": self.signed_token,
            "createdAt": utc_rfc3339(self.created_at),
        }


@dataclass(frozen=True)
class MasterTokenRecord:
    """The single master token stored for a batch."""
    batch_id: str
    token: str
    created_at: int


@dataclass(frozen=True)
class ScanEntry:
    """One observed scan on one ledger. Append-only."""
    product_id: str
    latitude: float
    longitude: float
    location_name: str
    scanned_at: int
    channel: Channel
    scan_id: Optional[int] = None

    def to_history_dict(self) -> Dict[str, Any]:
        return {
            "latitude": float(self.latitude),
            "longitude": float(self.longitude),
            "locationName": self.location_name,
            "scannedAt": utc_rfc3339(self.scanned_at),
        }
