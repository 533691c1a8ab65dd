"""
Scan recording for qrtrace.

Every scan verifies the token, works out whether it names one unit or a whole
batch, and appends ledger rows on the channel chosen by the caller. Scans
are never deduplicated: the ledger is a provenance trail.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .db import Storage
from .errors import BatchNotFound, InvalidInput, ProductNotFound, TokenRejected
from .location_cache import LocationCache
from .logging_config import audit_log
from .records import Channel, ProductRecord, ScanEntry
from .tokens import MasterPayload, TokenCodec, UnitPayload
from .util import now_epoch, utc_rfc3339


@dataclass(frozen=True)
class UnitScanResult:
    product: ProductRecord
    location_name: str
    scanned_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "unit",
            "product": self.product.to_dict(),
            "locationName": self.location_name,
            "scannedAt": utc_rfc3339(self.scanned_at),
        }


@dataclass(frozen=True)
class BatchScanResult:
    batch_id: str
    products: List[ProductRecord]
    location_name: str
    scanned_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "batch",
            "batchId": self.batch_id,
            "products": [p.identity() for p in self.products],
            "locationName": self.location_name,
            "scannedAt": utc_rfc3339(self.scanned_at),
        }


ScanResult = Union[UnitScanResult, BatchScanResult]


def validate_coordinates(latitude: Any, longitude: Any):
    """Coordinates must be finite numbers within WGS84 bounds."""
    coords = []
    for field_name, value, bound in (("latitude", latitude, 90), ("longitude", longitude, 180)):
        if value is None:
            raise InvalidInput(field_name, "is required")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInput(field_name, "must be a number")
        try:
            value = float(value)
        except OverflowError:
            raise InvalidInput(field_name, f"must be between -{bound} and {bound}")
        if not math.isfinite(value) or abs(value) > bound:
            raise InvalidInput(field_name, f"must be between -{bound} and {bound}")
        coords.append(value)
    return coords[0], coords[1]


class ScanRecorder:
    """Verifies scanned tokens and appends consumer or seller ledger rows."""

    def __init__(
        self,
        codec: TokenCodec,
        storage: Storage,
        locations: LocationCache,
        clock: Optional[Callable[[], int]] = None
    ):
        self._codec = codec
        self._storage = storage
        self._locations = locations
        self._clock = clock or now_epoch

    def record_scan(self, token: Any, latitude: Any, longitude: Any, channel: Channel) -> ScanResult:
        """
        Record one scan event.

        Raises:
            InvalidInput: missing or out-of-range coordinates
            TokenRejected: token failed verification
            BatchNotFound / ProductNotFound: token is valid but unknown
        """
        channel = Channel(channel)
        latitude, longitude = validate_coordinates(latitude, longitude)

        try:
            payload = self._codec.verify(token)
        except TokenRejected as e:
            audit_log.token_rejected(token, e.reason.value, channel.value)
            raise

        if isinstance(payload, MasterPayload):
            return self._record_batch(payload, latitude, longitude, channel)
        if isinstance(payload, UnitPayload):
            return self._record_unit(payload, latitude, longitude, channel)
        raise TypeError(f"unexpected payload {type(payload).__name__}")

    def _record_batch(
        self,
        payload: MasterPayload,
        latitude: float,
        longitude: float,
        channel: Channel
    ) -> BatchScanResult:
        products = self._storage.find_products_by_batch(payload.batch_id)
        if not products:
            raise BatchNotFound(payload.batch_id)

        location_name = self._locations.resolve(latitude, longitude)
        scanned_at = self._clock()
        entries = [
            ScanEntry(
                product_id=p.unit_id,
                latitude=latitude,
                longitude=longitude,
                location_name=location_name,
                scanned_at=scanned_at,
                channel=channel,
            )
            for p in products
        ]
        self._storage.append_scans(channel, entries)

        audit_log.scan_recorded(channel.value, "batch", [p.unit_id for p in products],
                                location_name, batch_id=payload.batch_id)
        return BatchScanResult(
            batch_id=payload.batch_id,
            products=products,
            location_name=location_name,
            scanned_at=scanned_at,
        )

    def _record_unit(
        self,
        payload: UnitPayload,
        latitude: float,
        longitude: float,
        channel: Channel
    ) -> UnitScanResult:
        product = self._storage.find_product_by_unit_id(payload.unit_id)
        if product is None:
            raise ProductNotFound(payload.unit_id)

        location_name = self._locations.resolve(latitude, longitude)
        scanned_at = self._clock()
        self._storage.append_scan(channel, ScanEntry(
            product_id=product.unit_id,
            latitude=latitude,
            longitude=longitude,
            location_name=location_name,
            scanned_at=scanned_at,
            channel=channel,
        ))

        audit_log.scan_recorded(channel.value, "unit", [product.unit_id], location_name,
                                batch_id=product.batch_id)
        return UnitScanResult(product=product, location_name=location_name, scanned_at=scanned_at)
