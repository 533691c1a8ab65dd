import math
import uuid

import pytest

from qrtrace.errors import (
    BatchNotFound,
    InvalidInput,
    ProductNotFound,
    RejectReason,
    TokenRejected,
)
from qrtrace.keys import StaticSecretProvider
from qrtrace.location_cache import LOCATION_UNAVAILABLE
from qrtrace.records import Channel
from qrtrace.scans import BatchScanResult, UnitScanResult, validate_coordinates
from qrtrace.tokens import MasterPayload, TokenCodec, UnitPayload

LAT, LON = 43.7696, 11.2558


def _rows(storage, channel, unit_id):
    return storage.list_scans_for_product(channel, unit_id)


def test_unit_scan_consumer(issuer, recorder, storage, clock):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 3)
    token = batch.unit_tokens[1]

    result = recorder.record_scan(token, LAT, LON, Channel.CONSUMER)

    assert isinstance(result, UnitScanResult)
    assert result.product.signed_token == token
    assert result.scanned_at == clock.now
    rows = _rows(storage, Channel.CONSUMER, result.product.unit_id)
    assert len(rows) == 1
    assert rows[0].latitude == LAT and rows[0].longitude == LON
    assert rows[0].location_name == result.location_name
    assert _rows(storage, Channel.SELLER, result.product.unit_id) == []


def test_master_scan_fans_out_to_every_unit(issuer, recorder, storage, geocoder):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 5)

    result = recorder.record_scan(batch.master_token, LAT, LON, Channel.SELLER)

    assert isinstance(result, BatchScanResult)
    assert result.batch_id == batch.batch_id
    assert len(result.products) == 5
    assert storage.stats()["seller_scans_count"] == 5
    assert storage.stats()["consumer_scans_count"] == 0

    entries = [_rows(storage, Channel.SELLER, p.unit_id) for p in result.products]
    assert all(len(e) == 1 for e in entries)
    assert len({e[0].scanned_at for e in entries}) == 1
    assert {e[0].location_name for e in entries} == {result.location_name}
    # one lookup for the whole batch
    assert len(geocoder.calls) == 1


def test_batch_result_to_dict(issuer, recorder):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 2)
    out = recorder.record_scan(batch.master_token, LAT, LON, Channel.SELLER).to_dict()

    assert out["type"] == "batch"
    assert out["batchId"] == batch.batch_id
    assert set(out["products"][0]) == {"name", "stationId", "unitId"}
    assert out["scannedAt"].endswith("Z")


def test_repeated_scans_are_not_deduplicated(issuer, recorder, storage):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 1)
    token = batch.unit_tokens[0]
    recorder.record_scan(token, LAT, LON, Channel.SELLER)
    recorder.record_scan(token, LAT, LON, Channel.SELLER)
    assert storage.stats()["seller_scans_count"] == 2


def test_channel_as_string(issuer, recorder, storage):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 1)
    recorder.record_scan(batch.unit_tokens[0], LAT, LON, "seller")
    assert storage.stats()["seller_scans_count"] == 1


def test_cached_location_reused_across_scans(issuer, recorder, geocoder):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 2)
    for token in batch.unit_tokens:
        recorder.record_scan(token, LAT, LON, Channel.CONSUMER)
    assert len(geocoder.calls) == 1


def test_geocoder_failure_records_fallback(issuer, recorder, storage, geocoder):
    geocoder.failing = True
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 1)

    result = recorder.record_scan(batch.unit_tokens[0], LAT, LON, Channel.CONSUMER)

    assert result.location_name == LOCATION_UNAVAILABLE
    rows = _rows(storage, Channel.CONSUMER, result.product.unit_id)
    assert rows[0].location_name == LOCATION_UNAVAILABLE


def test_rejected_token_writes_nothing(recorder, storage):
    with pytest.raises(TokenRejected) as exc:
        recorder.record_scan("not-a-token", LAT, LON, Channel.CONSUMER)
    assert exc.value.reason == RejectReason.MALFORMED
    assert storage.stats()["consumer_scans_count"] == 0


def test_foreign_token_rejected(issuer, recorder, storage):
    foreign = TokenCodec(StaticSecretProvider("another-deployment"))
    token = foreign.issue(UnitPayload("Olive Oil 1L", "station-07", str(uuid.uuid4())))
    with pytest.raises(TokenRejected) as exc:
        recorder.record_scan(token, LAT, LON, Channel.SELLER)
    assert exc.value.reason == RejectReason.SIGNATURE_MISMATCH


def test_valid_unit_token_without_product(codec, recorder, geocoder):
    token = codec.issue(UnitPayload("Olive Oil 1L", "station-07", str(uuid.uuid4())))
    with pytest.raises(ProductNotFound):
        recorder.record_scan(token, LAT, LON, Channel.CONSUMER)
    assert geocoder.calls == []


def test_valid_master_token_without_batch(codec, recorder, storage):
    token = codec.issue(MasterPayload(batch_id=str(uuid.uuid4())))
    with pytest.raises(BatchNotFound):
        recorder.record_scan(token, LAT, LON, Channel.SELLER)
    assert storage.stats()["seller_scans_count"] == 0


@pytest.mark.parametrize("lat, lon, field", [
    (None, LON, "latitude"),
    (LAT, None, "longitude"),
    (90.0001, LON, "latitude"),
    (-91, LON, "latitude"),
    (LAT, 180.5, "longitude"),
    (LAT, -181, "longitude"),
    (math.nan, LON, "latitude"),
    (LAT, math.inf, "longitude"),
    ("43.7", LON, "latitude"),
    (True, LON, "latitude"),
    (10 ** 400, LON, "latitude"),
    (LAT, -(10 ** 400), "longitude"),
])
def test_bad_coordinates(issuer, recorder, storage, geocoder, lat, lon, field):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 1)
    with pytest.raises(InvalidInput) as exc:
        recorder.record_scan(batch.unit_tokens[0], lat, lon, Channel.CONSUMER)
    assert exc.value.field == field
    assert storage.stats()["consumer_scans_count"] == 0
    assert geocoder.calls == []


def test_boundary_coordinates_accepted():
    assert validate_coordinates(90, -180) == (90.0, -180.0)
    assert validate_coordinates(-90.0, 180.0) == (-90.0, 180.0)


def test_unknown_channel(issuer, recorder):
    batch = issuer.issue_batch("Olive Oil 1L", "station-07", 1)
    with pytest.raises(ValueError):
        recorder.record_scan(batch.unit_tokens[0], LAT, LON, "warehouse")
