"""
Batch issuance for qrtrace.

A batch is N unit tokens plus exactly one master token sharing a batchId.
Units are created sequentially; if one fails, the units already stored stay
stored and the caller learns how many exist. No compensating rollback is
attempted, so a failed batch needs manual reconciliation.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .db import Storage
from .errors import BatchIssuanceFailed, BatchNotFound, InvalidInput, StorageError
from .logging_config import audit_log
from .records import MasterTokenRecord, ProductRecord
from .tokens import MasterPayload, TokenCodec, UnitPayload
from .util import generate_id, now_epoch, utc_rfc3339

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000
MAX_FIELD_LENGTH = 255


@dataclass(frozen=True)
class IssuedBatch:
    """Result of a successful batch issuance."""
    batch_id: str
    unit_tokens: List[str]
    master_token: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "unitTokens": list(self.unit_tokens),
            "masterToken": self.master_token,
        }


def _validate_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise InvalidInput(field_name, "must be a string")
    if not value.strip():
        raise InvalidInput(field_name, "cannot be empty")
    if len(value) > MAX_FIELD_LENGTH:
        raise InvalidInput(field_name, f"must not exceed {MAX_FIELD_LENGTH} characters")
    return value


def validate_count(count: Any, max_count: int = MAX_BATCH_SIZE) -> int:
    """Batch size must be an integer in [1, max_count]."""
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidInput("count", "must be an integer")
    if count < MIN_BATCH_SIZE or count > max_count:
        raise InvalidInput("count", f"must be between {MIN_BATCH_SIZE} and {max_count}")
    return count


class BatchIssuer:
    """Creates unit tokens, product records and the batch master token."""

    def __init__(
        self,
        codec: TokenCodec,
        storage: Storage,
        max_batch_size: int = MAX_BATCH_SIZE,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        self._codec = codec
        self._storage = storage
        self._max = min(max_batch_size, MAX_BATCH_SIZE)
        self._new_id = id_factory or generate_id
        self._clock = clock or now_epoch

    def issue_batch(self, name: Any, station_id: Any, count: Any) -> IssuedBatch:
        """
        Issue `count` unit tokens and one master token.

        Raises:
            InvalidInput: bad name, station id or count (nothing stored)
            BatchIssuanceFailed: storage failed part-way; `created` units remain
        """
        name = _validate_text(name, "name")
        station_id = _validate_text(station_id, "stationId")
        count = validate_count(count, self._max)

        batch_id = self._new_id()
        unit_tokens: List[str] = []

        for _ in range(count):
            unit_id = self._new_id()
            token = self._codec.issue(UnitPayload(name=name, station_id=station_id, unit_id=unit_id))
            record = ProductRecord(
                unit_id=unit_id,
                name=name,
                station_id=station_id,
                batch_id=batch_id,
                signed_token=token,
                created_at=self._clock(),
            )
            try:
                self._storage.create_product(record)
            except StorageError as e:
                self._fail(batch_id, len(unit_tokens), count, e)
            unit_tokens.append(token)

        master_token = self._codec.issue(MasterPayload(batch_id=batch_id))
        try:
            self._storage.create_master_token(
                MasterTokenRecord(batch_id=batch_id, token=master_token, created_at=self._clock())
            )
        except StorageError as e:
            self._fail(batch_id, len(unit_tokens), count, e)

        audit_log.batch_issued(batch_id, name, station_id, count)
        return IssuedBatch(batch_id=batch_id, unit_tokens=unit_tokens, master_token=master_token)

    def get_batch_tokens(self, batch_id: str) -> Dict[str, Any]:
        """
        Stored tokens of a batch, for packaging collaborators.

        A partially materialized batch has units but masterToken None.

        Raises:
            BatchNotFound: nothing stored for batch_id
        """
        products = self._storage.find_products_by_batch(batch_id)
        master = self._storage.find_master_token_by_batch(batch_id)
        if not products and master is None:
            raise BatchNotFound(batch_id)
        return {
            "batchId": batch_id,
            "createdAt": utc_rfc3339(master.created_at) if master else None,
            "masterToken": master.token if master else None,
            "unitTokens": [p.signed_token for p in products],
        }

    @staticmethod
    def _fail(batch_id: str, created: int, requested: int, cause: StorageError):
        audit_log.batch_issuance_failed(batch_id, created, requested, str(cause))
        raise BatchIssuanceFailed(batch_id, created, requested) from cause
