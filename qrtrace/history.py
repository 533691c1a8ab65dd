"""
Scan history for qrtrace.

History is looked up by the exact stored token string, NOT by verifying the
token: a master token value selects its batch, a unit token value selects its
product. Only the seller ledger is exposed here.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Union

from .db import Storage
from .errors import NotFound
from .records import Channel, ProductRecord, ScanEntry
from .util import utc_rfc3339


@dataclass(frozen=True)
class UnitHistory:
    product: ProductRecord
    scans: List[ScanEntry]

    def to_dict(self) -> Dict[str, Any]:
        out = self.product.identity()
        out["scanHistory"] = [s.to_history_dict() for s in self.scans]
        return out


@dataclass(frozen=True)
class BatchHistory:
    batch_id: str
    created_at: int
    units: List[UnitHistory]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "batch",
            "batchId": self.batch_id,
            "createdAt": utc_rfc3339(self.created_at),
            "products": [u.to_dict() for u in self.units],
        }


History = Union[BatchHistory, UnitHistory]


def history_to_dict(history: History) -> Dict[str, Any]:
    """JSON shape for either history variant."""
    if isinstance(history, BatchHistory):
        return history.to_dict()
    return {"type": "unit", "product": history.to_dict()}


class HistoryAggregator:
    """Rebuilds seller-ledger history for a unit or a whole batch."""

    def __init__(self, storage: Storage):
        self._storage = storage

    def get_history(self, token: str) -> History:
        """
        Raises:
            NotFound: the token matches no stored master or unit token
        """
        if not isinstance(token, str) or not token:
            raise NotFound("token is required")

        master = self._storage.find_master_token_by_value(token)
        if master is not None:
            products = self._storage.find_products_by_batch(master.batch_id)
            return BatchHistory(
                batch_id=master.batch_id,
                created_at=master.created_at,
                units=[self._unit_history(p) for p in products],
            )

        product = self._storage.find_product_by_token(token)
        if product is not None:
            return self._unit_history(product)

        raise NotFound("no batch or product for this token")

    def _unit_history(self, product: ProductRecord) -> UnitHistory:
        scans = self._storage.list_scans_for_product(Channel.SELLER, product.unit_id, newest_first=True)
        return UnitHistory(product=product, scans=scans)
