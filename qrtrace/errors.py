"""
Error taxonomy for qrtrace.

Every failure the core reports derives from QRTraceError. The HTTP layer maps
each class to a status code and a stable error code; nothing here retries.
"""

from enum import Enum
from typing import Optional


class QRTraceError(Exception):
    """Base class for all qrtrace errors."""
    code = "INTERNAL_ERROR"


class ConfigError(QRTraceError):
    """Raised when required configuration is missing or invalid."""
    code = "CONFIG_ERROR"


class InvalidInput(QRTraceError):
    """Raised when request parameters fail validation. No side effects."""
    code = "INVALID_INPUT"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class RejectReason(str, Enum):
    """Why a token failed verification."""
    MALFORMED = "MALFORMED"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    EXPIRED = "EXPIRED"
    UNRECOGNIZED_PAYLOAD = "UNRECOGNIZED_PAYLOAD"


class TokenRejected(QRTraceError):
    """Raised when a token cannot be accepted. No side effects."""
    code = "TOKEN_REJECTED"

    def __init__(self, reason: RejectReason, details: Optional[str] = None):
        self.reason = reason
        self.details = details
        message = reason.value if not details else f"{reason.value}: {details}"
        super().__init__(message)


class NotFound(QRTraceError):
    """Raised when a product, batch or history lookup finds nothing."""
    code = "NOT_FOUND"


class ProductNotFound(NotFound):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(f"no product with unitId {unit_id}")


class BatchNotFound(NotFound):
    code = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"no products in batch {batch_id}")


class BatchIssuanceFailed(QRTraceError):
    """
    Raised when a batch is only partially materialized.

    Product records created before the failure are NOT rolled back;
    `created` is how many units of the batch exist in storage.
    """
    code = "BATCH_ISSUANCE_FAILED"

    def __init__(self, batch_id: str, created: int, requested: int):
        self.batch_id = batch_id
        self.created = created
        self.requested = requested
        super().__init__(
            f"batch {batch_id} failed after {created} of {requested} units"
        )


class StorageError(QRTraceError):
    """Raised when the storage collaborator fails."""
    code = "STORAGE_ERROR"


class GeocoderError(QRTraceError):
    """Raised when a reverse-geocoding lookup fails."""
    code = "LOCATION_LOOKUP_FAILED"
