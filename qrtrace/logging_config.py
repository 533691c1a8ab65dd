"""
Logging setup for qrtrace.

JSON-lines output for the service plus an audit channel ("qrtrace.audit")
carrying one event per issued batch, rejected token, recorded scan, failed
location lookup and throttled request.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

from .util import mask_sensitive, utc_rfc3339

# Set per HTTP request by the request-id middleware
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

PLAIN_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


class StructuredFormatter(logging.Formatter):
    """Renders each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": utc_rfc3339(int(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.funcName and record.funcName != "<module>":
            entry["source"] = f"{record.module}.{record.funcName}:{record.lineno}"

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(fields)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class AuditLogger:
    """
    Domain event log.

    Every event is a normal log record on the audit logger whose
    `extra_fields` hold the event payload; StructuredFormatter flattens them
    into the JSON line. Token values are masked.
    """

    def __init__(self, name: str = "qrtrace.audit"):
        self._logger = logging.getLogger(name)

    def _event(self, level: int, event_type: str, summary: str, **fields) -> None:
        fields["event_type"] = event_type
        request_id = request_id_var.get()
        if request_id:
            fields["request_id"] = request_id
        self._logger.log(level, "%s: %s", event_type, summary, extra={"extra_fields": fields})

    def batch_issued(self, batch_id: str, name: str, station_id: str, count: int) -> None:
        self._event(
            logging.INFO, "BATCH_ISSUED", f"batch {batch_id} with {count} units",
            batch_id=batch_id, product_name=name, station_id=station_id, count=count,
        )

    def batch_issuance_failed(self, batch_id: str, created: int, requested: int, error: str) -> None:
        # partial batches are left for manual reconciliation
        self._event(
            logging.ERROR, "BATCH_ISSUANCE_FAILED",
            f"batch {batch_id} stopped after {created} of {requested} units",
            batch_id=batch_id, created=created, requested=requested, error=error,
        )

    def token_rejected(self, token: Optional[str], reason: str, channel: Optional[str] = None) -> None:
        self._event(
            logging.WARNING, "TOKEN_REJECTED", reason,
            token=mask_sensitive(token) if isinstance(token, str) else None,
            reason=reason, channel=channel,
        )

    def scan_recorded(
        self,
        channel: str,
        kind: str,
        product_ids: List[str],
        location_name: str,
        batch_id: Optional[str] = None
    ) -> None:
        self._event(
            logging.INFO, "SCAN_RECORDED", f"{len(product_ids)} {channel} {kind} entries",
            channel=channel, kind=kind, batch_id=batch_id,
            entries=len(product_ids), location_name=location_name,
        )

    def location_lookup_failed(self, latitude: float, longitude: float, error: str) -> None:
        self._event(
            logging.WARNING, "LOCATION_LOOKUP_FAILED", error,
            latitude=latitude, longitude=longitude, error=error,
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._event(
            logging.WARNING, "RATE_LIMIT_EXCEEDED", f"{client_id} on {endpoint}",
            client_id=client_id, endpoint=endpoint,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Install root handlers: stdout, plus `log_file` when given.

    Replaces any handlers already on the root logger.
    """
    formatter = StructuredFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
