"""
Small helpers shared across qrtrace: canonical token bodies, base64
variants, timestamps, identifiers and log masking.
"""

import base64
import binascii
import hmac
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any

RFC3339_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def canonicalize(obj: Any) -> bytes:
    """
    Deterministic JSON encoding of `obj`.

    Sorted keys, no insignificant whitespace, UTF-8 without escaping, so
    equal claims always produce byte-identical (and MAC-identical) bodies.
    """
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def now_epoch() -> int:
    return int(time.time())


def utc_rfc3339(ts_epoch: int) -> str:
    """Epoch seconds -> 'YYYY-MM-DDTHH:MM:SSZ'."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime(RFC3339_FORMAT)


def b64e(b: bytes) -> str:
    """Standard padded base64 (secret files)."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """Strict inverse of b64e; raises binascii.Error on bad input."""
    return base64.b64decode(s, validate=True)


def b64url_encode(b: bytes) -> str:
    """Unpadded URL-safe base64 (token segments)."""
    return base64.urlsafe_b64encode(b).decode('ascii').rstrip('=')


def b64url_decode(s: str) -> bytes:
    """
    Strict inverse of b64url_encode.

    Padding, '+' and '/' are refused so every token has exactly one textual
    form. Raises ValueError on anything else that does not decode.
    """
    if any(c in s for c in '=+/'):
        raise ValueError("not unpadded base64url")
    try:
        return base64.b64decode(s + '=' * (-len(s) % 4), altchars=b'-_', validate=True)
    except binascii.Error as e:
        raise ValueError(str(e)) from e


def constant_time_compare(a: bytes, b: bytes) -> bool:
    return hmac.compare_digest(a, b)


def generate_id() -> str:
    """Random UUID4 string, used for unitId and batchId."""
    return str(uuid.uuid4())


def mask_sensitive(value: str, visible_chars: int = 6) -> str:
    """Keep the tail of a token for log correlation; star out the rest."""
    if len(value) <= visible_chars:
        return '*' * len(value)
    hidden = min(8, len(value) - visible_chars)
    return '*' * hidden + value[-visible_chars:]
