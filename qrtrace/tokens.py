"""
Token codec for qrtrace.

A token is a compact signed envelope:

    base64url(canonical_json(claims)) "." base64url(mac)

Claims are the payload fields plus `iat` and, when a TTL is configured,
`exp`. There is no type tag on the wire: after the MAC checks out the payload
shape decides what the token is.

    unitId present and non-empty       -> UnitPayload
    batchId present, no unitId         -> MasterPayload
    anything else                      -> UNRECOGNIZED_PAYLOAD

Absent fields are meaningful; they are never filled with defaults.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from .errors import RejectReason, TokenRejected
from .keys import SecretProvider
from .util import b64url_decode, b64url_encode, canonicalize, now_epoch

RESERVED_CLAIMS = ("iat", "exp")


@dataclass(frozen=True)
class UnitPayload:
    """Identifies exactly one physical product unit."""
    name: str
    station_id: str
    unit_id: str

    def to_claims(self) -> Dict[str, Any]:
        return {"name": self.name, "stationId": self.station_id, "unitId": self.unit_id}


@dataclass(frozen=True)
class MasterPayload:
    """Identifies a batch of unit tokens issued together."""
    batch_id: str

    def to_claims(self) -> Dict[str, Any]:
        return {"batchId": self.batch_id}


TokenPayload = Union[UnitPayload, MasterPayload]


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def classify_claims(claims: Dict[str, Any]) -> TokenPayload:
    """
    Map verified claims to a payload variant.

    Raises TokenRejected(UNRECOGNIZED_PAYLOAD) for any other shape.
    """
    unit_id = claims.get("unitId")
    if _non_empty_str(unit_id):
        name = claims.get("name")
        station_id = claims.get("stationId")
        if not isinstance(name, str) or not isinstance(station_id, str):
            raise TokenRejected(RejectReason.UNRECOGNIZED_PAYLOAD, "unit token without name/stationId")
        return UnitPayload(name=name, station_id=station_id, unit_id=unit_id)

    if unit_id is None or unit_id == "":
        batch_id = claims.get("batchId")
        if _non_empty_str(batch_id):
            return MasterPayload(batch_id=batch_id)

    raise TokenRejected(RejectReason.UNRECOGNIZED_PAYLOAD)


class TokenCodec:
    """
    Issues and verifies signed unit and master tokens.

    Verification is idempotent: the same token always yields the same payload
    or the same rejection (until an `exp` claim passes).
    """

    def __init__(
        self,
        secrets: SecretProvider,
        ttl_seconds: int = 0,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Args:
            secrets: Provider of the shared signing secret
            ttl_seconds: Lifetime of issued tokens; 0 issues tokens without exp
            clock: Returns current epoch seconds (default: now_epoch)
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._secrets = secrets
        self._ttl = ttl_seconds
        self._clock = clock or now_epoch

    def issue(self, payload: TokenPayload) -> str:
        """Sign a payload and return the token string."""
        if not isinstance(payload, (UnitPayload, MasterPayload)):
            raise TypeError(f"cannot issue token for {type(payload).__name__}")
        claims = payload.to_claims()
        issued_at = self._clock()
        claims["iat"] = issued_at
        if self._ttl:
            claims["exp"] = issued_at + self._ttl

        body = canonicalize(claims)
        mac = self._secrets.sign(body)
        return f"{b64url_encode(body)}.{b64url_encode(mac)}"

    def verify(self, token: Any) -> TokenPayload:
        """
        Verify a token and return its payload.

        Raises:
            TokenRejected: MALFORMED, SIGNATURE_MISMATCH, EXPIRED or
                UNRECOGNIZED_PAYLOAD
        """
        body, mac = self._split(token)
        claims = self._parse_claims(body)

        if not self._secrets.verify(body, mac):
            raise TokenRejected(RejectReason.SIGNATURE_MISMATCH)

        exp = claims.get("exp")
        if exp is not None and self._clock() >= exp:
            raise TokenRejected(RejectReason.EXPIRED)

        return classify_claims(claims)

    @staticmethod
    def decode_unverified(token: Any) -> Dict[str, Any]:
        """Return a token's claims WITHOUT checking the MAC. Inspection only."""
        body, _ = TokenCodec._split(token)
        return TokenCodec._parse_claims(body)

    @staticmethod
    def _split(token: Any):
        if not isinstance(token, str) or not token:
            raise TokenRejected(RejectReason.MALFORMED, "token must be a non-empty string")
        parts = token.split(".")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise TokenRejected(RejectReason.MALFORMED, "expected two dot-separated segments")
        try:
            return b64url_decode(parts[0]), b64url_decode(parts[1])
        except ValueError:
            raise TokenRejected(RejectReason.MALFORMED, "invalid base64url")

    @staticmethod
    def _parse_claims(body: bytes) -> Dict[str, Any]:
        try:
            claims = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise TokenRejected(RejectReason.MALFORMED, "payload is not JSON")
        if not isinstance(claims, dict):
            raise TokenRejected(RejectReason.MALFORMED, "payload is not an object")
        for claim in RESERVED_CLAIMS:
            value = claims.get(claim)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise TokenRejected(RejectReason.MALFORMED, f"{claim} must be an integer")
        return claims
