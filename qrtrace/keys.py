"""
Signing secret module for qrtrace.

Provides the single shared symmetric secret used to sign and verify tokens,
loaded from the environment or from a JSON secret file, and the keyed
BLAKE2b MAC computed with it.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Optional

from nacl.encoding import RawEncoder
from nacl.hash import blake2b, sha256
from nacl.utils import random as random_bytes

from .errors import ConfigError
from .util import b64d, b64e, constant_time_compare

logger = logging.getLogger(__name__)

MAC_BYTES = 32
MAC_PERSON = b"qrtrace-token-v1"

# Used only outside production when no secret is configured
DEV_SECRET = b"qrtrace-development-secret-do-not-use"


def compute_mac(secret: bytes, payload: bytes) -> bytes:
    """
    Keyed BLAKE2b-256 over payload.

    The secret is hashed to a fixed 32-byte key so secrets of any length
    fit BLAKE2b's key size limit.
    """
    key = sha256(secret, encoder=RawEncoder)
    return blake2b(payload, digest_size=MAC_BYTES, key=key, person=MAC_PERSON, encoder=RawEncoder)


class SecretProvider(ABC):
    """Abstract interface for the token signing secret."""

    @abstractmethod
    def get_secret(self) -> bytes:
        """Return the raw secret bytes."""
        pass

    def sign(self, payload: bytes) -> bytes:
        """MAC a payload with the shared secret."""
        return compute_mac(self.get_secret(), payload)

    def verify(self, payload: bytes, mac: bytes) -> bool:
        """Check a MAC in constant time."""
        return constant_time_compare(self.sign(payload), mac)


class StaticSecretProvider(SecretProvider):
    """Secret handed in directly (environment value, tests, CLI)."""

    def __init__(self, secret):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ConfigError("signing secret must not be empty")
        self._secret = secret

    def get_secret(self) -> bytes:
        return self._secret


class FileSecretProvider(SecretProvider):
    """
    Secret stored in a JSON file as {"secret_b64": "..."}.

    Loaded once at construction; the file is the same one `qrtrace keygen`
    writes.
    """

    def __init__(self, secret_path: str):
        self._secret_path = secret_path
        self._lock = threading.RLock()
        try:
            with open(secret_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            secret = b64d(raw["secret_b64"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigError(f"cannot load signing secret from {secret_path}: {e}") from e
        if not secret:
            raise ConfigError(f"signing secret in {secret_path} is empty")
        self._secret = secret

    def get_secret(self) -> bytes:
        with self._lock:
            return self._secret


def generate_secret(length: int = 32) -> bytes:
    """Generate a random secret suitable for token signing."""
    return random_bytes(length)


def write_secret_file(path: str, secret: bytes) -> None:
    """Write a secret in the FileSecretProvider format."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"secret_b64": b64e(secret)}, f, indent=2)


def get_secret_provider(
    secret_key: Optional[str] = None,
    secret_path: Optional[str] = None,
    production: bool = False
) -> SecretProvider:
    """
    Factory function to create the secret provider.

    Args:
        secret_key: Raw secret string (QRTRACE_SECRET_KEY)
        secret_path: Path to secret JSON file (QRTRACE_SECRET_PATH)
        production: Refuse the development fallback when True

    Returns:
        Configured SecretProvider instance
    """
    if secret_key:
        return StaticSecretProvider(secret_key)
    if secret_path:
        return FileSecretProvider(secret_path)
    if production:
        raise ConfigError("QRTRACE_SECRET_KEY or QRTRACE_SECRET_PATH required in production")
    logger.warning("No signing secret configured; using the development secret")
    return StaticSecretProvider(DEV_SECRET)
