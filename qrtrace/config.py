"""
Configuration module for qrtrace.

Centralizes all configuration with environment variable support
and validation.
"""

import os
from typing import Dict, List
from pathlib import Path

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("QRTRACE_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("QRTRACE_DB_PATH", "data/qrtrace.db")

# Signing secret (single shared symmetric secret, no rotation)
SECRET_KEY = os.getenv("QRTRACE_SECRET_KEY", "")
SECRET_PATH = os.getenv("QRTRACE_SECRET_PATH", "")

# Token expiry in seconds; 0 means issued tokens carry no exp claim
TOKEN_TTL_SECONDS = int(os.getenv("TOKEN_TTL_SECONDS", "0"))

# Batch size bound
MAX_BATCH_SIZE = int(os.getenv("MAX_BATCH_SIZE", "1000"))

# Reverse geocoding
GEOCODER_URL = os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org/reverse")
GEOCODER_USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "qrtrace/0.1")
GEOCODER_TIMEOUT = float(os.getenv("GEOCODER_TIMEOUT", "5"))
LOCATION_CACHE_TTL = int(os.getenv("LOCATION_CACHE_TTL", "3600"))

# Rate limits (requests per minute)
SIGN_RPM = int(os.getenv("SIGN_RPM", "30"))
SCAN_RPM = int(os.getenv("SCAN_RPM", "600"))

# HTTP
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in ("1", "true", "yes")


def cors_origins() -> List[str]:
    """Split CORS_ORIGINS into a list, dropping blanks."""
    return [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Check the settings the service cannot start without.
    Returns dict of check name -> ok.
    """
    checks = {
        "signing_secret": bool(SECRET_KEY) or (bool(SECRET_PATH) and Path(SECRET_PATH).exists()),
        "token_ttl": TOKEN_TTL_SECONDS >= 0,
        "max_batch_size": MAX_BATCH_SIZE >= 1,
        "location_cache_ttl": LOCATION_CACHE_TTL > 0,
    }
    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


