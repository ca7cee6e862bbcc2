"""
JWKS client package.

Contains logic for retrieving and caching JSON Web Key Sets (JWKS) used
to verify JWT signatures.

Key points:
- Fetches happen on one background thread per client; lookups are
  memory-only and never trigger a fetch.
- TTL comes from the endpoint's Cache-Control header, with a configured
  fallback; refresh starts at 80% of the TTL.
- Failed fetches back off exponentially and keep serving the last good keys.
"""

from .client import (
    CacheRecord,
    JWKSClient,
    calculate_backoff,
    parse_cache_control,
)
from .keys import construct_rsa_public_key, parse_key_set, parse_rsa_jwk

__all__ = [
    "CacheRecord",
    "JWKSClient",
    "calculate_backoff",
    "parse_cache_control",
    "construct_rsa_public_key",
    "parse_key_set",
    "parse_rsa_jwk",
]
