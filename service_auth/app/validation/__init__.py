"""
Token validation package.

Validates RSA-signed JWTs against keys held by a JWKS client:

- signing algorithm must be in the RSA family (RS256/RS384/RS512);
- the ``kid`` header selects the key, with no fetch on a miss;
- signature and expiry are verified, issuer and audience are exact-match
  checks when configured.
"""

from .token_validator import RSA_ALGORITHMS, TokenValidator

__all__ = ["RSA_ALGORITHMS", "TokenValidator"]
