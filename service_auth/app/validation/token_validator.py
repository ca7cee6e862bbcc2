"""
Token validation against keys served by a JWKS client.
"""

from typing import Any, Dict, Optional, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError

from shared.errors import AuthenticationError
from shared.logging import get_logger


RSA_ALGORITHMS = ("RS256", "RS384", "RS512")


class PublicKeyProvider(Protocol):
    def get_public_key(self, kid: str) -> Optional[rsa.RSAPublicKey]:
        ...


class TokenValidator:
    """Verify RSA-signed JWTs and return their claims.

    Keys are looked up by the token's ``kid`` header. An unknown ``kid`` is a
    plain verification failure; the key provider decides on its own schedule
    when to refresh.
    """

    def __init__(
        self,
        key_provider: PublicKeyProvider,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self.key_provider = key_provider
        self.issuer = issuer
        self.audience = audience
        self.logger = get_logger("auth.validator")

    def validate(self, token: str) -> Dict[str, Any]:
        """Return the verified claims or raise AuthenticationError."""
        try:
            header = jwt.get_unverified_header(token)
        except JOSEError as exc:
            raise AuthenticationError("Malformed token", details={"error": str(exc)}) from exc

        algorithm = header.get("alg")
        if algorithm not in RSA_ALGORITHMS:
            raise AuthenticationError(f"Unexpected signing method: {algorithm}")

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise AuthenticationError("Token header missing key ID (kid)")

        public_key = self.key_provider.get_public_key(kid)
        if public_key is None:
            raise AuthenticationError("Signing key not found", details={"kid": kid})

        try:
            claims = jwt.decode(
                token,
                _to_pem(public_key),
                algorithms=[algorithm],
                options={
                    "verify_aud": False,
                    "verify_iss": False,
                    "verify_sub": False,
                    "verify_jti": False,
                },
            )
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token has expired") from exc
        except JOSEError as exc:
            raise AuthenticationError("Token validation failed", details={"error": str(exc)}) from exc

        self._check_exact_claim(claims, "iss", self.issuer, "issuer")
        self._check_exact_claim(claims, "aud", self.audience, "audience")

        self.logger.debug("Token verified", kid=kid, algorithm=algorithm, sub=claims.get("sub"))
        return claims

    @staticmethod
    def _check_exact_claim(claims: Dict[str, Any], claim: str, expected: Optional[str], label: str) -> None:
        if not expected:
            return
        actual = claims.get(claim)
        if not isinstance(actual, str) or actual != expected:
            raise AuthenticationError(
                f"Invalid {label}",
                details={"expected": expected, "actual": actual},
            )


def _to_pem(public_key: rsa.RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
