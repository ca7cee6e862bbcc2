"""
Conversion of JSON Web Keys into RSA public keys.
"""

import base64
import binascii
from typing import Any, Dict, List, Mapping, Tuple

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa

from shared.errors import ValidationError


def b64url_decode(value: str) -> bytes:
    """Decode base64url data with or without padding."""
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def construct_rsa_public_key(modulus_b64: str, exponent_b64: str) -> rsa.RSAPublicKey:
    """Create an RSA public key from base64url encoded modulus and exponent."""
    try:
        modulus = int.from_bytes(b64url_decode(modulus_b64), "big")
        exponent = int.from_bytes(b64url_decode(exponent_b64), "big")
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise ValidationError("Invalid base64url in RSA key", details={"error": str(exc)}) from exc

    try:
        return rsa.RSAPublicNumbers(exponent, modulus).public_key()
    except ValueError as exc:
        raise ValidationError("Invalid RSA key parameters", details={"error": str(exc)}) from exc


def rsa_public_key_from_certificate(cert_b64: str) -> rsa.RSAPublicKey:
    """Extract the RSA public key from a base64 (not url-safe) DER certificate."""
    try:
        der = base64.b64decode(cert_b64.encode("ascii"), validate=True)
        certificate = x509.load_der_x509_certificate(der)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise ValidationError("Invalid x5c certificate", details={"error": str(exc)}) from exc

    try:
        public_key = certificate.public_key()
    except (UnsupportedAlgorithm, ValueError) as exc:
        raise ValidationError("Unsupported x5c public key", details={"error": str(exc)}) from exc

    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValidationError("Certificate does not contain an RSA public key")
    return public_key


def parse_rsa_jwk(key: Mapping[str, Any]) -> rsa.RSAPublicKey:
    """Build a public key from an RSA JWK, preferring the x5c chain over n/e."""
    x5c = key.get("x5c")
    if isinstance(x5c, list) and x5c:
        if not isinstance(x5c[0], str):
            raise ValidationError("x5c entry must be a string", details={"kid": key.get("kid")})
        return rsa_public_key_from_certificate(x5c[0])

    modulus = key.get("n")
    exponent = key.get("e")
    if isinstance(modulus, str) and modulus and isinstance(exponent, str) and exponent:
        return construct_rsa_public_key(modulus, exponent)

    raise ValidationError(
        "RSA key has neither x5c nor n/e fields",
        details={"kid": key.get("kid")},
    )


def parse_key_set(payload: Any) -> Tuple[Dict[str, rsa.RSAPublicKey], List[Dict[str, Any]]]:
    """Convert a JWKS document into a ``kid -> key`` map.

    Returns the map and a list of per-key problems. Non-RSA entries are ignored
    silently; malformed RSA entries are reported and skipped so one bad key
    never invalidates the rest of the set. A payload without a ``keys`` array
    is rejected as a whole.
    """
    if not isinstance(payload, dict):
        raise ValidationError("JWKS document must be a JSON object")

    keys = payload.get("keys")
    if not isinstance(keys, list):
        raise ValidationError("JWKS response missing 'keys' array")

    keys_by_id: Dict[str, rsa.RSAPublicKey] = {}
    skipped: List[Dict[str, Any]] = []

    for entry in keys:
        if not isinstance(entry, dict) or entry.get("kty") != "RSA":
            continue

        kid = entry.get("kid")
        if not isinstance(kid, str) or not kid:
            skipped.append({"kid": kid, "error": "missing kid"})
            continue

        try:
            keys_by_id[kid] = parse_rsa_jwk(entry)
        except ValidationError as exc:
            skipped.append({"kid": kid, "error": exc.message})

    return keys_by_id, skipped
