"""
Configuration models for the built-in middleware.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..jwks.client import DEFAULT_FALLBACK_TTL


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_FULL = re.compile(r"(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+")


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts numbers (seconds) and Go-style strings such as ``10m``, ``90s``,
    ``1h30m`` or ``250ms``. Negative durations are rejected.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")

    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty duration")
        try:
            seconds = float(text)
        except ValueError:
            if not _DURATION_FULL.fullmatch(text):
                raise ValueError(f"invalid duration: {value!r}")
            seconds = sum(
                float(amount) * _DURATION_UNITS[unit]
                for amount, unit in _DURATION_PART.findall(text)
            )
    else:
        raise ValueError(f"invalid duration: {value!r}")

    if seconds < 0:
        raise ValueError(f"duration must not be negative: {value!r}")
    return seconds


class BearerJWKSConfig(BaseModel):
    """Settings for ``bearer-jwks`` middleware."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jwks_url: str
    required: bool = False
    claims_mapping: Dict[str, str]
    issuer: Optional[str] = None
    audience: Optional[str] = None
    fallback_ttl: float = DEFAULT_FALLBACK_TTL
    # Unset and null both mean enabled
    enable_health_check: bool = True

    @field_validator("jwks_url")
    @classmethod
    def check_jwks_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("jwks_url is required")
        return value

    @field_validator("claims_mapping")
    @classmethod
    def check_claims_mapping(cls, value: Dict[str, str]) -> Dict[str, str]:
        if not value:
            raise ValueError("claims_mapping must map at least one claim")
        for claim, parameter in value.items():
            if not claim or not parameter:
                raise ValueError("claims_mapping entries must be non-empty")
        return value

    @field_validator("fallback_ttl", mode="before")
    @classmethod
    def parse_fallback_ttl(cls, value: Any) -> float:
        if value is None or value == "":
            return DEFAULT_FALLBACK_TTL
        return parse_duration(value)

    @field_validator("enable_health_check", mode="before")
    @classmethod
    def default_health_check(cls, value: Any) -> Any:
        return True if value is None else value


class HTTPHeaderConfig(BaseModel):
    """Settings for ``http-header`` middleware."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    header: str
    parameter: str
    required: bool = False

    @field_validator("header", "parameter")
    @classmethod
    def check_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value
