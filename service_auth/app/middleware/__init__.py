"""
Request middleware for the auth service.

- base: handler contract, Chain, request-scoped parameter helpers
- bearer_jwks: JWT verification against a JWKS endpoint, claims to params
- http_header: header value to param
- factory: build middleware and chains from configuration entries
"""

from .base import (
    Chain,
    Handler,
    Middleware,
    get_middleware_params,
    set_middleware_params,
)
from .bearer_jwks import BearerJWKSMiddleware
from .config import BearerJWKSConfig, HTTPHeaderConfig, parse_duration
from .factory import create_middleware, create_middleware_chain
from .http_header import HTTPHeaderMiddleware

__all__ = [
    "Chain",
    "Handler",
    "Middleware",
    "get_middleware_params",
    "set_middleware_params",
    "BearerJWKSMiddleware",
    "BearerJWKSConfig",
    "HTTPHeaderConfig",
    "HTTPHeaderMiddleware",
    "parse_duration",
    "create_middleware",
    "create_middleware_chain",
]
