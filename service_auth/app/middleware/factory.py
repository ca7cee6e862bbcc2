"""
Build middleware and chains from ``{"type": ..., "config": {...}}`` entries.
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ConfigurationError
from .base import Chain, Middleware
from .bearer_jwks import BearerJWKSMiddleware
from .config import BearerJWKSConfig, HTTPHeaderConfig
from .http_header import HTTPHeaderMiddleware


ConfigModel = TypeVar("ConfigModel", bound=BaseModel)


def load_config(model: Type[ConfigModel], config_map: Optional[Mapping[str, Any]], middleware_type: str) -> ConfigModel:
    """Validate a raw config mapping, turning pydantic errors into ConfigurationError."""
    if config_map is not None and not isinstance(config_map, Mapping):
        raise ConfigurationError(
            f"invalid {middleware_type} middleware config: config must be a mapping",
            details={"type": middleware_type},
        )
    try:
        return model.model_validate(dict(config_map or {}))
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(
            f"invalid {middleware_type} middleware config: {problems}",
            details={"type": middleware_type},
        ) from exc


def create_http_header_middleware(config_map: Optional[Mapping[str, Any]], **_options: Any) -> HTTPHeaderMiddleware:
    return HTTPHeaderMiddleware(load_config(HTTPHeaderConfig, config_map, "http-header"))


def create_bearer_jwks_middleware(config_map: Optional[Mapping[str, Any]], **options: Any) -> BearerJWKSMiddleware:
    """Validate config before the JWKS client (and its thread) is started."""
    config = load_config(BearerJWKSConfig, config_map, "bearer-jwks")
    return BearerJWKSMiddleware(config, **options)


MIDDLEWARE_BUILDERS: Dict[str, Callable[..., Middleware]] = {
    "http-header": create_http_header_middleware,
    "bearer-jwks": create_bearer_jwks_middleware,
}


def create_middleware(entry: Mapping[str, Any], **options: Any) -> Middleware:
    """Create one middleware from a ``{type, config}`` entry.

    ``options`` (metrics, JWKS client settings) are passed through to builders
    that take them.
    """
    if not isinstance(entry, Mapping):
        raise ConfigurationError("middleware entry must be a mapping")
    middleware_type = entry.get("type")
    builder = MIDDLEWARE_BUILDERS.get(middleware_type) if isinstance(middleware_type, str) else None
    if builder is None:
        raise ConfigurationError(
            f"unknown middleware type: {middleware_type}",
            details={"known_types": sorted(MIDDLEWARE_BUILDERS)},
        )
    return builder(entry.get("config"), **options)


def create_middleware_chain(entries: Optional[Iterable[Mapping[str, Any]]], **options: Any) -> Chain:
    """Create a chain in configuration order; nothing is left running on failure."""
    created = []
    for index, entry in enumerate(entries or []):
        try:
            created.append(create_middleware(entry, **options))
        except ConfigurationError as exc:
            Chain(created).close()
            raise ConfigurationError(
                f"failed to create middleware at index {index}: {exc.message}",
                details={"index": index, **exc.details},
            ) from exc
    return Chain(created)
