"""
Middleware contract and chain composition.

A handler is an ``async (Request) -> Response`` callable. Middleware wraps a
handler and returns a new one; it may answer the request itself instead of
calling the next handler. Parameters produced by middleware travel on
``request.state`` and are read back with ``get_middleware_params``.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from shared.errors import AccessLayerException
from shared.logging import get_logger


Handler = Callable[[Request], Awaitable[Response]]

MIDDLEWARE_PARAMS_KEY = "middleware_params"


def get_middleware_params(request: Request) -> Dict[str, Any]:
    """Return a copy of the parameters set by middleware so far."""
    params = getattr(request.state, MIDDLEWARE_PARAMS_KEY, None)
    return dict(params) if params else {}


def set_middleware_params(request: Request, params: Mapping[str, Any]) -> None:
    """Replace the request's middleware parameters."""
    setattr(request.state, MIDDLEWARE_PARAMS_KEY, dict(params))


def error_response(exc: AccessLayerException) -> JSONResponse:
    """Render an access layer error as the standard JSON error body."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())


class Middleware(ABC):
    """A request interceptor that can be composed into a Chain.

    Optional hooks, discovered by duck typing:

    - ``close()`` releases resources; called by ``Chain.close``.
    - ``health_check_enabled()`` / ``is_healthy()`` feed the health endpoint.
    """

    @abstractmethod
    def wrap(self, next_handler: Handler) -> Handler:
        """Return a handler that runs this middleware before ``next_handler``."""

    @abstractmethod
    def name(self) -> str:
        """Stable identifier used in logs and health output."""


class Chain:
    """Ordered middleware; the first entry is the outermost wrapper."""

    def __init__(self, middleware: Optional[Iterable[Middleware]] = None):
        self._middleware: List[Middleware] = list(middleware or [])
        self.logger = get_logger("auth.middleware.chain")

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def wrap(self, handler: Handler) -> Handler:
        # Reverse so the first middleware runs first on the way in. Later
        # (inner) middleware see and may overwrite parameters set earlier.
        for middleware in reversed(self._middleware):
            handler = middleware.wrap(handler)
        return handler

    def close(self) -> None:
        """Close every closeable middleware, logging failures and carrying on."""
        for middleware in self._middleware:
            close = getattr(middleware, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as exc:
                self.logger.error(
                    "Error closing middleware",
                    middleware=middleware.name(),
                    error=str(exc),
                )

    def health(self) -> Dict[str, Dict[str, bool]]:
        """Health of every middleware that has health checking enabled."""
        report: Dict[str, Dict[str, bool]] = {}
        for middleware in self._middleware:
            enabled = getattr(middleware, "health_check_enabled", None)
            is_healthy = getattr(middleware, "is_healthy", None)
            if enabled is None or is_healthy is None or not enabled():
                continue
            report[middleware.name()] = {"healthy": bool(is_healthy())}
        return report
