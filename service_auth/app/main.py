"""
Auth service: bearer JWKS middleware in front of a parameter-consuming endpoint.
"""

from typing import Dict, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.metrics import MetricsCollector
from .middleware import Chain, create_middleware_chain, get_middleware_params


SERVICE_NAME = "auth"
DEFAULT_PORT = 8010


class AuthService(BaseService):
    """Auth service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        chain: Optional[Chain] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._chain = chain
        super().__init__(SERVICE_NAME, DEFAULT_PORT, config=config, metrics=metrics)

        if self._chain is None:
            self._chain = create_middleware_chain(
                self.config.middleware,
                metrics=self.metrics,
                http_timeout=self.config.jwks_http_timeout,
                min_refresh_interval=self.config.jwks_min_refresh_interval,
            )
        self.logger.info("Middleware chain configured", middleware=[m.name() for m in self._chain])

        self._setup_auth_routes()

    @property
    def chain(self) -> Chain:
        return self._chain

    def _setup_auth_routes(self):
        """Set up auth-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "JWKS bearer authentication service",
                "version": "1.0.0",
                "middleware": [m.name() for m in self._chain],
            }

        async def echo_params(request: Request) -> JSONResponse:
            """Stand-in for the query layer: report what the middleware produced."""
            return JSONResponse({"params": get_middleware_params(request)})

        self.app.add_route("/params", self._chain.wrap(echo_params), methods=["GET", "POST"])

    async def _check_dependencies(self) -> Dict[str, Dict[str, bool]]:
        return self._chain.health()

    async def shutdown(self) -> None:
        self._chain.close()


def create_app(
    config: Optional[ServiceConfig] = None,
    chain: Optional[Chain] = None,
    metrics: Optional[MetricsCollector] = None,
):
    """Create FastAPI application."""
    service = AuthService(config=config, chain=chain, metrics=metrics)
    return service.app


if __name__ == "__main__":
    service = AuthService()
    service.run()
