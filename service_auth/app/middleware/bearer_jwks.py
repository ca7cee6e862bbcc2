"""
Bearer token middleware backed by a JWKS client.
"""

from typing import Any, Dict, Optional, Tuple

from starlette.requests import Request
from starlette.responses import Response

from shared.errors import AuthenticationError
from shared.logging import get_logger, reset_subject, set_subject
from shared.metrics import MetricsCollector
from ..jwks.client import JWKSClient
from ..validation.token_validator import TokenValidator
from .base import Handler, Middleware, error_response, get_middleware_params, set_middleware_params
from .config import BearerJWKSConfig


BEARER_PREFIX = "Bearer "


class BearerJWKSMiddleware(Middleware):
    """Verify ``Authorization: Bearer`` JWTs and map claims to parameters.

    With ``required`` unset the middleware is best-effort: a missing,
    malformed or unverifiable token lets the request through as anonymous,
    without any claim-derived parameters.
    """

    def __init__(
        self,
        config: BearerJWKSConfig,
        jwks_client: Optional[JWKSClient] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        **client_options: Any,
    ):
        self.config = config
        self.claims_mapping: Tuple[Tuple[str, str], ...] = tuple(config.claims_mapping.items())
        self.metrics = metrics
        self.logger = get_logger("auth.middleware.bearer_jwks")

        if jwks_client is None:
            jwks_client = JWKSClient(
                config.jwks_url,
                config.fallback_ttl,
                metrics=metrics,
                **client_options,
            )
            self._owns_client = True
        else:
            self._owns_client = False

        self.jwks_client = jwks_client
        self.validator = TokenValidator(jwks_client, issuer=config.issuer, audience=config.audience)

    def name(self) -> str:
        return f"bearer-jwks({self.config.jwks_url})"

    def health_check_enabled(self) -> bool:
        return self.config.enable_health_check

    def is_healthy(self) -> bool:
        return self.jwks_client.is_healthy()

    def close(self) -> None:
        """Stop the JWKS client if this middleware created it."""
        if self._owns_client:
            self.jwks_client.close()

    def wrap(self, next_handler: Handler) -> Handler:
        async def handler(request: Request) -> Response:
            auth_header = request.headers.get("Authorization")
            if not auth_header:
                return await self._unauthenticated(request, next_handler, "Authorization header is required")

            if not auth_header.startswith(BEARER_PREFIX):
                return await self._unauthenticated(
                    request, next_handler, "Authorization header must be a Bearer token"
                )

            token = auth_header[len(BEARER_PREFIX):].strip()
            if not token:
                return await self._unauthenticated(request, next_handler, "Bearer token is empty")

            try:
                claims = self.validator.validate(token)
            except AuthenticationError as exc:
                return await self._unauthenticated(request, next_handler, f"Invalid token: {exc.message}")

            params = get_middleware_params(request)
            params.update(self.map_claims(claims))
            set_middleware_params(request, params)

            subject = claims.get("sub")
            subject_token = set_subject(subject if isinstance(subject, str) else None)
            self._record("authenticated")
            try:
                return await next_handler(request)
            finally:
                reset_subject(subject_token)

        return handler

    def map_claims(self, claims: Dict[str, Any]) -> Dict[str, Any]:
        """Parameters for every configured claim present in ``claims``."""
        return {
            parameter: claims[claim]
            for claim, parameter in self.claims_mapping
            if claim in claims
        }

    async def _unauthenticated(self, request: Request, next_handler: Handler, reason: str) -> Response:
        if self.config.required:
            self.logger.info(
                "Rejected request",
                middleware=self.name(),
                path=request.url.path,
                reason=reason,
            )
            self._record("rejected")
            return error_response(AuthenticationError(reason))

        self.logger.debug(
            "Continuing without authentication",
            middleware=self.name(),
            path=request.url.path,
            reason=reason,
        )
        self._record("anonymous")
        return await next_handler(request)

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_authentication(self.name(), outcome)
