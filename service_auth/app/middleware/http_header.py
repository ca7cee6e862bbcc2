"""
Middleware that copies a request header into a request parameter.
"""

from typing import Any, Dict, Mapping

from starlette.requests import Request
from starlette.responses import Response

from shared.errors import ValidationError
from shared.logging import get_logger
from .base import Handler, Middleware, error_response, get_middleware_params, set_middleware_params
from .config import HTTPHeaderConfig


class HTTPHeaderMiddleware(Middleware):
    """Expose the value of one HTTP header as a middleware parameter."""

    def __init__(self, config: HTTPHeaderConfig):
        self.config = config
        self.logger = get_logger("auth.middleware.http_header")

    def name(self) -> str:
        return f"http-header({self.config.header}->{self.config.parameter})"

    def process(self, headers: Mapping[str, str], params: Mapping[str, Any]) -> Dict[str, Any]:
        """Return ``params`` plus the header value, leaving the input untouched."""
        value = headers.get(self.config.header)
        if not value:
            if self.config.required:
                raise ValidationError(
                    f"required header '{self.config.header}' is missing",
                    details={"header": self.config.header},
                )
            return dict(params)

        result = dict(params)
        result[self.config.parameter] = value
        return result

    def wrap(self, next_handler: Handler) -> Handler:
        async def handler(request: Request) -> Response:
            try:
                params = self.process(request.headers, get_middleware_params(request))
            except ValidationError as exc:
                self.logger.info("Rejected request", middleware=self.name(), reason=exc.message)
                return error_response(exc)

            set_middleware_params(request, params)
            return await next_handler(request)

        return handler
