"""
Mock token issuer providing a JWKS endpoint and a token minting endpoint.
"""

import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.test_helpers import (
    MockTokenGenerator,
    TestSigningKey,
    build_jwks,
    generate_signing_key,
    rsa_jwk,
    x5c_jwk,
)


class TokenRequest(BaseModel):
    """Request model for minting a token."""
    claims: Dict[str, Any] = Field(default_factory=dict)
    expires_in: int = 3600
    algorithm: str = "RS256"
    kid: Optional[str] = None


class MockJWKSIssuer:
    """Mock identity provider signing tokens with rotating RSA keys."""

    def __init__(
        self,
        port: int = 3000,
        issuer: Optional[str] = None,
        audience: str = "dev-api",
        cache_control: Optional[str] = "max-age=300",
    ):
        self.port = port
        self.issuer = issuer or f"http://localhost:{port}"
        self.audience = audience
        self.cache_control = cache_control
        self.logger = get_logger("mock.jwks_issuer")
        self.app = FastAPI(title="Mock JWKS Issuer", version="1.0.0")

        # Status code to answer JWKS requests with instead of the key set
        self.fail_with: Optional[int] = None
        self.jwks_requests = 0
        self._lock = threading.Lock()

        self.keys: List[TestSigningKey] = [generate_signing_key("mock-key-1")]
        self.publish_x5c = False

        self._setup_routes()

    @property
    def active_key(self) -> TestSigningKey:
        return self.keys[-1]

    def rotate(self, keep_previous: bool = True) -> TestSigningKey:
        """Add a new signing key, optionally dropping the old ones."""
        with self._lock:
            key = generate_signing_key(f"mock-key-{len(self.keys) + 1}")
            self.keys = (self.keys if keep_previous else []) + [key]
        self.logger.info("Rotated signing key", kid=key.kid, keep_previous=keep_previous)
        return key

    def jwks(self) -> Dict[str, Any]:
        with self._lock:
            keys = list(self.keys)
        to_jwk = x5c_jwk if self.publish_x5c else rsa_jwk
        return build_jwks(*(to_jwk(key) for key in keys))

    def mint(self, claims: Optional[Dict[str, Any]] = None, expires_in: int = 3600,
             algorithm: str = "RS256", kid: Optional[str] = None) -> str:
        """Sign a token with the active key, or the key named by ``kid``."""
        signing_key = self.active_key
        if kid is not None:
            matches = [key for key in self.keys if key.kid == kid]
            if not matches:
                raise KeyError(kid)
            signing_key = matches[0]

        generator = MockTokenGenerator(signing_key, issuer=self.issuer, audience=self.audience)
        return generator.generate_access_token(claims, expires_in=expires_in, algorithm=algorithm)

    def _setup_routes(self):
        """Set up mock issuer routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "mock-jwks-issuer",
                "version": "1.0.0",
                "issuer": self.issuer,
                "jwks_uri": f"{self.issuer}/.well-known/jwks.json",
            }

        @self.app.get("/health")
        async def health():
            return {"status": "ok"}

        @self.app.get("/.well-known/jwks.json")
        async def jwks_endpoint(response: Response):
            """JWKS endpoint."""
            with self._lock:
                self.jwks_requests += 1

            if self.fail_with is not None:
                raise HTTPException(status_code=self.fail_with, detail="JWKS unavailable")

            if self.cache_control:
                response.headers["Cache-Control"] = self.cache_control
            return self.jwks()

        @self.app.post("/token")
        async def token_endpoint(request: TokenRequest):
            """Mint a signed access token."""
            try:
                token = self.mint(request.claims, request.expires_in, request.algorithm, request.kid)
            except KeyError:
                raise HTTPException(status_code=404, detail=f"Unknown kid: {request.kid}")

            return {
                "access_token": token,
                "token_type": "Bearer",
                "expires_in": request.expires_in,
            }


def create_app():
    """Create FastAPI application."""
    return MockJWKSIssuer().app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=3000)
