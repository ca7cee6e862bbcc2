"""
Tests for the bearer JWKS middleware.
"""

from unittest.mock import MagicMock

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from service_auth.app.jwks.client import JWKSClient
from service_auth.app.middleware import (
    BearerJWKSConfig,
    BearerJWKSMiddleware,
    get_middleware_params,
    set_middleware_params,
)
from shared.logging import subject_var
from shared.metrics import MetricsCollector
from shared.test_helpers import FakeJWKSEndpoint, MockTokenGenerator, build_jwks, rsa_jwk


JWKS_URL = "http://localhost:3000/.well-known/jwks.json"


class FakeJWKSClient:
    """Stands in for JWKSClient with a fixed key set."""

    def __init__(self, *signing_keys, healthy=True):
        self.keys = {key.kid: key.public_key for key in signing_keys}
        self.healthy = healthy
        self.closed = False

    def get_public_key(self, kid):
        return self.keys.get(kid)

    def is_healthy(self):
        return self.healthy

    def close(self, timeout=None):
        self.closed = True


def make_config(**overrides):
    values = {
        "jwks_url": JWKS_URL,
        "claims_mapping": {"sub": "user_id", "role": "user_role"},
    }
    values.update(overrides)
    return BearerJWKSConfig(**values)


def make_app(middleware, seed_params=None):
    """App whose single route reports the middleware parameters it received."""
    calls = []

    async def endpoint(request: Request) -> JSONResponse:
        params = get_middleware_params(request)
        calls.append(params)
        return JSONResponse({"params": params})

    handler = middleware.wrap(endpoint)

    async def entry(request: Request):
        if seed_params:
            set_middleware_params(request, seed_params)
        return await handler(request)

    app = Starlette(routes=[Route("/query", entry, methods=["GET", "POST"])])
    return app, calls


@pytest.fixture
def jwks_client(signing_key):
    return FakeJWKSClient(signing_key)


@pytest.fixture
def metrics():
    return MetricsCollector("bearer-test")


def build(jwks_client, metrics=None, **overrides):
    middleware = BearerJWKSMiddleware(make_config(**overrides), jwks_client=jwks_client, metrics=metrics)
    app, calls = make_app(middleware)
    return middleware, TestClient(app), calls


class TestOptionalMode:
    """Best-effort authentication: requests always reach the handler."""

    def test_no_token(self, jwks_client):
        _, client, calls = build(jwks_client, required=False)

        response = client.get("/query")

        assert response.status_code == 200
        assert response.json() == {"params": {}}
        assert calls == [{}]

    def test_valid_token_maps_claims(self, jwks_client, token_generator):
        _, client, _ = build(jwks_client, required=False)
        token = token_generator.generate_access_token({"sub": "user-1", "role": "admin"})

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["params"] == {"user_id": "user-1", "user_role": "admin"}

    @pytest.mark.parametrize("header", [
        "Bearer invalid-token",
        "Basic dXNlcjpwYXNz",
        "bearer lowercase-scheme",
        "Bearer    ",
    ])
    def test_unusable_credentials_pass_through(self, jwks_client, header):
        _, client, calls = build(jwks_client, required=False)

        response = client.get("/query", headers={"Authorization": header})

        assert response.status_code == 200
        assert response.json() == {"params": {}}
        assert len(calls) == 1

    def test_expired_token_passes_through_anonymously(self, jwks_client, token_generator):
        _, client, _ = build(jwks_client, required=False)
        token = token_generator.generate_access_token({"sub": "user-1"}, expires_in=-60)

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json() == {"params": {}}


class TestRequiredMode:
    """Authentication enforced: failures end with 401."""

    def test_no_token(self, jwks_client):
        _, client, calls = build(jwks_client, required=True)

        response = client.get("/query")

        assert response.status_code == 401
        body = response.json()
        assert body["code"] == "AUTHENTICATION_ERROR"
        assert body["message"] == "Authorization header is required"
        assert calls == []

    def test_valid_token(self, jwks_client, token_generator):
        _, client, calls = build(jwks_client, required=True)
        token = token_generator.generate_access_token({"sub": "user-1", "role": "admin"})

        response = client.post("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert calls == [{"user_id": "user-1", "user_role": "admin"}]

    @pytest.mark.parametrize("header,message", [
        ("Basic dXNlcjpwYXNz", "Authorization header must be a Bearer token"),
        ("Bearer ", "Bearer token is empty"),
        ("Bearer invalid-token", "Invalid token: Malformed token"),
    ])
    def test_rejections(self, jwks_client, header, message):
        _, client, calls = build(jwks_client, required=True)

        response = client.get("/query", headers={"Authorization": header})

        assert response.status_code == 401
        assert response.json()["message"] == message
        assert calls == []

    def test_expired_token(self, jwks_client, token_generator):
        _, client, _ = build(jwks_client, required=True)
        token = token_generator.generate_access_token(expires_in=-60)

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token: Token has expired"

    def test_unknown_kid(self, jwks_client, other_signing_key):
        _, client, _ = build(jwks_client, required=True)
        token = MockTokenGenerator(other_signing_key).generate_access_token({"sub": "user-1"})

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token: Signing key not found"

    def test_issuer_and_audience(self, jwks_client, signing_key):
        _, client, _ = build(jwks_client, required=True, issuer="http://localhost:3000", audience="dev-api")
        good = MockTokenGenerator(signing_key).generate_access_token({"sub": "user-1"})
        wrong_issuer = MockTokenGenerator(signing_key, issuer="http://other").generate_access_token()
        wrong_audience = MockTokenGenerator(signing_key, audience="other").generate_access_token()

        assert client.get("/query", headers={"Authorization": f"Bearer {good}"}).status_code == 200

        response = client.get("/query", headers={"Authorization": f"Bearer {wrong_issuer}"})
        assert response.json()["message"] == "Invalid token: Invalid issuer"

        response = client.get("/query", headers={"Authorization": f"Bearer {wrong_audience}"})
        assert response.json()["message"] == "Invalid token: Invalid audience"


class TestClaimsMapping:
    """Claims to parameter mapping."""

    def test_missing_claims_are_skipped(self, jwks_client, token_generator):
        _, client, _ = build(jwks_client, required=True)
        token = token_generator.generate_access_token({"sub": "user-1"})

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.json()["params"] == {"user_id": "user-1"}

    def test_non_string_claims_keep_their_type(self, jwks_client, token_generator):
        _, client, _ = build(
            jwks_client,
            claims_mapping={"sub": "user_id", "groups": "groups", "level": "level"},
        )
        token = token_generator.generate_access_token({"sub": "u", "groups": ["a", "b"], "level": 3})

        response = client.get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.json()["params"] == {"user_id": "u", "groups": ["a", "b"], "level": 3}

    def test_existing_params_are_preserved(self, jwks_client, token_generator):
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        app, _ = make_app(middleware, seed_params={"tenant": "t-1", "user_id": "from-header"})
        token = token_generator.generate_access_token({"sub": "user-1"})

        response = TestClient(app).get("/query", headers={"Authorization": f"Bearer {token}"})

        assert response.json()["params"] == {"tenant": "t-1", "user_id": "user-1"}

    def test_map_claims(self, jwks_client):
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)

        assert middleware.map_claims({"sub": "s", "role": "r", "email": "e"}) == {
            "user_id": "s",
            "user_role": "r",
        }
        assert middleware.map_claims({}) == {}

    def test_mapping_is_not_affected_by_config_source(self, jwks_client):
        """Test the mapping is copied when the middleware is built."""
        source = {"sub": "user_id"}
        middleware = BearerJWKSMiddleware(make_config(claims_mapping=source), jwks_client=jwks_client)
        source["role"] = "user_role"

        assert middleware.map_claims({"sub": "s", "role": "r"}) == {"user_id": "s"}


class TestLifecycleAndHealth:
    """Name, health and close behaviour."""

    def test_name(self, jwks_client):
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        assert middleware.name() == f"bearer-jwks({JWKS_URL})"

    @pytest.mark.parametrize("value,expected", [(None, True), (True, True), (False, False)])
    def test_health_check_enabled(self, jwks_client, value, expected):
        middleware = BearerJWKSMiddleware(make_config(enable_health_check=value), jwks_client=jwks_client)
        assert middleware.health_check_enabled() is expected

    def test_health_check_enabled_by_default(self, jwks_client):
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        assert middleware.health_check_enabled() is True

    def test_is_healthy_delegates_to_client(self, signing_key):
        jwks_client = FakeJWKSClient(signing_key, healthy=False)
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)

        assert middleware.is_healthy() is False
        jwks_client.healthy = True
        assert middleware.is_healthy() is True

    def test_close_leaves_injected_client_running(self, jwks_client):
        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)

        middleware.close()

        assert jwks_client.closed is False

    def test_owns_and_closes_created_client(self, signing_key):
        endpoint = FakeJWKSEndpoint(build_jwks(rsa_jwk(signing_key)))
        middleware = BearerJWKSMiddleware(make_config(fallback_ttl="5m"), transport=endpoint.transport())
        try:
            assert isinstance(middleware.jwks_client, JWKSClient)
            assert middleware.jwks_client.fallback_ttl == 300.0
            assert middleware.jwks_client.wait_for_initialization(5)
            assert middleware.jwks_client.get_public_key("test-key-1") is not None
        finally:
            middleware.close()

        assert not middleware.jwks_client._thread.is_alive()

    def test_records_outcomes(self, jwks_client, metrics, token_generator):
        middleware, client, _ = build(jwks_client, metrics=metrics, required=True)
        token = token_generator.generate_access_token({"sub": "user-1"})

        client.get("/query", headers={"Authorization": f"Bearer {token}"})
        client.get("/query")

        labels = {"middleware": middleware.name()}
        registry = metrics.registry
        assert registry.get_sample_value("authentication_total", {**labels, "outcome": "authenticated"}) == 1.0
        assert registry.get_sample_value("authentication_total", {**labels, "outcome": "rejected"}) == 1.0

    def test_rejection_is_logged(self, jwks_client):
        middleware, client, _ = build(jwks_client, required=True)
        middleware.logger = MagicMock()

        client.get("/query")

        middleware.logger.info.assert_called_once()
        assert middleware.logger.info.call_args.kwargs["reason"] == "Authorization header is required"


class TestLoggingSubject:
    """The authenticated subject is bound to the logging context per request."""

    @staticmethod
    def request_with(token):
        return Request({
            "type": "http",
            "method": "GET",
            "path": "/query",
            "query_string": b"",
            "headers": [(b"authorization", f"Bearer {token}".encode("ascii"))],
        })

    @pytest.mark.asyncio
    async def test_subject_is_set_during_request_and_reset_after(self, jwks_client, token_generator):
        seen = []

        async def endpoint(request):
            seen.append(subject_var.get())
            return JSONResponse({})

        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        token = token_generator.generate_access_token({"sub": "user-1"})

        await middleware.wrap(endpoint)(self.request_with(token))

        assert seen == ["user-1"]
        assert subject_var.get() is None

    @pytest.mark.asyncio
    async def test_subject_is_reset_when_handler_raises(self, jwks_client, token_generator):
        async def endpoint(request):
            raise RuntimeError("handler failed")

        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        token = token_generator.generate_access_token({"sub": "user-1"})

        with pytest.raises(RuntimeError):
            await middleware.wrap(endpoint)(self.request_with(token))

        assert subject_var.get() is None

    @pytest.mark.asyncio
    async def test_outer_subject_is_restored(self, jwks_client, token_generator):
        async def endpoint(request):
            return JSONResponse({})

        middleware = BearerJWKSMiddleware(make_config(), jwks_client=jwks_client)
        token = token_generator.generate_access_token({"sub": "user-1"})
        outer = subject_var.set("outer-user")
        try:
            await middleware.wrap(endpoint)(self.request_with(token))

            assert subject_var.get() == "outer-user"
        finally:
            subject_var.reset(outer)
