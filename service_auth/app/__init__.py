"""
Auth service package: bearer token verification against a JWKS endpoint.

- app.main: Application entrypoint that wires routes and lifecycle.
- app.jwks: JWKS client with background refresh and a key snapshot.
- app.validation: Signature and claim checks for RSA-signed JWTs.
- app.middleware: Request middleware, chain composition and factories.

Design notes:
- Importing this package performs no network calls. The JWKS client starts
  its refresh thread when it is constructed, not at import time.
- Use the shared/ utilities for logging, metrics, config and errors.
"""
