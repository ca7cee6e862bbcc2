"""
Mock token issuer serving a JWKS document and minting RS-signed tokens.
"""
