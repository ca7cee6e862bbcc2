"""
JWKS bearer authentication service.
"""
