"""
Mock upstream services used by tests and local development.
"""
