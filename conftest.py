"""
Shared pytest fixtures.

Lives at the repository root so ``shared``, ``service_auth`` and ``mocks`` are
importable from every test directory.
"""

import pytest

from shared.logging import configure_logging
from shared.test_helpers import MockTokenGenerator, generate_signing_key


@pytest.fixture(scope="session", autouse=True)
def _configure_logging():
    configure_logging("auth-tests", "debug")


@pytest.fixture(scope="session")
def signing_key():
    """RSA signing key shared by the whole session; generation is slow."""
    return generate_signing_key("test-key-1")


@pytest.fixture(scope="session")
def other_signing_key():
    return generate_signing_key("test-key-2")


@pytest.fixture
def token_generator(signing_key):
    return MockTokenGenerator(signing_key)
