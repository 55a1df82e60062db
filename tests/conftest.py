"""Shared pytest fixtures for Fiscalia tests."""
import sys
sys.dont_write_bytecode = True

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from fiscalia.infra.time import FixedClock  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_oidc_jwks_cache():
    """Reset the JWKS cache to avoid cross-test contamination.

    The cache lives at module level and outlives a single test; a JWKS
    cached by a previous test would not match the current test's keys.
    """
    import fiscalia.api.auth as auth_module

    auth_module._jwks_cache.clear()
    yield
    auth_module._jwks_cache.clear()


@pytest.fixture
def clock():
    """Clock fixed at 2026-03-10 12:00 UTC (a Tuesday)."""
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))
