"""Shared test fixtures for openai_auth.

Provides configuration fixtures pointing at a fake authorization server,
a free localhost port for listener tests, unsigned JWT construction, and
global output isolation. These fixtures are automatically discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Callable

import pytest

from openai_auth.callback import find_free_port
from openai_auth.models import OAuthConfig
from openai_auth.output import reset_output


TEST_ISSUER = "https://auth.example.com"
TEST_TOKEN_URL = f"{TEST_ISSUER}/oauth/token"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def _segment(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _make_jwt(payload: dict[str, Any]) -> str:
    header = _segment({"alg": "none", "typ": "JWT"})
    return f"{header}.{_segment(payload)}.signature"


@pytest.fixture
def make_jwt() -> Callable[[dict[str, Any]], str]:
    """Factory building an unsigned compact JWT carrying a payload."""
    return _make_jwt


@pytest.fixture
def account_token() -> str:
    """Access token carrying the ChatGPT account id ``acct_42``."""
    return _make_jwt(
        {
            "sub": "user-1",
            "https://api.openai.com/auth": {"chatgpt_account_id": "acct_42"},
        }
    )


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """A TCP port on 127.0.0.1 that was free a moment ago."""
    return find_free_port()


@pytest.fixture
def oauth_config() -> OAuthConfig:
    """Configuration for a fake issuer with no provider extras."""
    return (
        OAuthConfig.builder()
        .client_id("test-client")
        .issuer(TEST_ISSUER)
        .redirect_port(8765)
        .clear_extra_authorize_params()
        .timeout(5)
        .build()
    )


@pytest.fixture
def api_key_config() -> OAuthConfig:
    """Like :func:`oauth_config` with the API-key exchange enabled."""
    return (
        OAuthConfig.builder()
        .client_id("test-client")
        .issuer(TEST_ISSUER)
        .redirect_port(8765)
        .api_key_exchange()
        .timeout(5)
        .build()
    )


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
