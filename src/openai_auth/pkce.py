"""PKCE generation and authorization-URL construction.

:func:`generate_pkce_pair` produces a ``code_verifier`` / ``code_challenge``
pair (S256, :rfc:`7636`), :func:`generate_state` an opaque anti-CSRF
token, and :func:`build_flow` combines both with an
:class:`~openai_auth.models.OAuthConfig` into the
:class:`~openai_auth.models.OAuthFlow` the caller keeps until the code is
exchanged.

Randomness comes from :mod:`secrets`; an entropy-source failure propagates
unchanged.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode

from openai_auth.models import OAuthConfig, OAuthFlow, PKCEPair

VERIFIER_ENTROPY_BYTES = 32
"""32 random bytes encode to a 43-character verifier, the RFC 7636 minimum."""

STATE_ENTROPY_BYTES = 32


def _b64url_nopad(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def compute_challenge(verifier: str) -> str:
    """Return the S256 challenge for *verifier*: ``b64url(sha256(verifier))`` without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _b64url_nopad(digest)


def generate_pkce_pair() -> PKCEPair:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A :class:`~openai_auth.models.PKCEPair`. The verifier is 43
        characters from the unreserved URL-safe alphabet.
    """
    verifier = _b64url_nopad(secrets.token_bytes(VERIFIER_ENTROPY_BYTES))
    return PKCEPair(verifier=verifier, challenge=compute_challenge(verifier))


def generate_state() -> str:
    """Return a random, URL-safe state token for CSRF protection."""
    return _b64url_nopad(secrets.token_bytes(STATE_ENTROPY_BYTES))


def build_authorization_url(config: OAuthConfig, state: str, challenge: str) -> str:
    """Build the URL the user visits to authorize the client.

    Core parameters come first, followed by the configured
    ``extra_authorize_params``. An ``auth_url`` that already carries a
    query string is extended with ``&``.
    """
    params: dict[str, str] = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.resolved_redirect_uri,
        "scope": config.scope,
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
    }
    params.update(config.extra_authorize_params)

    separator = "&" if "?" in config.auth_url else "?"
    return f"{config.auth_url}{separator}{urlencode(params)}"


def build_flow(config: OAuthConfig) -> OAuthFlow:
    """Start one authentication attempt.

    Generates a fresh PKCE pair and state and returns the resulting
    :class:`~openai_auth.models.OAuthFlow`. No I/O is performed.
    """
    pkce = generate_pkce_pair()
    state = generate_state()
    return OAuthFlow(
        authorization_url=build_authorization_url(config, state, pkce.challenge),
        pkce_verifier=pkce.verifier,
        state=state,
    )
