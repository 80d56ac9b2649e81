"""openai_auth -- OAuth 2.0 Authorization Code + PKCE client for OpenAI.

This package signs a user in through the browser, exchanges the resulting
authorization code for access/refresh/ID tokens, refreshes them, and can
trade the ID token for an API key. Both an ``asyncio`` client and a
blocking adapter are provided.

Typical workflow::

    from openai_auth import SyncOAuthClient

    client = SyncOAuthClient()
    flow = client.start_flow()
    print("Visit:", flow.authorization_url)
    code = client.wait_for_callback(flow, timeout=300)
    tokens = client.exchange_code(code, flow.pkce_verifier)

Tokens are returned to the caller and never persisted.

Modules:
    pkce: PKCE pairs, state tokens and authorization URLs.
    client: Async token client and its blocking adapter.
    callback: Single-use local listener for the redirect.
    claims: Unverified JWT claim extraction.
    models: Pydantic models and configuration builder.
    exceptions: Exception hierarchy with exit-code mapping.
    app: The ``openai-auth`` command line.
"""

__version__ = "0.1.0"

from openai_auth.callback import CallbackListener, run_callback_server, wait_for_callback
from openai_auth.claims import decode_claims, extract_account_id, get_claim
from openai_auth.client import AsyncOAuthClient, SyncOAuthClient
from openai_auth.exceptions import OpenAIAuthError
from openai_auth.models import OAuthConfig, OAuthConfigBuilder, OAuthFlow, TokenSet
from openai_auth.pkce import build_flow, generate_pkce_pair, generate_state

__all__ = [
    "AsyncOAuthClient",
    "CallbackListener",
    "OAuthConfig",
    "OAuthConfigBuilder",
    "OAuthFlow",
    "OpenAIAuthError",
    "SyncOAuthClient",
    "TokenSet",
    "build_flow",
    "decode_claims",
    "extract_account_id",
    "generate_pkce_pair",
    "generate_state",
    "get_claim",
    "run_callback_server",
    "wait_for_callback",
]
