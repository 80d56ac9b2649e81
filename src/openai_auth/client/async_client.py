"""Asynchronous OAuth client -- the non-blocking core of openai_auth.

This module provides :class:`AsyncOAuthClient`, which starts PKCE flows and
talks to the authorization server's token endpoint over
:class:`httpx.AsyncClient`:

- **Code exchange** -- ``authorization_code`` grant with the PKCE verifier.
- **Refresh** -- ``refresh_token`` grant, keeping the caller's refresh
  token when the server does not rotate it.
- **API-key exchange** -- token-exchange grant trading the ID token for an
  opaque API key.

Every call is a single attempt: no retries, no shared mutable state beyond
the immutable configuration and an optional reusable transport. Calls are
safe to run concurrently on one client.

See Also:
    :class:`~openai_auth.client.sync_client.SyncOAuthClient` for the
    blocking equivalent.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from openai_auth.callback import RenderFunc, run_callback_server
from openai_auth.claims import extract_account_id
from openai_auth.exceptions import (
    ExchangeFailedError,
    MalformedResponseError,
    NetworkError,
    OpenAIAuthError,
)
from openai_auth.models import OAuthConfig, OAuthFlow, TokenSet
from openai_auth.pkce import build_flow

logger = logging.getLogger(__name__)

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"


class AsyncOAuthClient:
    """Asynchronous client for the OAuth Authorization Code + PKCE flow.

    May be used as an async context manager, in which case one
    :class:`httpx.AsyncClient` is shared by every call made inside the
    block. Outside a block each call opens and closes its own client.

    Args:
        config: Client configuration. Defaults to :class:`OAuthConfig`
            defaults (the public OpenAI client).
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests or a proxy-aware transport.

    Example::

        async with AsyncOAuthClient(config) as client:
            flow = client.start_flow()
            code = await client.wait_for_callback(flow, timeout=300)
            tokens = await client.exchange_code(code, flow.pkce_verifier)
    """

    def __init__(
        self,
        config: Optional[OAuthConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or OAuthConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def config(self) -> OAuthConfig:
        """The immutable client configuration."""
        return self._config

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AsyncOAuthClient:
        self._client = self._build_http_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # Flow
    # ------------------------------------------------------------------ #

    def start_flow(self) -> OAuthFlow:
        """Generate a PKCE pair and state and build the authorization URL."""
        return build_flow(self._config)

    async def wait_for_callback(
        self,
        flow: OAuthFlow,
        timeout: Optional[float] = None,
        render: Optional[RenderFunc] = None,
    ) -> str:
        """Listen on the configured redirect port for *flow*'s redirect.

        See :func:`~openai_auth.callback.run_callback_server` for the
        failure modes.
        """
        return await run_callback_server(
            self._config.redirect_port, flow.state, timeout=timeout, render=render
        )

    # ------------------------------------------------------------------ #
    # Token endpoint operations
    # ------------------------------------------------------------------ #

    async def exchange_code(self, code: str, verifier: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            code: The authorization code from the callback.
            verifier: The PKCE verifier of the flow that produced *code*.

        Raises:
            ExchangeFailedError: On a non-2xx response.
            MalformedResponseError: If the response lacks ``access_token``
                or has mistyped fields.
            NetworkError: On transport failures.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.resolved_redirect_uri,
            "client_id": self._config.client_id,
            "code_verifier": verifier,
        }
        logger.debug("Exchanging authorization code at %s", self._config.token_url)
        payload = await self._post_form(self._config.token_url, data)
        return TokenSet.from_token_response(payload)

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """Obtain a fresh access token with *refresh_token*.

        A response without ``refresh_token`` keeps the one passed in.

        Raises:
            ExchangeFailedError, MalformedResponseError, NetworkError: As
                for :meth:`exchange_code`.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._config.client_id,
        }
        logger.debug("Refreshing access token at %s", self._config.token_url)
        payload = await self._post_form(self._config.token_url, data)
        return TokenSet.from_token_response(payload, refresh_token=refresh_token)

    async def obtain_api_key(self, id_token: str) -> str:
        """Exchange an ID token for an opaque API key.

        Raises:
            ExchangeFailedError, NetworkError: As for :meth:`exchange_code`.
            MalformedResponseError: If the configured key field is missing.
        """
        data = {
            "grant_type": TOKEN_EXCHANGE_GRANT,
            "client_id": self._config.client_id,
            "requested_token": self._config.api_key_requested_token,
            "subject_token": id_token,
            "subject_token_type": ID_TOKEN_TYPE,
        }
        logger.debug("Exchanging ID token for an API key at %s", self._config.api_key_exchange_url)
        payload = await self._post_form(self._config.api_key_exchange_url, data)

        field = self._config.api_key_field
        api_key = payload.get(field) if isinstance(payload, dict) else None
        if not isinstance(api_key, str) or not api_key:
            raise MalformedResponseError(f"API key exchange response missing '{field}' field")
        return api_key

    async def exchange_code_for_api_key(self, code: str, verifier: str) -> TokenSet:
        """Exchange a code for tokens, then trade the ID token for an API key.

        The second step is **partial-success**: when the response carries no
        ID token, or the API-key exchange raises any
        :class:`~openai_auth.exceptions.OpenAIAuthError`, the tokens from
        the first step are still returned, with ``api_key=None`` and the
        failure described in ``api_key_error``. Only failures of the code
        exchange itself propagate.
        """
        tokens = await self.exchange_code(code, verifier)

        if not tokens.id_token:
            reason = "Token response contained no id_token to exchange for an API key"
            logger.warning("%s; returning tokens without an API key", reason)
            return tokens.model_copy(update={"api_key_error": reason})

        try:
            api_key = await self.obtain_api_key(tokens.id_token)
        except OpenAIAuthError as exc:
            logger.warning("API key exchange failed; returning tokens without an API key: %s", exc)
            return tokens.model_copy(update={"api_key_error": str(exc)})

        return tokens.model_copy(update={"api_key": api_key})

    async def complete_flow(self, flow: OAuthFlow, code: str) -> TokenSet:
        """Exchange the code captured for *flow*.

        Runs :meth:`exchange_code_for_api_key` when the config enables
        ``api_key_exchange``, otherwise :meth:`exchange_code`.
        """
        if self._config.api_key_exchange:
            return await self.exchange_code_for_api_key(code, flow.pkce_verifier)
        return await self.exchange_code(code, flow.pkce_verifier)

    def extract_account_id(self, access_token: str) -> str:
        """Read the ChatGPT account ID claim from *access_token* (unverified)."""
        return extract_account_id(access_token)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _build_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout,
            verify=self._config.verify_ssl,
            transport=self._transport,
        )

    async def _post_form(self, url: str, data: dict[str, str]) -> Any:
        """POST a form to *url* and return the decoded JSON body."""
        if self._client is not None:
            return await self._send(self._client, url, data)
        async with self._build_http_client() as client:
            return await self._send(client, url, data)

    @staticmethod
    async def _send(client: httpx.AsyncClient, url: str, data: dict[str, str]) -> Any:
        try:
            response = await client.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"Request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise ExchangeFailedError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Token endpoint returned invalid JSON: {exc}") from exc
