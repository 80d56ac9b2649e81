"""Blocking OAuth client -- mirrors :class:`~openai_auth.client.async_client.AsyncOAuthClient`.

:class:`SyncOAuthClient` offers the same operations as the async client
for callers without an event loop of their own. Each call drives the async
implementation to completion inside a private :func:`asyncio.run` loop
with a fresh :class:`httpx.AsyncClient`; both are torn down before the call
returns, so nothing outlives the call.

.. note::
   Because every call runs its own event loop, the adapter cannot be used
   from inside a running loop (``asyncio.run`` raises ``RuntimeError``).
   Use :class:`~openai_auth.client.async_client.AsyncOAuthClient` there.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from openai_auth.callback import DEFAULT_TIMEOUT, RenderFunc, wait_for_callback
from openai_auth.claims import extract_account_id
from openai_auth.client.async_client import AsyncOAuthClient
from openai_auth.models import OAuthConfig, OAuthFlow, TokenSet
from openai_auth.pkce import build_flow

T = TypeVar("T")


class SyncOAuthClient:
    """Blocking client for the OAuth Authorization Code + PKCE flow.

    Args:
        config: Client configuration. Defaults to :class:`OAuthConfig`
            defaults.
        transport: Optional async httpx transport shared by every call.
            It must survive being used from successive event loops, which
            :class:`httpx.MockTransport` does.

    Example::

        client = SyncOAuthClient(config)
        flow = client.start_flow()
        print("Visit:", flow.authorization_url)
        code = client.wait_for_callback(flow, timeout=300)
        tokens = client.exchange_code(code, flow.pkce_verifier)
    """

    def __init__(
        self,
        config: Optional[OAuthConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or OAuthConfig()
        self._transport = transport

    @property
    def config(self) -> OAuthConfig:
        """The immutable client configuration."""
        return self._config

    def start_flow(self) -> OAuthFlow:
        """Generate a PKCE pair and state and build the authorization URL."""
        return build_flow(self._config)

    def wait_for_callback(
        self,
        flow: OAuthFlow,
        timeout: float = DEFAULT_TIMEOUT,
        render: Optional[RenderFunc] = None,
    ) -> str:
        """Block until *flow*'s redirect arrives on the configured port."""
        return wait_for_callback(
            self._config.redirect_port, flow.state, timeout=timeout, render=render
        )

    def exchange_code(self, code: str, verifier: str) -> TokenSet:
        """Blocking :meth:`AsyncOAuthClient.exchange_code`."""
        return self._run(lambda client: client.exchange_code(code, verifier))

    def refresh_token(self, refresh_token: str) -> TokenSet:
        """Blocking :meth:`AsyncOAuthClient.refresh_token`."""
        return self._run(lambda client: client.refresh_token(refresh_token))

    def obtain_api_key(self, id_token: str) -> str:
        """Blocking :meth:`AsyncOAuthClient.obtain_api_key`."""
        return self._run(lambda client: client.obtain_api_key(id_token))

    def exchange_code_for_api_key(self, code: str, verifier: str) -> TokenSet:
        """Blocking :meth:`AsyncOAuthClient.exchange_code_for_api_key`.

        Same partial-success contract: a failed API-key step yields tokens
        with ``api_key=None`` and ``api_key_error`` set.
        """
        return self._run(lambda client: client.exchange_code_for_api_key(code, verifier))

    def complete_flow(self, flow: OAuthFlow, code: str) -> TokenSet:
        """Blocking :meth:`AsyncOAuthClient.complete_flow`."""
        return self._run(lambda client: client.complete_flow(flow, code))

    def extract_account_id(self, access_token: str) -> str:
        """Read the ChatGPT account ID claim from *access_token* (unverified)."""
        return extract_account_id(access_token)

    def _run(self, operation: Callable[[AsyncOAuthClient], Awaitable[T]]) -> T:
        async def call() -> T:
            async with AsyncOAuthClient(self._config, transport=self._transport) as client:
                return await operation(client)

        return asyncio.run(call())
