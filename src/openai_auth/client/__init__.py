"""OAuth clients for the token endpoint.

Exports:
    :class:`AsyncOAuthClient` -- the non-blocking core on ``httpx.AsyncClient``.
    :class:`SyncOAuthClient` -- blocking adapter that runs each call in a
    private event loop.
"""

from openai_auth.client.async_client import AsyncOAuthClient
from openai_auth.client.sync_client import SyncOAuthClient

__all__ = ["AsyncOAuthClient", "SyncOAuthClient"]
