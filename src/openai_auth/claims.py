"""Read claims from a compact JWT without verifying it.

.. warning::
   Nothing here checks the token's signature, issuer, audience or expiry.
   These helpers are a read-only convenience for tokens that were just
   received from the token endpoint over TLS. They are **not** an
   authentication check and must never be used to trust a token supplied
   by a third party.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from openai_auth.exceptions import ClaimNotFoundError, MalformedTokenError

OPENAI_AUTH_CLAIM = "https://api.openai.com/auth"
"""Namespace claim holding OpenAI account details."""

CHATGPT_ACCOUNT_ID_CLAIM = "chatgpt_account_id"


def decode_claims(token: str) -> dict[str, Any]:
    """Decode the payload segment of *token* into a dict.

    Raises:
        MalformedTokenError: If the token does not have exactly three
            segments, or the payload is not base64url-encoded JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedTokenError(
            f"Invalid JWT format: expected 3 segments, got {len(parts)}"
        )

    payload = parts[1]
    # JWT uses base64url without padding
    payload += "=" * (-len(payload) % 4)
    try:
        raw = base64.urlsafe_b64decode(payload.encode("ascii"))
        claims = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise MalformedTokenError(f"JWT payload is not base64url JSON: {exc}") from exc

    if not isinstance(claims, dict):
        raise MalformedTokenError("JWT payload is not a JSON object")
    return claims


def get_claim(token: str, name: str, *path: str) -> Any:
    """Return claim *name* from *token*, optionally descending into *path*.

    Example::

        get_claim(token, "https://api.openai.com/auth", "chatgpt_account_id")

    Raises:
        MalformedTokenError: If the token cannot be decoded.
        ClaimNotFoundError: If the claim, or any key along *path*, is absent.
    """
    claims = decode_claims(token)
    if name not in claims:
        raise ClaimNotFoundError(name)

    value = claims[name]
    walked = name
    for key in path:
        walked = f"{walked}.{key}"
        if not isinstance(value, dict) or key not in value:
            raise ClaimNotFoundError(walked)
        value = value[key]
    return value


def extract_account_id(access_token: str) -> str:
    """Extract the ChatGPT account ID from an access token.

    Raises:
        MalformedTokenError: If the token cannot be decoded.
        ClaimNotFoundError: If the account ID claim is absent or empty.
    """
    account_id = get_claim(access_token, OPENAI_AUTH_CLAIM, CHATGPT_ACCOUNT_ID_CLAIM)
    if not isinstance(account_id, str) or not account_id:
        raise ClaimNotFoundError(CHATGPT_ACCOUNT_ID_CLAIM)
    return account_id
