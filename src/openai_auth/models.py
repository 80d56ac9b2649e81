"""Canonical models shared across all openai_auth modules.

The models fall into three groups:

**Configuration** -- :class:`OAuthConfig` and its fluent
:class:`OAuthConfigBuilder`. Immutable once built; read-only afterwards.

**Flow and token values** -- :class:`PKCEPair`, :class:`OAuthFlow` and
:class:`TokenSet`. Secrets (PKCE verifier, state, tokens) are excluded
from ``repr`` so that logging a model never leaks them.

**Callback events** -- :class:`CallbackSuccess`, :class:`CallbackError`,
:class:`CallbackStateMismatch` and :class:`CallbackMissingCode`, the
variants of :data:`CallbackEvent` produced once per callback listener
invocation and handed to the HTML render function.

Configuration and token models use Pydantic v2 with frozen
``model_config``; callback events are frozen dataclasses.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from openai_auth.exceptions import ConfigInvalidError, MalformedResponseError

DEFAULT_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
DEFAULT_ISSUER = "https://auth.openai.com"
DEFAULT_REDIRECT_URI = "http://localhost:{port}/auth/callback"
DEFAULT_REDIRECT_PORT = 1455
DEFAULT_SCOPES: tuple[str, ...] = ("openid", "profile", "email", "offline_access")
DEFAULT_EXTRA_AUTHORIZE_PARAMS: dict[str, str] = {
    "id_token_add_organizations": "true",
    "codex_cli_simplified_flow": "true",
    "originator": "codex_cli_rs",
}
DEFAULT_API_KEY_REQUESTED_TOKEN = "openai-api-key"

EXPIRY_MARGIN_SECONDS = 30
"""Seconds subtracted from a token's lifetime by :meth:`TokenSet.is_expired`."""

# Query parameters owned by the flow builder; extras may not override them.
RESERVED_AUTHORIZE_PARAMS = frozenset(
    {
        "response_type",
        "client_id",
        "redirect_uri",
        "scope",
        "state",
        "code_challenge",
        "code_challenge_method",
    }
)


# --- Configuration ---


class OAuthConfig(BaseModel):
    """Client configuration for the authorization server.

    ``auth_url`` and ``token_url`` are derived from ``issuer`` when not
    given explicitly (``{issuer}/oauth/authorize`` and
    ``{issuer}/oauth/token``). ``redirect_uri`` is a template: a
    ``{port}`` placeholder is replaced by ``redirect_port``.

    Prefer :meth:`builder`, which converts validation failures into
    :class:`~openai_auth.exceptions.ConfigInvalidError`. Constructing the
    model directly raises :class:`pydantic.ValidationError` instead.

    Example::

        config = (
            OAuthConfig.builder()
            .client_id("app_123")
            .redirect_port(8765)
            .build()
        )
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(default=DEFAULT_CLIENT_ID, description="OAuth client identifier")
    issuer: str = Field(default=DEFAULT_ISSUER, description="Authorization server base URL")
    auth_url: str = Field(default="", description="Authorization endpoint")
    token_url: str = Field(default="", description="Token endpoint")
    redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI,
        description="Redirect URI; '{port}' is replaced by redirect_port",
    )
    redirect_port: int = Field(default=DEFAULT_REDIRECT_PORT, ge=1, le=65535)
    scopes: tuple[str, ...] = Field(default=DEFAULT_SCOPES)
    extra_authorize_params: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_EXTRA_AUTHORIZE_PARAMS),
        description="Provider-specific query parameters appended to the authorization URL",
    )
    # API-key exchange (ID token -> opaque key)
    api_key_exchange: bool = Field(
        default=False,
        description="Have complete_flow() also trade the ID token for an API key",
    )
    api_key_exchange_url: str = Field(
        default="", description="Token-exchange endpoint; defaults to token_url"
    )
    api_key_requested_token: str = DEFAULT_API_KEY_REQUESTED_TOKEN
    api_key_field: str = Field(
        default="access_token",
        description="Field in the exchange response containing the key",
    )
    # Transport
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify TLS certificates")

    @model_validator(mode="before")
    @classmethod
    def _derive_endpoints(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        issuer = str(data.get("issuer") or DEFAULT_ISSUER).rstrip("/")
        data["issuer"] = issuer
        if not data.get("auth_url"):
            data["auth_url"] = f"{issuer}/oauth/authorize"
        if not data.get("token_url"):
            data["token_url"] = f"{issuer}/oauth/token"
        if not data.get("api_key_exchange_url"):
            data["api_key_exchange_url"] = data["token_url"]
        return data

    @field_validator("client_id")
    @classmethod
    def _client_id_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("client_id must not be empty")
        return value

    @field_validator("issuer", "auth_url", "token_url", "api_key_exchange_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"'{value}' is not an http(s) URL")
        return value

    @field_validator("redirect_uri")
    @classmethod
    def _redirect_uri_is_http(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"redirect_uri '{value}' is not an http(s) URL")
        return value

    @field_validator("scopes")
    @classmethod
    def _scopes_not_blank(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value or any(not scope.strip() for scope in value):
            raise ValueError("scopes must be a non-empty list of non-blank names")
        return value

    @field_validator("extra_authorize_params")
    @classmethod
    def _extras_do_not_shadow(cls, value: dict[str, str]) -> dict[str, str]:
        clash = sorted(RESERVED_AUTHORIZE_PARAMS.intersection(value))
        if clash:
            raise ValueError(
                f"extra_authorize_params may not override {', '.join(clash)}"
            )
        return value

    @property
    def resolved_redirect_uri(self) -> str:
        """The redirect URI with ``{port}`` substituted."""
        return self.redirect_uri.replace("{port}", str(self.redirect_port))

    @property
    def scope(self) -> str:
        """Space-separated scope string sent to the authorization endpoint."""
        return " ".join(self.scopes)

    @classmethod
    def builder(cls) -> OAuthConfigBuilder:
        """Return a fresh :class:`OAuthConfigBuilder`."""
        return OAuthConfigBuilder()


class OAuthConfigBuilder:
    """Fluent builder for :class:`OAuthConfig`.

    Unset fields fall back to the model defaults. :meth:`build` validates
    everything at once and raises
    :class:`~openai_auth.exceptions.ConfigInvalidError` listing every
    problem found.
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._extras: dict[str, str] = dict(DEFAULT_EXTRA_AUTHORIZE_PARAMS)

    def client_id(self, client_id: str) -> OAuthConfigBuilder:
        self._values["client_id"] = client_id
        return self

    def issuer(self, issuer: str) -> OAuthConfigBuilder:
        self._values["issuer"] = issuer
        return self

    def auth_url(self, auth_url: str) -> OAuthConfigBuilder:
        self._values["auth_url"] = auth_url
        return self

    def token_url(self, token_url: str) -> OAuthConfigBuilder:
        self._values["token_url"] = token_url
        return self

    def redirect_uri(self, redirect_uri: str) -> OAuthConfigBuilder:
        self._values["redirect_uri"] = redirect_uri
        return self

    def redirect_port(self, port: int) -> OAuthConfigBuilder:
        self._values["redirect_port"] = port
        return self

    def scopes(self, *scopes: str) -> OAuthConfigBuilder:
        self._values["scopes"] = tuple(scopes)
        return self

    def extra_authorize_param(self, name: str, value: str) -> OAuthConfigBuilder:
        self._extras[name] = value
        return self

    def clear_extra_authorize_params(self) -> OAuthConfigBuilder:
        """Drop the provider-specific defaults (useful for generic servers)."""
        self._extras.clear()
        return self

    def api_key_exchange(self, enabled: bool = True) -> OAuthConfigBuilder:
        self._values["api_key_exchange"] = enabled
        return self

    def api_key_exchange_url(self, url: str) -> OAuthConfigBuilder:
        self._values["api_key_exchange_url"] = url
        return self

    def api_key_requested_token(self, requested_token: str) -> OAuthConfigBuilder:
        self._values["api_key_requested_token"] = requested_token
        return self

    def api_key_field(self, field: str) -> OAuthConfigBuilder:
        self._values["api_key_field"] = field
        return self

    def timeout(self, seconds: float) -> OAuthConfigBuilder:
        self._values["timeout"] = seconds
        return self

    def verify_ssl(self, verify: bool) -> OAuthConfigBuilder:
        self._values["verify_ssl"] = verify
        return self

    def build(self) -> OAuthConfig:
        """Validate the collected values and return an :class:`OAuthConfig`.

        Raises:
            ConfigInvalidError: If any field is missing or malformed.
        """
        try:
            return OAuthConfig(**self._values, extra_authorize_params=dict(self._extras))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ConfigInvalidError(f"Invalid OAuth configuration: {problems}") from exc


# --- Flow ---


class PKCEPair(NamedTuple):
    """PKCE code verifier and its S256 challenge."""

    verifier: str
    challenge: str


class OAuthFlow(BaseModel):
    """One authentication attempt, created by :func:`~openai_auth.pkce.build_flow`.

    The caller keeps this object until the code has been exchanged. It is
    logically single-use: reusing its verifier or state for a second
    exchange is undefined. Never persist it.
    """

    model_config = ConfigDict(frozen=True)

    authorization_url: str
    pkce_verifier: str = Field(repr=False)
    state: str = Field(repr=False)


# --- Tokens ---


class TokenSet(BaseModel):
    """Tokens returned by an exchange or refresh.

    ``expires_in`` is the lifetime reported by the server at ``issued_at``
    (epoch seconds). A token set without ``expires_in`` never expires.

    ``api_key_error`` is only ever set by
    :meth:`~openai_auth.client.async_client.AsyncOAuthClient.exchange_code_for_api_key`
    when the ID-token-to-API-key step failed but the code exchange itself
    succeeded.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    id_token: Optional[str] = Field(default=None, repr=False)
    api_key: Optional[str] = Field(default=None, repr=False)
    api_key_error: Optional[str] = None
    issued_at: float = Field(default_factory=time.time)
    expires_in: Optional[int] = Field(default=None, ge=0)

    @property
    def expires_at(self) -> Optional[float]:
        """Epoch seconds at which the access token expires, or ``None``."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    def seconds_remaining(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds until expiry (never negative), or ``None`` if it never expires."""
        expires_at = self.expires_at
        if expires_at is None:
            return None
        current = time.time() if now is None else now
        return max(0.0, expires_at - current)

    def is_expired(
        self,
        now: Optional[float] = None,
        margin: float = EXPIRY_MARGIN_SECONDS,
    ) -> bool:
        """Return True once ``now`` is within ``margin`` seconds of expiry.

        Args:
            now: Epoch seconds to evaluate against; defaults to the current time.
            margin: Safety window so a token is not used right before it lapses.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return False
        current = time.time() if now is None else now
        return current >= expires_at - margin

    @classmethod
    def from_token_response(
        cls,
        payload: Any,
        *,
        refresh_token: Optional[str] = None,
        issued_at: Optional[float] = None,
    ) -> TokenSet:
        """Build a token set from a token endpoint JSON body.

        Args:
            payload: Decoded JSON response.
            refresh_token: Kept when the response does not rotate the
                refresh token.
            issued_at: Issue time; defaults to now.

        Raises:
            MalformedResponseError: If ``access_token`` is missing or any
                consumed field has the wrong type.
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Token response is not a JSON object (got {type(payload).__name__})"
            )

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MalformedResponseError("Token response missing 'access_token' field")

        optional: dict[str, Optional[str]] = {}
        for name in ("refresh_token", "id_token"):
            value = payload.get(name)
            if value is not None and not isinstance(value, str):
                raise MalformedResponseError(f"Token response field '{name}' is not a string")
            optional[name] = value or None

        return cls(
            access_token=access_token,
            refresh_token=optional["refresh_token"] or refresh_token,
            id_token=optional["id_token"],
            issued_at=time.time() if issued_at is None else issued_at,
            expires_in=_parse_expires_in(payload.get("expires_in")),
        )


def _parse_expires_in(value: Any) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise MalformedResponseError("Token response field 'expires_in' is not a number")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if not isinstance(value, int) or value < 0:
        raise MalformedResponseError(
            f"Token response field 'expires_in' is not a non-negative integer: {value!r}"
        )
    return value


# --- Callback events ---


@dataclass(frozen=True)
class CallbackSuccess:
    """The redirect carried a code and the expected state."""

    code: str
    state: str


@dataclass(frozen=True)
class CallbackError:
    """The authorization server redirected back with ``error``."""

    reason: str
    description: Optional[str] = None


@dataclass(frozen=True)
class CallbackStateMismatch:
    """The redirect's state was missing or did not match the flow."""


@dataclass(frozen=True)
class CallbackMissingCode:
    """The redirect carried neither ``code`` nor ``error``."""


CallbackEvent = Union[CallbackSuccess, CallbackError, CallbackStateMismatch, CallbackMissingCode]
"""The outcome of a single callback request."""
