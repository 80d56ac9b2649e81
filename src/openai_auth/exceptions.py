"""Exception hierarchy for openai_auth.

All exceptions inherit from :class:`OpenAIAuthError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`openai_auth.exit_codes`. Library callers catch the specific
subclasses; the CLI in :mod:`openai_auth.app` catches the base class and
exits with the attached code.

Subclass hierarchy::

    OpenAIAuthError (exit 1)
    +-- ConfigInvalidError          (exit 2)
    +-- NetworkError                (exit 6)
    +-- ExchangeFailedError         (exit 4)
    +-- MalformedResponseError      (exit 4)
    +-- TokenError                  (exit 7)
    |   +-- MalformedTokenError
    |   +-- ClaimNotFoundError
    +-- CallbackError_              (exit 3)
        +-- StateMismatchError
        +-- MissingCodeError
        +-- AuthorizationDeniedError
        +-- CallbackServerError     (exit 1)
        +-- CallbackCancelledError  (exit 8)
        +-- CallbackTimeoutError    (exit 8)
"""

from __future__ import annotations

from openai_auth.exit_codes import (
    EXIT_AUTHORIZATION_FAILED,
    EXIT_CONNECTION_ERROR,
    EXIT_EXCHANGE_FAILED,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_CONFIG,
    EXIT_TIMEOUT,
    EXIT_TOKEN_ERROR,
)


class OpenAIAuthError(Exception):
    """Base exception for all openai_auth errors.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigInvalidError(OpenAIAuthError):
    """Raised when an :class:`~openai_auth.models.OAuthConfig` fails validation."""

    exit_code = EXIT_INVALID_CONFIG


class NetworkError(OpenAIAuthError):
    """Raised on transport failures (DNS resolution, TLS, connect, timeout)."""

    exit_code = EXIT_CONNECTION_ERROR


class ExchangeFailedError(OpenAIAuthError):
    """Raised when the token endpoint answers with a non-2xx status.

    Args:
        status: HTTP status code returned by the endpoint.
        body: Raw response body, kept verbatim for diagnostics.
    """

    exit_code = EXIT_EXCHANGE_FAILED

    def __init__(self, status: int, body: str):
        super().__init__(f"Token endpoint returned HTTP {status}: {body}")
        self.status = status
        self.body = body


class MalformedResponseError(OpenAIAuthError):
    """Raised when a token response is not JSON or lacks required fields."""

    exit_code = EXIT_EXCHANGE_FAILED


class TokenError(OpenAIAuthError):
    """Base class for claim extraction failures."""

    exit_code = EXIT_TOKEN_ERROR


class MalformedTokenError(TokenError):
    """Raised when a token is not three dot-separated segments with a JSON payload."""


class ClaimNotFoundError(TokenError):
    """Raised when the requested claim is absent from the token payload."""

    def __init__(self, claim: str):
        super().__init__(f"Claim '{claim}' not found in token")
        self.claim = claim


class CallbackError_(OpenAIAuthError):
    """Base class for failures of the local callback listener.

    Named with a trailing underscore to avoid clashing with the
    :class:`~openai_auth.models.CallbackError` event.
    """

    exit_code = EXIT_AUTHORIZATION_FAILED


class StateMismatchError(CallbackError_):
    """Raised when the redirect's ``state`` does not match the flow's state.

    This is the anti-CSRF boundary; it always aborts the flow.
    """

    def __init__(self, message: str = "State mismatch - possible CSRF attack"):
        super().__init__(message)


class MissingCodeError(CallbackError_):
    """Raised when the redirect carries neither a code nor an error."""

    def __init__(self, message: str = "No authorization code received"):
        super().__init__(message)


class AuthorizationDeniedError(CallbackError_):
    """Raised when the authorization server redirects back with ``error``."""

    def __init__(self, reason: str, description: str | None = None):
        message = f"Authorization denied: {reason}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.reason = reason
        self.description = description


class CallbackServerError(CallbackError_):
    """Raised when the local listener cannot bind its port."""

    exit_code = EXIT_GENERIC_FAILURE


class CallbackCancelledError(CallbackError_):
    """Raised when a pending callback wait is cancelled."""

    exit_code = EXIT_TIMEOUT

    def __init__(self, message: str = "Waiting for the OAuth callback was cancelled"):
        super().__init__(message)


class CallbackTimeoutError(CallbackError_):
    """Raised when no callback arrives before the deadline."""

    exit_code = EXIT_TIMEOUT
