"""Numeric process exit codes for the ``openai-auth`` command line.

Each constant maps to a failure category and is referenced by the
corresponding :class:`~openai_auth.exceptions.OpenAIAuthError` subclass.
Library callers never see these values; they only matter when the CLI
converts an exception into a process exit status.

Example::

    $ openai-auth login --manual
    $ echo $?
    4   # EXIT_EXCHANGE_FAILED -- the token endpoint rejected the code
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_CONFIG = 2
"""The client configuration or command-line arguments were invalid."""

EXIT_AUTHORIZATION_FAILED = 3
"""The authorization redirect was denied, mismatched, or incomplete."""

EXIT_EXCHANGE_FAILED = 4
"""The token endpoint answered with an error or an unusable payload."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, TLS, connection refused)."""

EXIT_TOKEN_ERROR = 7
"""A token could not be decoded or lacked the requested claim."""

EXIT_TIMEOUT = 8
"""No callback arrived before the deadline, or the wait was cancelled."""
