"""Typer application and CLI entry point for openai-auth.

The ``openai-auth`` console script is a thin convenience layer over the
library: it starts a PKCE flow, captures the redirect (or a pasted code),
exchanges it and prints the resulting tokens as JSON on stdout. Nothing is
written to disk; persisting the tokens is left to the caller.

Commands:

* ``url`` -- print a fresh authorization URL with its state and verifier.
* ``login`` -- run the whole browser flow and print the tokens.
* ``refresh`` -- trade a refresh token for new tokens.
* ``claims`` -- decode a token's payload (without verifying it).

Every :class:`~openai_auth.exceptions.OpenAIAuthError` is reported on
stderr and turned into its ``exit_code``.

See Also:
    :mod:`openai_auth.output`: Output routing initialised in :func:`main_callback`.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from urllib.parse import urlsplit

import typer

from openai_auth import __version__
from openai_auth.browser import open_browser
from openai_auth.callback import (
    DEFAULT_TIMEOUT,
    CallbackListener,
    classify_callback,
    resolve_event,
)
from openai_auth.claims import decode_claims, extract_account_id, get_claim
from openai_auth.client import AsyncOAuthClient, SyncOAuthClient
from openai_auth.exceptions import MissingCodeError, OpenAIAuthError, TokenError
from openai_auth.models import OAuthConfig, OAuthFlow, TokenSet
from openai_auth.output import OutputManager, get_output, set_output
from openai_auth.pkce import build_flow

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="openai-auth",
    help="Sign in to OpenAI with OAuth 2.0 Authorization Code + PKCE.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"openai-auth {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~openai_auth.output.OutputManager` and,
    with ``--verbose``, sends library log records at ``DEBUG`` to stderr.
    """
    set_output(OutputManager(no_color=no_color, quiet=quiet, verbose=verbose))
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )


# ------------------------------------------------------------------ #
# Shared options and helpers
# ------------------------------------------------------------------ #

_CLIENT_ID_OPTION = typer.Option(
    None,
    "--client-id",
    envvar="OPENAI_AUTH_CLIENT_ID",
    help="OAuth client ID (defaults to the public OpenAI client).",
)
_ISSUER_OPTION = typer.Option(
    None,
    "--issuer",
    envvar="OPENAI_AUTH_ISSUER",
    help="Authorization server base URL.",
)


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Report an :class:`OpenAIAuthError` on stderr and exit with its code."""
    try:
        yield
    except OpenAIAuthError as exc:
        get_output().error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _build_config(
    client_id: Optional[str],
    issuer: Optional[str],
    port: Optional[int] = None,
    api_key: bool = False,
) -> OAuthConfig:
    builder = OAuthConfig.builder()
    if client_id:
        builder.client_id(client_id)
    if issuer:
        builder.issuer(issuer)
    if port is not None:
        builder.redirect_port(port)
    if api_key:
        builder.api_key_exchange()
    return builder.build()


def _token_payload(tokens: TokenSet) -> dict[str, Any]:
    """JSON-ready view of *tokens*, with expiry and account id when known."""
    data = tokens.model_dump(mode="json")
    data["expires_at"] = tokens.expires_at
    try:
        data["account_id"] = extract_account_id(tokens.access_token)
    except TokenError as exc:
        logger.debug("No account id in access token: %s", exc)
    return data


def _emit_tokens(tokens: TokenSet) -> None:
    out = get_output()
    if tokens.api_key_error:
        out.warning(f"API key exchange failed: {tokens.api_key_error}")
    out.print_json(_token_payload(tokens))


def _code_from_paste(pasted: str, expected_state: str) -> str:
    """Accept either a bare code or the full redirect URL.

    A URL (or raw query string) goes through the same state check as the
    local listener, so a redirect from another flow is rejected.
    """
    pasted = pasted.strip()
    if not pasted:
        raise MissingCodeError()
    if "://" in pasted:
        query = urlsplit(pasted).query
    elif "code=" in pasted or "error=" in pasted:
        query = pasted.lstrip("?")
    else:
        return pasted
    return resolve_event(classify_callback(query, expected_state))


def _present_url(flow: OAuthFlow, no_browser: bool) -> None:
    out = get_output()
    if not no_browser and open_browser(flow.authorization_url):
        out.info("Opened the authorization page in your browser.")
        out.info(f"If it did not open, visit: {flow.authorization_url}")
    else:
        out.info(f"Open this URL to sign in: {flow.authorization_url}")


async def _login_with_listener(
    config: OAuthConfig,
    timeout: float,
    no_browser: bool,
) -> TokenSet:
    async with AsyncOAuthClient(config) as client:
        flow = client.start_flow()
        # bind before the user can reach the redirect URI
        async with CallbackListener(config.redirect_port, flow.state) as listener:
            await asyncio.to_thread(_present_url, flow, no_browser)
            get_output().info(
                f"Waiting for the redirect on port {listener.port} "
                f"(timeout {timeout:g}s)..."
            )
            code = await listener.wait(timeout)
        return await client.complete_flow(flow, code)


def _login_manual(config: OAuthConfig, no_browser: bool) -> TokenSet:
    client = SyncOAuthClient(config)
    flow = client.start_flow()
    _present_url(flow, no_browser)
    pasted = typer.prompt("Paste the authorization code or the full redirect URL")
    return client.complete_flow(flow, _code_from_paste(pasted, flow.state))


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("url")
def url_command(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Redirect port."),
    client_id: Optional[str] = _CLIENT_ID_OPTION,
    issuer: Optional[str] = _ISSUER_OPTION,
) -> None:
    """Print a fresh authorization URL with its state and PKCE verifier.

    Keep the verifier: ``login --manual`` style exchanges need it.
    """
    with _handle_errors():
        flow = build_flow(_build_config(client_id, issuer, port))
        get_output().print_json(
            {
                "authorization_url": flow.authorization_url,
                "state": flow.state,
                "pkce_verifier": flow.pkce_verifier,
            }
        )


@app.command("login")
def login_command(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Redirect port."),
    client_id: Optional[str] = _CLIENT_ID_OPTION,
    issuer: Optional[str] = _ISSUER_OPTION,
    api_key: bool = typer.Option(
        True, "--api-key/--no-api-key", help="Also exchange the ID token for an API key."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
    manual: bool = typer.Option(
        False, "--manual", help="Paste the code instead of running a local listener."
    ),
    timeout: float = typer.Option(
        DEFAULT_TIMEOUT, "--timeout", "-t", min=1, help="Seconds to wait for the redirect."
    ),
) -> None:
    """Sign in through the browser and print the tokens as JSON.

    [bold]Examples:[/bold]

        openai-auth login
        openai-auth login --api-key --no-browser
        openai-auth login --manual
    """
    with _handle_errors():
        config = _build_config(client_id, issuer, port, api_key)
        get_output().debug(f"Redirect URI: {config.resolved_redirect_uri}")
        if manual:
            tokens = _login_manual(config, no_browser)
        else:
            tokens = asyncio.run(_login_with_listener(config, timeout, no_browser))
        get_output().success("Signed in.")
        _emit_tokens(tokens)


@app.command("refresh")
def refresh_command(
    refresh_token: str = typer.Argument(help="Refresh token from a previous login."),
    client_id: Optional[str] = _CLIENT_ID_OPTION,
    issuer: Optional[str] = _ISSUER_OPTION,
) -> None:
    """Trade a refresh token for new tokens and print them as JSON."""
    with _handle_errors():
        client = SyncOAuthClient(_build_config(client_id, issuer))
        _emit_tokens(client.refresh_token(refresh_token))


@app.command("claims")
def claims_command(
    token: str = typer.Argument(help="A JWT such as an access or ID token."),
    claim: Optional[list[str]] = typer.Option(
        None,
        "--claim",
        "-c",
        help="Claim to print; repeat to descend into nested objects.",
    ),
    account_id: bool = typer.Option(
        False, "--account-id", help="Print only the ChatGPT account id."
    ),
) -> None:
    """Print the claims of TOKEN as JSON.

    The signature is [bold]not[/bold] verified; treat the output as
    informational.
    """
    with _handle_errors():
        out = get_output()
        if account_id:
            out.print_data(extract_account_id(token))
        elif claim:
            out.print_json(get_claim(token, claim[0], *claim[1:]))
        else:
            out.print_json(decode_claims(token))


def main() -> None:
    """CLI entry point invoked by the ``openai-auth`` console script."""
    try:
        app()
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
