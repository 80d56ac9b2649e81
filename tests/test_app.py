"""Tests for the ``openai-auth`` command line."""

from __future__ import annotations

import json
import threading
import time
from http.client import HTTPConnection
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from typer.testing import CliRunner

from openai_auth import __version__
from openai_auth.app import _code_from_paste, app, main
from openai_auth.client import AsyncOAuthClient
from openai_auth.exceptions import (
    AuthorizationDeniedError,
    ExchangeFailedError,
    MissingCodeError,
    StateMismatchError,
)
from openai_auth.models import OAuthFlow, TokenSet


def _simulate_callback(port: int, path: str) -> None:
    """Send the browser redirect to the local callback listener."""
    time.sleep(0.3)
    conn = HTTPConnection("127.0.0.1", port, timeout=5)
    conn.request("GET", path)
    conn.getresponse().read()
    conn.close()


def _fake_flow() -> OAuthFlow:
    return OAuthFlow(
        authorization_url="https://auth.example.com/oauth/authorize?state=flow-state",
        pkce_verifier="flow-verifier",
        state="flow-state",
    )


# ---------------------------------------------------------------------------
# Root options
# ---------------------------------------------------------------------------


class TestRoot:
    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"openai-auth {__version__}" in result.output

    def test_no_args_shows_help(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, [])
        assert "login" in result.output
        assert "refresh" in result.output

    def test_keyboard_interrupt_exits_130(self) -> None:
        with patch("openai_auth.app.app", side_effect=KeyboardInterrupt):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 130


# ---------------------------------------------------------------------------
# url
# ---------------------------------------------------------------------------


class TestUrlCommand:
    def test_prints_flow_as_json(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["url", "--port", "9000"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        params = parse_qs(urlsplit(data["authorization_url"]).query)
        assert params["state"] == [data["state"]]
        assert params["redirect_uri"] == ["http://localhost:9000/auth/callback"]
        assert len(data["pkce_verifier"]) >= 43

    def test_client_id_from_environment(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["url"], env={"OPENAI_AUTH_CLIENT_ID": "app_env"})

        assert result.exit_code == 0, result.output
        url = json.loads(result.stdout)["authorization_url"]
        assert parse_qs(urlsplit(url).query)["client_id"] == ["app_env"]

    def test_invalid_config_exit_code(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["url", "--issuer", "not-a-url"])

        assert result.exit_code == 2
        assert "Invalid OAuth configuration" in result.output


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLoginCommand:
    def test_listener_flow(
        self, cli_runner: CliRunner, free_port: int, account_token: str
    ) -> None:
        seen: list[httpx.Request] = []

        def token_endpoint(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"access_token": account_token, "refresh_token": "rt", "expires_in": 3600},
            )

        def fake_browser(url: str) -> bool:
            state = parse_qs(urlsplit(url).query)["state"][0]
            threading.Thread(
                target=_simulate_callback,
                args=(free_port, f"/auth/callback?code=abc&state={state}"),
                daemon=True,
            ).start()
            return True

        def client_factory(config):
            return AsyncOAuthClient(config, transport=httpx.MockTransport(token_endpoint))

        with patch("openai_auth.app.open_browser", side_effect=fake_browser), \
                patch("openai_auth.app.AsyncOAuthClient", side_effect=client_factory):
            result = cli_runner.invoke(
                app, ["login", "--port", str(free_port), "--timeout", "10", "--no-api-key"]
            )

        assert result.exit_code == 0, result.output
        assert parse_qs(seen[0].content.decode())["code"] == ["abc"]
        assert '"refresh_token": "rt"' in result.output
        assert '"account_id": "acct_42"' in result.output

    def test_listener_denied_exit_code(self, cli_runner: CliRunner) -> None:
        with patch(
            "openai_auth.app._login_with_listener",
            new=AsyncMock(side_effect=AuthorizationDeniedError("access_denied")),
        ):
            result = cli_runner.invoke(app, ["login", "--no-browser"])

        assert result.exit_code == 3
        assert "access_denied" in result.output

    def test_manual_flow(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            client = mock_cls.return_value
            client.start_flow.return_value = _fake_flow()
            client.complete_flow.return_value = TokenSet(access_token="at", expires_in=60)

            result = cli_runner.invoke(app, ["login", "--manual", "--no-browser", "--no-api-key"], input="pasted-code\n")

        assert result.exit_code == 0, result.output
        assert mock_cls.call_args.args[0].api_key_exchange is False
        client.complete_flow.assert_called_once_with(_fake_flow(), "pasted-code")
        assert '"access_token": "at"' in result.output

    def test_manual_flow_with_api_key(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            client = mock_cls.return_value
            client.start_flow.return_value = _fake_flow()
            client.complete_flow.return_value = TokenSet(
                access_token="at", api_key_error="Token endpoint returned HTTP 403: nope"
            )

            result = cli_runner.invoke(
                app,
                ["login", "--manual", "--no-browser", "--api-key"],
                input="pasted-code\n",
            )

        assert result.exit_code == 0, result.output
        assert mock_cls.call_args.args[0].api_key_exchange is True
        client.complete_flow.assert_called_once_with(_fake_flow(), "pasted-code")
        assert "API key exchange failed" in result.output

    def test_verbose_shows_redirect_uri(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            client = mock_cls.return_value
            client.start_flow.return_value = _fake_flow()
            client.complete_flow.return_value = TokenSet(access_token="at")

            quiet = cli_runner.invoke(
                app, ["login", "--manual", "--no-browser", "--port", "9000"], input="c\n"
            )
            verbose = cli_runner.invoke(
                app,
                ["--verbose", "login", "--manual", "--no-browser", "--port", "9000"],
                input="c\n",
            )

        assert verbose.exit_code == 0, verbose.output
        assert "Redirect URI: http://localhost:9000/auth/callback" in verbose.output
        assert "Redirect URI" not in quiet.output

    def test_manual_redirect_with_wrong_state(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            client = mock_cls.return_value
            client.start_flow.return_value = _fake_flow()

            result = cli_runner.invoke(
                app,
                ["login", "--manual", "--no-browser"],
                input="http://localhost:1455/auth/callback?code=abc&state=other\n",
            )

        assert result.exit_code == 3
        client.complete_flow.assert_not_called()

    def test_exchange_failure_exit_code(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            client = mock_cls.return_value
            client.start_flow.return_value = _fake_flow()
            client.complete_flow.side_effect = ExchangeFailedError(400, "invalid_grant")

            result = cli_runner.invoke(app, ["login", "--manual", "--no-browser", "--no-api-key"], input="c\n")

        assert result.exit_code == 4
        assert "invalid_grant" in result.output


class TestCodeFromPaste:
    def test_bare_code(self) -> None:
        assert _code_from_paste("  abc  ", "s") == "abc"

    def test_redirect_url(self) -> None:
        assert _code_from_paste("http://localhost:1455/auth/callback?code=abc&state=s", "s") == "abc"

    def test_query_string(self) -> None:
        assert _code_from_paste("?code=abc&state=s", "s") == "abc"

    def test_redirect_with_wrong_state(self) -> None:
        with pytest.raises(StateMismatchError):
            _code_from_paste("http://localhost/cb?code=abc&state=x", "s")

    def test_redirect_with_error(self) -> None:
        with pytest.raises(AuthorizationDeniedError):
            _code_from_paste("http://localhost/cb?error=access_denied", "s")

    def test_empty(self) -> None:
        with pytest.raises(MissingCodeError):
            _code_from_paste("   ", "s")


# ---------------------------------------------------------------------------
# refresh / claims
# ---------------------------------------------------------------------------


class TestRefreshCommand:
    def test_prints_refreshed_tokens(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            mock_cls.return_value.refresh_token.return_value = TokenSet(
                access_token="new-at", refresh_token="old-rt", issued_at=100.0, expires_in=60
            )
            result = cli_runner.invoke(app, ["refresh", "old-rt"])

        assert result.exit_code == 0, result.output
        mock_cls.return_value.refresh_token.assert_called_once_with("old-rt")
        data = json.loads(result.stdout)
        assert data["access_token"] == "new-at"
        assert data["refresh_token"] == "old-rt"
        assert data["expires_at"] == 160.0
        assert "account_id" not in data

    def test_rejected_refresh_exit_code(self, cli_runner: CliRunner) -> None:
        with patch("openai_auth.app.SyncOAuthClient") as mock_cls:
            mock_cls.return_value.refresh_token.side_effect = ExchangeFailedError(
                400, "invalid_grant"
            )
            result = cli_runner.invoke(app, ["refresh", "stale"])

        assert result.exit_code == 4


class TestClaimsCommand:
    def test_all_claims(self, cli_runner: CliRunner, account_token: str) -> None:
        result = cli_runner.invoke(app, ["claims", account_token])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["sub"] == "user-1"

    def test_nested_claim(self, cli_runner: CliRunner, account_token: str) -> None:
        result = cli_runner.invoke(
            app,
            [
                "claims",
                account_token,
                "--claim",
                "https://api.openai.com/auth",
                "--claim",
                "chatgpt_account_id",
            ],
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == "acct_42"

    def test_account_id(self, cli_runner: CliRunner, account_token: str) -> None:
        result = cli_runner.invoke(app, ["claims", account_token, "--account-id"])

        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "acct_42"

    def test_missing_claim_exit_code(self, cli_runner: CliRunner, account_token: str) -> None:
        result = cli_runner.invoke(app, ["claims", account_token, "--claim", "email"])

        assert result.exit_code == 7
        assert "email" in result.output

    def test_malformed_token_exit_code(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["claims", "not.a-jwt"])
        assert result.exit_code == 7
