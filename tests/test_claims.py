"""Tests for unverified JWT claim extraction."""

from __future__ import annotations

import base64
from typing import Any, Callable

import pytest

from openai_auth.claims import decode_claims, extract_account_id, get_claim
from openai_auth.exceptions import ClaimNotFoundError, MalformedTokenError, TokenError

JwtFactory = Callable[[dict[str, Any]], str]


class TestDecodeClaims:
    def test_decodes_payload(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"sub": "user-1", "exp": 123})
        assert decode_claims(token) == {"sub": "user-1", "exp": 123}

    def test_handles_padding_free_segments(self, make_jwt: JwtFactory) -> None:
        # payload lengths that need 1 and 2 padding characters
        for sub in ("a", "ab", "abc"):
            assert decode_claims(make_jwt({"sub": sub}))["sub"] == sub

    def test_two_segments_rejected(self) -> None:
        with pytest.raises(MalformedTokenError, match="3 segments"):
            decode_claims("header.payload")

    def test_four_segments_rejected(self) -> None:
        with pytest.raises(MalformedTokenError):
            decode_claims("a.b.c.d")

    def test_bad_base64_rejected(self) -> None:
        with pytest.raises(MalformedTokenError):
            decode_claims("header.!!!not-base64!!!.sig")

    def test_non_json_payload_rejected(self) -> None:
        payload = base64.urlsafe_b64encode(b"not json").rstrip(b"=").decode()
        with pytest.raises(MalformedTokenError):
            decode_claims(f"header.{payload}.sig")

    def test_non_object_payload_rejected(self) -> None:
        payload = base64.urlsafe_b64encode(b"[1, 2]").rstrip(b"=").decode()
        with pytest.raises(MalformedTokenError, match="JSON object"):
            decode_claims(f"header.{payload}.sig")


class TestGetClaim:
    def test_top_level_claim(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"account_id": "abc123"})
        assert get_claim(token, "account_id") == "abc123"

    def test_absent_claim(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"sub": "user-1"})
        with pytest.raises(ClaimNotFoundError) as exc_info:
            get_claim(token, "account_id")
        assert exc_info.value.claim == "account_id"

    def test_nested_claim(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"org": {"team": {"id": "t-1"}}})
        assert get_claim(token, "org", "team", "id") == "t-1"

    def test_nested_claim_reports_walked_path(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"org": {"team": "flat"}})
        with pytest.raises(ClaimNotFoundError) as exc_info:
            get_claim(token, "org", "team", "id")
        assert exc_info.value.claim == "org.team.id"

    def test_malformed_token_propagates(self) -> None:
        with pytest.raises(MalformedTokenError):
            get_claim("only.two", "sub")


class TestExtractAccountId:
    def test_reads_namespaced_claim(self, account_token: str) -> None:
        assert extract_account_id(account_token) == "acct_42"

    def test_missing_namespace(self, make_jwt: JwtFactory) -> None:
        with pytest.raises(ClaimNotFoundError):
            extract_account_id(make_jwt({"sub": "user-1"}))

    def test_empty_account_id(self, make_jwt: JwtFactory) -> None:
        token = make_jwt({"https://api.openai.com/auth": {"chatgpt_account_id": ""}})
        with pytest.raises(ClaimNotFoundError):
            extract_account_id(token)

    def test_errors_share_token_exit_code(self) -> None:
        with pytest.raises(TokenError) as exc_info:
            extract_account_id("garbage")
        assert exc_info.value.exit_code == 7
