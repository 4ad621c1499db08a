from __future__ import annotations

import re

import pytest

from identity_core.domain.contracts import TokenPurpose
from identity_core.domain.outcomes import Rejection
from identity_core.security.token_codec import TokenCodec, decode_token, encode_token


class ExplodingProvider:
    def issue_secret(self, purpose, account):
        return "opaque-secret"

    def verify_secret(self, purpose, account, secret):
        raise RuntimeError("provider backend down")


@pytest.mark.parametrize("purpose", list(TokenPurpose))
def test_generated_token_validates_immediately(codec, make_account, purpose):
    account = make_account()
    token = codec.generate(purpose, account)
    assert codec.validate(purpose, account, token).ok


def test_encoded_token_is_url_safe(codec, make_account):
    token = codec.generate(TokenPurpose.EMAIL_CONFIRMATION, make_account())
    assert re.fullmatch(r"[A-Za-z0-9_-]+", token)


def test_encoding_round_trips_non_ascii_text():
    assert decode_token(encode_token("clé-secrète/+=")) == "clé-secrète/+="


@pytest.mark.parametrize(
    "garbled",
    ["", "   ", "!!!", "abc$def", "a", "ZZZ=ZZ", "%2F%2F", "wröng", "bm90LWEtdG9rZW4"],
)
def test_garbled_tokens_fail_closed(codec, make_account, garbled):
    result = codec.validate(TokenPurpose.PASSWORD_RESET, make_account(), garbled)
    assert not result.ok
    assert result.rejection is Rejection.INVALID_TOKEN


def test_truncated_token_is_rejected(codec, make_account):
    account = make_account()
    token = codec.generate(TokenPurpose.PASSWORD_RESET, account)
    assert codec.validate(TokenPurpose.PASSWORD_RESET, account, token[:-6]).rejection is Rejection.INVALID_TOKEN


def test_token_is_bound_to_purpose(codec, make_account):
    account = make_account()
    token = codec.generate(TokenPurpose.EMAIL_CONFIRMATION, account)
    result = codec.validate(TokenPurpose.PASSWORD_RESET, account, token)
    assert result.rejection is Rejection.INVALID_TOKEN


def test_token_is_bound_to_account(codec, make_account):
    first = make_account("first@example.com")
    second = make_account("second@example.com")
    token = codec.generate(TokenPurpose.PASSWORD_RESET, first)
    assert codec.validate(TokenPurpose.PASSWORD_RESET, second, token).rejection is Rejection.INVALID_TOKEN


def test_provider_fault_becomes_invalid_token(make_account):
    codec = TokenCodec(ExplodingProvider())
    account = make_account()
    token = codec.generate(TokenPurpose.PASSWORD_RESET, account)

    result = codec.validate(TokenPurpose.PASSWORD_RESET, account, token)

    assert result.rejection is Rejection.INVALID_TOKEN
    assert result.message == "Invalid token. Please try again"
