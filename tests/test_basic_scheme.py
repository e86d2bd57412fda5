"""
tests/test_basic_scheme.py -- Stateless HTTP Basic authentication.

Coverage:
  - valid Basic header resolves the user for this request only
  - missing / malformed headers raise CredentialsMissing
  - wrong password raises an InvalidCredentials; unknown uid UserNotFound
  - stateful verbs are rejected
"""

from __future__ import annotations

import base64

import pytest

from auth.errors import CredentialsMissing, InvalidCredentials, UnsupportedOperation, UserNotFound
from auth.schemes.basic import parse_basic_header
from tests.conftest import EMAIL, PASSWORD


def _basic(uid: str, password: str) -> dict:
    encoded = base64.b64encode(f"{uid}:{password}".encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


class TestBasicCheck:
    def test_get_user_with_valid_header(self, make_auth, user_id):
        scheme = make_auth(headers=_basic(EMAIL, PASSWORD)).authenticator("basic")
        assert scheme.get_user().id == user_id

    def test_wrong_password(self, make_auth, user_id):
        scheme = make_auth(headers=_basic(EMAIL, "wrong")).authenticator("basic")
        with pytest.raises(InvalidCredentials):
            scheme.check()
        assert scheme.user is None

    def test_unknown_uid(self, make_auth, user_id):
        scheme = make_auth(headers=_basic("nobody@x.com", PASSWORD)).authenticator("basic")
        with pytest.raises(UserNotFound):
            scheme.check()

    def test_missing_header(self, make_auth, user_id):
        with pytest.raises(CredentialsMissing):
            make_auth().authenticator("basic").check()

    @pytest.mark.parametrize(
        "header",
        ["Bearer abc", "Basic", "Basic !!!not-base64!!!", "Basic " + base64.b64encode(b"no-colon").decode()],
    )
    def test_malformed_header(self, make_auth, user_id, header):
        with pytest.raises(CredentialsMissing):
            make_auth(headers={"Authorization": header}).authenticator("basic").check()

    def test_nothing_persisted(self, make_auth, user_id):
        auth = make_auth(headers=_basic(EMAIL, PASSWORD))
        auth.authenticator("basic").check()
        assert auth.context.session == {}
        assert auth.context.cookie_writes == []

    def test_password_may_contain_colon(self, make_auth, user_store, hasher):
        user_store.create_user(email="c@x.com", password=hasher.hash("pa:ss"))
        scheme = make_auth(headers=_basic("c@x.com", "pa:ss")).authenticator("basic")
        assert scheme.get_user().email == "c@x.com"

    def test_login_if_can(self, make_auth, user_id):
        assert make_auth(headers=_basic(EMAIL, PASSWORD)).authenticator("basic").login_if_can() is True
        assert make_auth(headers=_basic(EMAIL, "x")).authenticator("basic").login_if_can() is False


class TestBasicUnsupported:
    @pytest.mark.parametrize("verb", ["logout", "list_tokens"])
    def test_stateful_verbs_rejected(self, make_auth, user_id, verb):
        scheme = make_auth(headers=_basic(EMAIL, PASSWORD)).authenticator("basic")
        with pytest.raises(UnsupportedOperation):
            getattr(scheme, verb)()

    def test_attempt_rejected(self, make_auth, user_id):
        with pytest.raises(UnsupportedOperation):
            make_auth().authenticator("basic").attempt(EMAIL, PASSWORD)


def test_parse_basic_header():
    assert parse_basic_header(_basic("u", "p")["Authorization"]) == ("u", "p")
    assert parse_basic_header("") is None
