"""
tests/test_api_scheme.py -- Personal API tokens.

Coverage:
  - attempt()/generate() persist an `api` token and return it encrypted
  - check() resolves the owner; revocation takes effect on the next request
  - undecodable, unknown and wrong-type tokens are InvalidToken
  - list_tokens() hides revoked tokens
  - a revocation landing mid-request (after decrypt, before the lookup)
    is honoured by that same request
  - StorageError propagates through check() and login_if_can()
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from auth.errors import CredentialsMissing, InvalidCredentials, InvalidRefreshToken, InvalidToken, StorageError
from auth.models import TokenType
from auth.store import SqlTokenStore
from tests.conftest import EMAIL, PASSWORD


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_auth(make_auth):
    return lambda **kw: make_auth(**kw).authenticator("api")


class TestApiTokens:
    def test_attempt_returns_encrypted_bearer(self, api_auth, factory, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        assert result.as_dict() == {"type": "bearer", "token": result.token}
        stored = factory.token_store("api").list_for_user(user_id, TokenType.API)
        assert len(stored) == 1
        assert stored[0].token != result.token
        assert factory.codec.decrypt(result.token) == stored[0].token

    def test_check_resolves_owner(self, api_auth, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        assert api_auth(headers=_bearer(result.token)).get_user().id == user_id

    def test_attempt_wrong_password(self, api_auth, user_id):
        with pytest.raises(InvalidCredentials):
            api_auth().attempt(EMAIL, "nope")

    def test_missing_token(self, api_auth, user_id):
        with pytest.raises(CredentialsMissing):
            api_auth().check()

    def test_undecodable_token(self, api_auth, user_id):
        with pytest.raises(InvalidToken):
            api_auth(headers=_bearer("plainly-not-encrypted")).check()

    def test_plaintext_stored_value_is_rejected(self, api_auth, factory, user_id):
        """The raw database value alone must not authenticate."""
        api_auth().attempt(EMAIL, PASSWORD)
        raw = factory.token_store("api").list_for_user(user_id, TokenType.API)[0].token
        with pytest.raises(InvalidToken):
            api_auth(headers=_bearer(raw)).check()

    def test_wrong_token_type_is_rejected(self, api_auth, factory, user_id):
        """An encrypted remember token is not an API token."""
        factory.token_store("api").create(user_id, TokenType.REMEMBER, "remember-value")
        with pytest.raises(InvalidToken):
            api_auth(headers=_bearer(factory.codec.encrypt("remember-value"))).check()

    def test_revocation_is_immediate(self, api_auth, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        # In-flight request authenticated before revocation.
        in_flight = api_auth(headers=_bearer(result.token))
        assert in_flight.check() is True

        in_flight.revoke_tokens([result.token])
        for _ in range(3):
            with pytest.raises(InvalidToken):
                api_auth(headers=_bearer(result.token)).get_user()

    def test_revoke_tokens_for_user(self, api_auth, make_auth, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        user = make_auth().authenticator("session").login_via_id(user_id)
        assert api_auth().revoke_tokens_for_user(user) == 1
        with pytest.raises(InvalidToken):
            api_auth(headers=_bearer(result.token)).check()

    def test_list_tokens_hides_revoked(self, api_auth, user_id):
        first = api_auth().attempt(EMAIL, PASSWORD)
        second = api_auth().attempt(EMAIL, PASSWORD)
        scheme = api_auth(headers=_bearer(second.token))
        assert len(scheme.list_tokens()) == 2
        scheme.revoke_tokens([first.token])
        listed = scheme.list_tokens()
        assert len(listed) == 1
        assert not listed[0].is_revoked

    def test_generate_for_known_user(self, api_auth, make_auth, user_id):
        user = make_auth().authenticator("session").login_via_id(user_id)
        result = api_auth().generate(user)
        assert api_auth(headers=_bearer(result.token)).get_user().id == user_id


def _revoke_after_decrypt(factory, authenticator: str):
    """Patch the codec so another thread revokes the token right after it is decrypted."""
    original = factory.codec.decrypt
    store = factory.token_store(authenticator)

    def decrypt_then_revoke(transmitted: str) -> str:
        raw = original(transmitted)
        worker = threading.Thread(target=store.revoke, args=(raw,))
        worker.start()
        worker.join()
        return raw

    return patch.object(factory.codec, "decrypt", side_effect=decrypt_then_revoke)


class TestRevocationDuringRequest:
    def test_api_token_revoked_between_decrypt_and_lookup(self, api_auth, factory, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        scheme = api_auth(headers=_bearer(result.token))
        with _revoke_after_decrypt(factory, "api"), pytest.raises(InvalidToken):
            scheme.check()
        assert scheme.user is None
        assert factory.token_store("api").get(factory.codec.decrypt(result.token)).is_revoked is True

    def test_refresh_token_revoked_between_decrypt_and_lookup(self, make_auth, factory, user_id):
        issued = make_auth().authenticator("jwt").with_refresh_token().attempt(EMAIL, PASSWORD)
        scheme = make_auth().authenticator("jwt")
        with _revoke_after_decrypt(factory, "jwt"), pytest.raises(InvalidRefreshToken):
            scheme.generate_for_refresh_token(issued.refresh_token)

    def test_remember_cookie_revoked_between_decrypt_and_lookup(self, make_auth, factory, user_id):
        first = make_auth()
        first.remember(True).attempt(EMAIL, PASSWORD)
        cookie = first.context.cookie("warden_remember_token_session")

        second = make_auth(cookies={"warden_remember_token_session": cookie})
        with _revoke_after_decrypt(factory, "session"):
            assert second.login_if_can() is False


class TestStorageFailures:
    """Backend failures are errors, never a quiet "not authenticated"."""

    def test_check_propagates_storage_error(self, api_auth, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        with patch.object(SqlTokenStore, "find_active", side_effect=StorageError()), pytest.raises(StorageError):
            api_auth(headers=_bearer(result.token)).check()

    def test_login_if_can_propagates_storage_error(self, api_auth, user_id):
        result = api_auth().attempt(EMAIL, PASSWORD)
        with patch.object(SqlTokenStore, "find_active", side_effect=StorageError()), pytest.raises(StorageError):
            api_auth(headers=_bearer(result.token)).login_if_can()

    def test_session_remember_fallback_propagates_storage_error(self, make_auth, factory, user_id):
        auth = make_auth(cookies={"warden_remember_token_session": factory.codec.encrypt("some-value")})
        with patch.object(SqlTokenStore, "find_active", side_effect=StorageError()), pytest.raises(StorageError):
            auth.login_if_can()
