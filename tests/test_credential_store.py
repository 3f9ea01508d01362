"""Encrypted SQL credential persistence."""

import pytest

from relay.core.implementations import SqlCredentialStore
from relay.crud import crud
from relay.database import db_session
from relay.errors import ConfigError
from relay.schemas.schemas import CredentialPair
from relay.utils.crypto import TokenCipher


@pytest.fixture
def cipher(settings):
    return TokenCipher(settings.fernet_secret)


def test_cipher_rejects_missing_or_malformed_keys():
    with pytest.raises(ConfigError):
        TokenCipher("")
    with pytest.raises(ConfigError):
        TokenCipher("not-a-fernet-key")


def test_cipher_rejects_foreign_ciphertext(cipher):
    other = TokenCipher(TokenCipher.generate_secret())

    with pytest.raises(ValueError):
        cipher.decrypt(other.encrypt("access-1"))


def test_pair_persists_across_store_instances(session_factory, cipher):
    SqlCredentialStore(session_factory, cipher).set(
        CredentialPair(access_token="access-1", refresh_token="refresh-1"), owner_id="user-1"
    )

    reopened = SqlCredentialStore(session_factory, cipher)

    assert reopened.get() == CredentialPair(access_token="access-1", refresh_token="refresh-1")
    assert reopened.owner_id() == "user-1"


def test_tokens_are_encrypted_at_rest(session_factory, cipher):
    SqlCredentialStore(session_factory, cipher).set(CredentialPair(access_token="access-1", refresh_token="refresh-1"))

    with db_session(session_factory) as db:
        row = crud.get_credentials(db)
        stored = (row.access_token_enc, row.refresh_token_enc)

    assert "access-1" not in stored[0]
    assert "refresh-1" not in stored[1]


def test_replacement_swaps_both_tokens_and_keeps_owner(session_factory, cipher):
    store = SqlCredentialStore(session_factory, cipher)
    store.set(CredentialPair(access_token="access-1", refresh_token="refresh-1"), owner_id="user-1")

    store.set(CredentialPair(access_token="access-2", refresh_token="refresh-2"))

    reopened = SqlCredentialStore(session_factory, cipher)
    assert (reopened.get().access_token, reopened.get().refresh_token) == ("access-2", "refresh-2")
    assert reopened.owner_id() == "user-1"


def test_clear_removes_row(session_factory, cipher):
    store = SqlCredentialStore(session_factory, cipher)
    store.set(CredentialPair(access_token="access-1"))

    store.clear()

    assert store.get() is None
    assert SqlCredentialStore(session_factory, cipher).get() is None


def test_undecryptable_row_is_treated_as_logged_out(session_factory, cipher):
    SqlCredentialStore(session_factory, cipher).set(CredentialPair(access_token="access-1"))

    rotated = SqlCredentialStore(session_factory, TokenCipher(TokenCipher.generate_secret()))

    assert rotated.get() is None
    with db_session(session_factory) as db:
        assert crud.get_credentials(db) is None


def test_credential_repr_hides_tokens():
    pair = CredentialPair(access_token="secret-access", refresh_token="secret-refresh")

    assert "secret" not in repr(pair)
    assert pair.authorization_header() == {"Authorization": "Bearer secret-access"}
