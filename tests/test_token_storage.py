"""
Unit tests for encrypted HMRC token storage.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from hmrc_rti.exceptions import TokenStorageError
from hmrc_rti.hmrc.auth import HMRCAuth
from hmrc_rti.hmrc.crypto import decrypt_value, derive_key, encrypt_value, is_encrypted
from hmrc_rti.hmrc.kv_store import InMemoryStore
from hmrc_rti.hmrc.models import CredentialSet, OAuthToken
from hmrc_rti.hmrc.token_storage import SecureTokenStorage, token_key

SECRET = 'a-very-long-test-encryption-secret-0123456789'


@pytest.fixture
def store():
    return InMemoryStore(prefix='tokens:')


@pytest.fixture
def storage(store):
    return SecureTokenStorage(store, SECRET)


def _token(**overrides):
    values = dict(
        access_token='access-abc',
        refresh_token='refresh-xyz',
        expires_in=14400,
        scope='write:paye-employer-paye-employer',
        issued_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return OAuthToken(**values)


class TestCrypto:

    def test_roundtrip_has_prefix(self):
        key = derive_key(SECRET)
        encrypted = encrypt_value('secret-token', key)

        assert encrypted.startswith('ENC:')
        assert is_encrypted(encrypted)
        assert decrypt_value(encrypted, key) == 'secret-token'

    def test_unprefixed_ciphertext_accepted(self):
        key = derive_key(SECRET)
        encrypted = encrypt_value('secret-token', key)[len('ENC:'):]

        assert is_encrypted(encrypted) is False
        assert decrypt_value(encrypted, key) == 'secret-token'

    def test_nonce_is_random(self):
        key = derive_key(SECRET)
        assert encrypt_value('same', key) != encrypt_value('same', key)

    def test_short_secret_rejected(self):
        with pytest.raises(TokenStorageError):
            derive_key('too-short')

    def test_wrong_key_fails(self):
        encrypted = encrypt_value('secret-token', derive_key(SECRET))

        with pytest.raises(TokenStorageError):
            decrypt_value(encrypted, derive_key('another-long-secret-value-for-tests-987654321'))


class TestSecureTokenStorage:

    def test_store_and_get(self, storage):
        token = _token()
        storage.store_token('company-1', token, environment='sandbox')

        loaded = storage.get_token('company-1', environment='sandbox')

        assert loaded.access_token == 'access-abc'
        assert loaded.refresh_token == 'refresh-xyz'
        assert loaded.expires_in == 14400
        assert abs((loaded.issued_at - token.issued_at).total_seconds()) < 1

    def test_tokens_not_stored_in_plaintext(self, storage, store):
        storage.store_token('company-1', _token(), environment='sandbox')

        raw = store.get(token_key('company-1', 'sandbox'))
        record = json.loads(raw)
        assert 'access-abc' not in raw
        assert 'refresh-xyz' not in raw
        assert record['encryptedAccessToken'].startswith('ENC:')
        assert record['provider'] == 'hmrc'

    def test_missing_token(self, storage):
        assert storage.get_token('unknown') is None
        assert storage.get_metadata('unknown') is None

    def test_token_key_layout(self):
        assert token_key('c1') == 'c1_hmrc'
        assert token_key('c1', 'production', 'site', 'sub') == 'c1_site_sub_hmrc_production'

    def test_metadata_for_valid_token(self, storage):
        storage.store_token('company-1', _token())

        metadata = storage.get_metadata('company-1')

        assert metadata['is_valid'] is True
        assert metadata['needs_refresh'] is False
        assert 'access_token' not in metadata
        assert storage.has_valid_token('company-1') is True

    def test_metadata_near_expiry(self, storage):
        storage.store_token('company-1', _token(expires_in=120))

        metadata = storage.get_metadata('company-1')

        assert metadata['is_valid'] is True
        assert metadata['needs_refresh'] is True

    def test_metadata_expired(self, storage):
        issued = datetime.now(timezone.utc) - timedelta(hours=5)
        storage.store_token('company-1', _token(issued_at=issued))

        assert storage.has_valid_token('company-1') is False

    def test_delete(self, storage):
        storage.store_token('company-1', _token())

        assert storage.delete_token('company-1') is True
        assert storage.get_token('company-1') is None

    def test_restore_marks_last_refreshed(self, storage):
        storage.store_token('company-1', _token())
        assert storage.get_metadata('company-1')['last_refreshed'] is None

        storage.store_token('company-1', _token(access_token='access-2'))

        assert storage.get_metadata('company-1')['last_refreshed'] is not None
        assert storage.get_token('company-1').access_token == 'access-2'

    def test_corrupt_record(self, storage, store):
        store.set(token_key('company-1'), 'not-json')

        with pytest.raises(TokenStorageError):
            storage.get_token('company-1')

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_persist_callback_with_refresh(self, mock_post, storage):
        mock_post.return_value.ok = True
        mock_post.return_value.json.return_value = {
            'access_token': 'refreshed-access',
            'refresh_token': 'refreshed-refresh',
            'expires_in': 14400,
        }
        credentials = CredentialSet(client_id='cid', client_secret='csecret', refresh_token='refresh-xyz',
                                    access_token='old', token_expiry=time.time() - 10)

        HMRCAuth().get_valid_access_token(credentials, storage.persist_callback('company-1', 'sandbox'))

        stored = storage.get_token('company-1', 'sandbox')
        assert stored.access_token == 'refreshed-access'
        assert stored.refresh_token == 'refreshed-refresh'
