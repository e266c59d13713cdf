"""
Encrypted storage of HMRC OAuth tokens.

Records live in a KeyValueStore as JSON with the access and refresh tokens
encrypted; expiry metadata stays readable so it can be checked without the key.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from hmrc_rti.config import Config
from hmrc_rti.exceptions import TokenStorageError
from hmrc_rti.hmrc.crypto import decrypt_value, derive_key, encrypt_value
from hmrc_rti.hmrc.kv_store import KeyValueStore
from hmrc_rti.hmrc.models import OAuthToken, TokenCallback
from hmrc_rti.simple_logger import get_logger

logger = get_logger("token_storage")

PROVIDER = 'hmrc'
REFRESH_BUFFER_SECONDS = 300


def token_key(company_id: str, environment: Optional[str] = None, site_id: Optional[str] = None,
              subsite_id: Optional[str] = None) -> str:
    """company[_site][_subsite]_hmrc[_environment]"""
    parts = [company_id]
    if site_id:
        parts.append(site_id)
    if subsite_id:
        parts.append(subsite_id)
    parts.append(PROVIDER)
    if environment:
        parts.append(environment)
    return '_'.join(parts)


class SecureTokenStorage:
    """Store, read and refresh-persist encrypted OAuth tokens per company"""

    def __init__(self, store: KeyValueStore, encryption_key: Optional[str] = None):
        self.store = store
        self._key = derive_key(encryption_key or Config.HMRC_TOKEN_ENCRYPTION_KEY)

    def _load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise TokenStorageError(f"Stored token record {key} is corrupt", error_code='CORRUPT_RECORD') from e

    def store_token(self, company_id: str, token: OAuthToken, environment: Optional[str] = None,
                    site_id: Optional[str] = None, subsite_id: Optional[str] = None) -> None:
        key = token_key(company_id, environment, site_id, subsite_id)
        now = time.time()
        existing = self._load(key)

        record = {
            'encryptedAccessToken': encrypt_value(token.access_token, self._key),
            'encryptedRefreshToken': encrypt_value(token.refresh_token, self._key) if token.refresh_token else None,
            'expiresIn': token.expires_in,
            'tokenType': token.token_type,
            'scope': token.scope,
            'issuedAt': token.issued_at.timestamp(),
            'expiresAt': token.expires_at.timestamp(),
            'provider': PROVIDER,
            'environment': environment,
            'createdAt': existing.get('createdAt', now) if existing else now,
            'updatedAt': now,
        }
        if existing:
            record['lastRefreshed'] = now

        self.store.set(key, json.dumps(record))
        logger.info(f"Stored encrypted {PROVIDER} token for company {company_id}")

    def get_token(self, company_id: str, environment: Optional[str] = None, site_id: Optional[str] = None,
                  subsite_id: Optional[str] = None) -> Optional[OAuthToken]:
        record = self._load(token_key(company_id, environment, site_id, subsite_id))
        if record is None:
            return None

        refresh_token = record.get('encryptedRefreshToken')
        return OAuthToken(
            access_token=decrypt_value(record['encryptedAccessToken'], self._key),
            refresh_token=decrypt_value(refresh_token, self._key) if refresh_token else None,
            token_type=record.get('tokenType') or 'Bearer',
            expires_in=int(record.get('expiresIn') or 0),
            scope=record.get('scope') or '',
            issued_at=datetime.fromtimestamp(record['issuedAt'], tz=timezone.utc),
        )

    def get_metadata(self, company_id: str, environment: Optional[str] = None, site_id: Optional[str] = None,
                     subsite_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Non-sensitive view of a stored token; never decrypts."""
        record = self._load(token_key(company_id, environment, site_id, subsite_id))
        if record is None:
            return None

        now = time.time()
        expires_at = record.get('expiresAt') or 0
        return {
            'provider': record.get('provider', PROVIDER),
            'environment': record.get('environment'),
            'expires_at': expires_at,
            'is_valid': expires_at > now,
            'needs_refresh': expires_at - now < REFRESH_BUFFER_SECONDS,
            'last_refreshed': record.get('lastRefreshed'),
        }

    def has_valid_token(self, company_id: str, **kwargs) -> bool:
        metadata = self.get_metadata(company_id, **kwargs)
        return metadata is not None and metadata['is_valid']

    def delete_token(self, company_id: str, environment: Optional[str] = None, site_id: Optional[str] = None,
                     subsite_id: Optional[str] = None) -> bool:
        deleted = self.store.delete(token_key(company_id, environment, site_id, subsite_id))
        logger.info(f"Deleted {PROVIDER} token for company {company_id}")
        return deleted

    def persist_callback(self, company_id: str, environment: Optional[str] = None, site_id: Optional[str] = None,
                         subsite_id: Optional[str] = None) -> TokenCallback:
        """on_refreshed hook for HMRCAuth.get_valid_access_token"""
        def _persist(token: OAuthToken) -> None:
            self.store_token(company_id, token, environment, site_id, subsite_id)
        return _persist
