"""HMRC OAuth2 token lifecycle."""

import base64
import secrets
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple, Union
from urllib.parse import urlencode

import requests

from hmrc_rti.config import Config
from hmrc_rti.exceptions import AuthError, ConfigurationError
from hmrc_rti.hmrc.models import CredentialSet, OAuthToken
from hmrc_rti.hmrc.utils import get_base_url, normalize_environment
from hmrc_rti.simple_logger import get_logger

logger = get_logger("hmrc_auth")

Expiry = Union[datetime, int, float, str, None]


def _expiry_timestamp(expires_at: Expiry) -> Optional[float]:
    if expires_at is None:
        return None
    if isinstance(expires_at, str):
        # Epoch seconds, else ISO 8601 as stored in JSON credentials
        try:
            return float(expires_at)
        except ValueError:
            pass
        try:
            expires_at = datetime.fromisoformat(expires_at.strip().replace('Z', '+00:00'))
        except ValueError:
            logger.warning("Unparseable token expiry %r, treating as expired", expires_at)
            return None
    if isinstance(expires_at, datetime):
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at.timestamp()
    return float(expires_at)


def is_token_expired(expires_at: Expiry = None, buffer_seconds: int = 300, now: Optional[float] = None) -> bool:
    """
    True when the token must not be used any more.

    An unknown expiry counts as expired. Otherwise the token is expired once
    ``now + buffer_seconds`` reaches ``expires_at`` (datetime, ISO 8601 string
    or epoch seconds).
    """
    expiry = _expiry_timestamp(expires_at)
    if expiry is None:
        return True
    current = time.time() if now is None else now
    return current + buffer_seconds >= expiry


def generate_state() -> str:
    """Generate cryptographically secure state for the OAuth flow"""
    return secrets.token_urlsafe(32)


class HMRCAuth:
    """OAuth2 authorization-code flow against the HMRC API platform."""

    def __init__(self, timeout: Optional[int] = None, buffer_seconds: Optional[int] = None, session=None):
        self.timeout = timeout or Config.HMRC_HTTP_TIMEOUT
        self.buffer_seconds = Config.HMRC_TOKEN_EXPIRY_BUFFER if buffer_seconds is None else buffer_seconds
        self.http = session or requests

    def authorization_url(self, client_id: str, redirect_uri: str, scope: Optional[str] = None,
                          environment: Optional[str] = None) -> Tuple[str, str]:
        """Build the authorize URL. Returns (url, state); state is new on every call."""
        state = generate_state()
        params = urlencode({
            'response_type': 'code',
            'client_id': client_id,
            'redirect_uri': redirect_uri,
            'scope': scope or Config.HMRC_SCOPE,
            'state': state,
        })
        return f"{get_base_url(environment)}/oauth/authorize?{params}", state

    def exchange_code_for_token(self, code: str, client_id: str, client_secret: str, redirect_uri: str,
                                environment: Optional[str] = None) -> OAuthToken:
        """Exchange an authorization code for access & refresh tokens."""
        return self._token_request(
            {
                'grant_type': 'authorization_code',
                'code': code,
                'redirect_uri': redirect_uri,
            },
            client_id,
            client_secret,
            environment,
        )

    def refresh_access_token(self, refresh_token: str, client_id: str, client_secret: str,
                             environment: Optional[str] = None) -> OAuthToken:
        """Refresh an access token using the refresh_token grant."""
        token = self._token_request(
            {
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
            },
            client_id,
            client_secret,
            environment,
        )
        if not token.refresh_token:
            token.refresh_token = refresh_token
        return token

    def is_token_expired(self, expires_at: Expiry = None, buffer_seconds: Optional[int] = None) -> bool:
        buffer_seconds = self.buffer_seconds if buffer_seconds is None else buffer_seconds
        return is_token_expired(expires_at, buffer_seconds)

    def get_valid_access_token(self, credentials: CredentialSet,
                               on_refreshed: Optional[Callable[[OAuthToken], None]] = None) -> str:
        """
        Return a usable access token, refreshing it when expired or unknown.

        Not synchronized: callers submitting for the same employer
        concurrently must serialize calls themselves.
        """
        if credentials.access_token and not self.is_token_expired(credentials.token_expiry):
            return credentials.access_token

        required = {
            'refresh_token': credentials.refresh_token,
            'client_id': credentials.client_id,
            'client_secret': credentials.client_secret,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Cannot refresh HMRC token, missing: {', '.join(missing)}",
                missing_fields=missing,
            )

        logger.info("HMRC access token expired or missing, refreshing (%s)", credentials.environment)
        token = self.refresh_access_token(
            credentials.refresh_token,
            credentials.client_id,
            credentials.client_secret,
            credentials.environment,
        )

        if on_refreshed:
            on_refreshed(token)

        return token.access_token

    def _token_request(self, data, client_id, client_secret, environment) -> OAuthToken:
        environment = normalize_environment(environment)
        token_url = f"{get_base_url(environment)}/oauth/token"
        basic = base64.b64encode(f"{client_id}:{client_secret}".encode('utf-8')).decode('ascii')

        try:
            response = self.http.post(
                token_url,
                data=data,
                headers={
                    'Content-Type': 'application/x-www-form-urlencoded',
                    'Accept': 'application/json',
                    'Authorization': f'Basic {basic}',
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.error("HMRC token request failed (%s): %s", data['grant_type'], exc)
            raise AuthError(f"Connection failed: {exc}", error_code='NETWORK_ERROR') from exc

        if not response.ok:
            raise self._auth_error(response, data['grant_type'])

        try:
            token = OAuthToken.from_response(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("HMRC token response could not be parsed: %s", exc)
            raise AuthError("Invalid token response from HMRC", error_code='INVALID_RESPONSE',
                            status_code=response.status_code) from exc

        logger.info(
            "HMRC %s succeeded in %s (expires in %ss)",
            data['grant_type'], environment, token.expires_in,
        )
        return token

    @staticmethod
    def _auth_error(response, grant_type) -> AuthError:
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        message = body.get('message') or body.get('error_description') or response.reason \
            or f"HTTP {response.status_code}"
        code = body.get('code') or body.get('error') or f"HTTP_{response.status_code}"
        logger.error("HMRC %s failed: %s %s", grant_type, code, message)
        return AuthError(message, error_code=code, status_code=response.status_code, errors=body.get('errors'))
