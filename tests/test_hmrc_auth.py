"""
Unit tests for the HMRC OAuth token lifecycle
Covers authorization URLs, code exchange, refresh, expiry and get_valid_access_token
"""

import base64
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from hmrc_rti.exceptions import AuthError, ConfigurationError
from hmrc_rti.hmrc.auth import HMRCAuth, is_token_expired
from hmrc_rti.hmrc.models import CredentialSet


def _token_response(**overrides):
    response = Mock()
    response.ok = True
    response.status_code = 200
    body = {
        'access_token': 'new_access_token',
        'refresh_token': 'new_refresh_token',
        'token_type': 'bearer',
        'expires_in': 14400,
        'scope': 'write:paye-employer-paye-employer',
    }
    body.update(overrides)
    response.json.return_value = body
    return response


def _error_response(status_code, body=None, reason='Bad Request'):
    response = Mock()
    response.ok = False
    response.status_code = status_code
    response.reason = reason
    if body is None:
        response.json.side_effect = ValueError('No JSON')
    else:
        response.json.return_value = body
    return response


class TestAuthorizationUrl:
    """Tests for authorization URL construction"""

    def test_sandbox_url_contains_oauth_parameters(self):
        url, state = HMRCAuth().authorization_url('client-123', 'http://localhost/callback', environment='sandbox')

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}" == 'https://test-api.service.hmrc.gov.uk'
        assert parsed.path == '/oauth/authorize'
        assert params['response_type'] == ['code']
        assert params['client_id'] == ['client-123']
        assert params['redirect_uri'] == ['http://localhost/callback']
        assert params['scope'] == ['write:paye-employer-paye-employer']
        assert params['state'] == [state]

    def test_production_url(self):
        url, _ = HMRCAuth().authorization_url('client-123', 'http://localhost/callback', environment='production')
        assert url.startswith('https://api.service.hmrc.gov.uk/oauth/authorize?')

    def test_state_differs_between_calls(self):
        auth = HMRCAuth()
        _, first = auth.authorization_url('client-123', 'http://localhost/callback')
        _, second = auth.authorization_url('client-123', 'http://localhost/callback')
        assert first != second
        assert len(first) >= 32

    def test_invalid_environment_rejected(self):
        with pytest.raises(ValueError):
            HMRCAuth().authorization_url('client-123', 'http://localhost/callback', environment='staging')


class TestTokenExchange:
    """Tests for authorization code exchange"""

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_exchange_success(self, mock_post):
        mock_post.return_value = _token_response()

        token = HMRCAuth().exchange_code_for_token('auth_code', 'cid', 'csecret', 'http://localhost/cb', 'sandbox')

        assert token.access_token == 'new_access_token'
        assert token.refresh_token == 'new_refresh_token'
        assert token.expires_in == 14400

        args, kwargs = mock_post.call_args
        assert args[0] == 'https://test-api.service.hmrc.gov.uk/oauth/token'
        assert kwargs['data'] == {
            'grant_type': 'authorization_code',
            'code': 'auth_code',
            'redirect_uri': 'http://localhost/cb',
        }
        assert kwargs['headers']['Content-Type'] == 'application/x-www-form-urlencoded'
        expected = base64.b64encode(b'cid:csecret').decode()
        assert kwargs['headers']['Authorization'] == f'Basic {expected}'
        assert kwargs['timeout'] == 30

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_exchange_failure_carries_upstream_error(self, mock_post):
        mock_post.return_value = _error_response(400, {
            'code': 'INVALID_REQUEST',
            'message': 'Missing or invalid authorization code',
        })

        with pytest.raises(AuthError) as exc_info:
            HMRCAuth().exchange_code_for_token('bad', 'cid', 'csecret', 'http://localhost/cb')

        assert exc_info.value.error_code == 'INVALID_REQUEST'
        assert exc_info.value.message == 'Missing or invalid authorization code'
        assert exc_info.value.status_code == 400

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_exchange_failure_without_json_body_uses_status_text(self, mock_post):
        mock_post.return_value = _error_response(503, body=None, reason='Service Unavailable')

        with pytest.raises(AuthError) as exc_info:
            HMRCAuth().exchange_code_for_token('code', 'cid', 'csecret', 'http://localhost/cb')

        assert exc_info.value.message == 'Service Unavailable'
        assert exc_info.value.status_code == 503

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_network_failure_raises_auth_error(self, mock_post):
        mock_post.side_effect = requests.exceptions.ConnectionError('connection refused')

        with pytest.raises(AuthError) as exc_info:
            HMRCAuth().exchange_code_for_token('code', 'cid', 'csecret', 'http://localhost/cb')

        assert exc_info.value.error_code == 'NETWORK_ERROR'
        assert mock_post.call_count == 1


class TestRefresh:
    """Tests for refresh_token grant"""

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_refresh_success(self, mock_post):
        mock_post.return_value = _token_response()

        token = HMRCAuth().refresh_access_token('old_refresh', 'cid', 'csecret', 'production')

        args, kwargs = mock_post.call_args
        assert args[0] == 'https://api.service.hmrc.gov.uk/oauth/token'
        assert kwargs['data'] == {'grant_type': 'refresh_token', 'refresh_token': 'old_refresh'}
        assert token.access_token == 'new_access_token'

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_refresh_keeps_refresh_token_when_not_rotated(self, mock_post):
        mock_post.return_value = _token_response(refresh_token=None)

        token = HMRCAuth().refresh_access_token('old_refresh', 'cid', 'csecret')

        assert token.refresh_token == 'old_refresh'

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_refresh_failure_is_not_retried(self, mock_post):
        mock_post.return_value = _error_response(401, {'code': 'INVALID_GRANT', 'message': 'Refresh token expired'})

        with pytest.raises(AuthError):
            HMRCAuth().refresh_access_token('old_refresh', 'cid', 'csecret')

        assert mock_post.call_count == 1


class TestTokenExpiry:
    """Tests for expiry evaluation with the 5 minute buffer"""

    def test_unknown_expiry_is_expired(self):
        assert is_token_expired(None) is True

    def test_zero_expiry_is_expired(self):
        assert is_token_expired(0) is True

    def test_expiry_outside_buffer_is_valid(self):
        assert is_token_expired(time.time() + 400, buffer_seconds=300) is False

    def test_expiry_inside_buffer_is_expired(self):
        assert is_token_expired(time.time() + 200, buffer_seconds=300) is True

    def test_aware_datetime(self):
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert is_token_expired(future) is False

    def test_naive_datetime_treated_as_utc(self):
        past = datetime.utcnow() - timedelta(minutes=1)
        assert is_token_expired(past) is True

    def test_iso_string_expiry(self):
        assert is_token_expired('2099-01-01T00:00:00Z') is False
        assert is_token_expired('2020-01-01T00:00:00.000Z') is True
        assert is_token_expired('2099-01-01T00:00:00') is False

    def test_numeric_string_expiry(self):
        assert is_token_expired('1000', buffer_seconds=300, now=699) is False
        assert is_token_expired('1000', buffer_seconds=300, now=700) is True

    def test_unparseable_string_is_expired(self):
        assert is_token_expired('next tuesday') is True

    def test_fixed_clock(self):
        assert is_token_expired(1000, buffer_seconds=300, now=699) is False
        assert is_token_expired(1000, buffer_seconds=300, now=700) is True

    def test_method_uses_configured_buffer(self):
        auth = HMRCAuth(buffer_seconds=0)
        assert auth.is_token_expired(time.time() + 60) is False


class TestGetValidAccessToken:
    """Tests for the get-a-usable-token orchestration"""

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_returns_current_token_when_valid(self, mock_post):
        credentials = CredentialSet(
            client_id='cid',
            client_secret='csecret',
            refresh_token='refresh',
            access_token='current_token',
            token_expiry=time.time() + 3600,
        )
        on_refreshed = Mock()

        token = HMRCAuth().get_valid_access_token(credentials, on_refreshed)

        assert token == 'current_token'
        mock_post.assert_not_called()
        on_refreshed.assert_not_called()

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_iso_expiry_from_stored_credentials(self, mock_post):
        credentials = CredentialSet.from_dict({
            'clientId': 'cid',
            'clientSecret': 'csecret',
            'refreshToken': 'refresh',
            'accessToken': 'current_token',
            'tokenExpiry': '2099-01-01T00:00:00Z',
        })

        token = HMRCAuth().get_valid_access_token(credentials)

        assert token == 'current_token'
        mock_post.assert_not_called()

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_refreshes_expired_token_and_notifies(self, mock_post):
        mock_post.return_value = _token_response()
        credentials = CredentialSet(
            client_id='cid',
            client_secret='csecret',
            refresh_token='refresh',
            access_token='stale_token',
            token_expiry=time.time() + 60,
        )
        on_refreshed = Mock()

        token = HMRCAuth().get_valid_access_token(credentials, on_refreshed)

        assert token == 'new_access_token'
        on_refreshed.assert_called_once()
        refreshed = on_refreshed.call_args[0][0]
        assert refreshed.access_token == 'new_access_token'
        assert refreshed.refresh_token == 'new_refresh_token'

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_missing_access_token_triggers_refresh(self, mock_post):
        mock_post.return_value = _token_response()
        credentials = CredentialSet(client_id='cid', client_secret='csecret', refresh_token='refresh')

        assert HMRCAuth().get_valid_access_token(credentials) == 'new_access_token'

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_missing_credentials_raise_configuration_error(self, mock_post):
        credentials = CredentialSet(client_id='cid', access_token='stale_token', token_expiry=0)

        with pytest.raises(ConfigurationError) as exc_info:
            HMRCAuth().get_valid_access_token(credentials)

        assert exc_info.value.missing_fields == ['refresh_token', 'client_secret']
        mock_post.assert_not_called()

    @patch('hmrc_rti.hmrc.auth.requests.post')
    def test_refresh_failure_propagates(self, mock_post):
        mock_post.return_value = _error_response(400, {'code': 'INVALID_GRANT', 'message': 'bad refresh token'})
        credentials = CredentialSet(client_id='cid', client_secret='csecret', refresh_token='refresh')
        on_refreshed = Mock()

        with pytest.raises(AuthError):
            HMRCAuth().get_valid_access_token(credentials, on_refreshed)

        on_refreshed.assert_not_called()
