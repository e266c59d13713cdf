from flask import Blueprint, current_app, jsonify, request

from hmrc_rti.config import Config
from hmrc_rti.exceptions import AuthError, ConfigurationError, RTIError
from hmrc_rti.hmrc.auth import HMRCAuth
from hmrc_rti.hmrc.kv_store import create_store
from hmrc_rti.hmrc.utils import normalize_environment
from hmrc_rti.simple_logger import get_logger

logger = get_logger("hmrc_routes")
hmrc_bp = Blueprint('hmrc', __name__, url_prefix='/integrations/hmrc')

STATE_STORE_EXTENSION = 'hmrc_oauth_state_store'


def _state_store():
    """One-time OAuth state store, created per application on first use."""
    store = current_app.extensions.get(STATE_STORE_EXTENSION)
    if store is None:
        store = create_store(prefix='hmrc:oauth_state:')
        current_app.extensions[STATE_STORE_EXTENSION] = store
    return store


def _environment(data):
    return normalize_environment(data.get('environment') or current_app.config['HMRC_ENVIRONMENT'])


def _client_credentials():
    """Client credentials come only from server configuration."""
    settings = current_app.config
    Config.validate(settings)
    return settings['HMRC_CLIENT_ID'], settings['HMRC_CLIENT_SECRET']


def _token_response(token):
    payload = token.to_dict()
    payload['success'] = True
    return jsonify(payload), 200


@hmrc_bp.errorhandler(AuthError)
def handle_auth_error(e):
    status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
    body = e.to_dict()
    if e.errors:
        body['errors'] = e.errors
    return jsonify(body), status


@hmrc_bp.errorhandler(ConfigurationError)
def handle_configuration_error(e):
    logger.error("HMRC configuration error: %s (missing: %s)", e.message, ', '.join(e.missing_fields))
    return jsonify(e.to_dict()), 500


@hmrc_bp.errorhandler(RTIError)
def handle_rti_error(e):
    return jsonify(e.to_dict()), 400


@hmrc_bp.route('/auth-url', methods=['POST'])
def hmrc_auth_url():
    data = request.get_json(silent=True) or {}
    try:
        environment = _environment(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    client_id, _ = _client_credentials()
    settings = current_app.config
    redirect_uri = data.get('redirectUri') or settings['HMRC_REDIRECT_URI']

    url, state = HMRCAuth().authorization_url(client_id, redirect_uri, settings['HMRC_SCOPE'], environment)
    _state_store().set(state, environment, ttl=settings['OAUTH_STATE_TTL'])

    logger.info("Generated HMRC authorization URL (%s)", environment)
    return jsonify({'authUrl': url, 'state': state}), 200


@hmrc_bp.route('/oauth/token', methods=['POST'])
def hmrc_exchange_token():
    data = request.get_json(silent=True) or {}
    code = data.get('code')
    state = data.get('state')
    if not code:
        return jsonify({'error': 'Missing authorization code'}), 400
    if not state:
        return jsonify({'error': 'Missing state parameter'}), 400

    # State is single use: popped whether or not the exchange succeeds
    state_environment = _state_store().pop(state)
    if state_environment is None:
        logger.warning("HMRC OAuth state invalid or expired")
        return jsonify({'error': 'Invalid or expired state'}), 400

    try:
        environment = normalize_environment(data.get('environment') or state_environment)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    client_id, client_secret = _client_credentials()
    redirect_uri = data.get('redirectUri') or current_app.config['HMRC_REDIRECT_URI']

    token = HMRCAuth().exchange_code_for_token(code, client_id, client_secret, redirect_uri, environment)
    return _token_response(token)


@hmrc_bp.route('/oauth/refresh', methods=['POST'])
def hmrc_refresh_token():
    data = request.get_json(silent=True) or {}
    refresh_token = data.get('refreshToken')
    if not refresh_token:
        return jsonify({'error': 'Missing refresh token'}), 400

    try:
        environment = _environment(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    client_id, client_secret = _client_credentials()
    token = HMRCAuth().refresh_access_token(refresh_token, client_id, client_secret, environment)
    return _token_response(token)


@hmrc_bp.route('/health', methods=['GET'])
def hmrc_health():
    settings = current_app.config
    configured = bool(settings.get('HMRC_CLIENT_ID') and settings.get('HMRC_CLIENT_SECRET'))
    return jsonify({
        'status': 'healthy',
        'service': 'hmrc-rti',
        'environment': settings.get('HMRC_ENVIRONMENT'),
        'oauthConfigured': configured,
    }), 200
