import os

from hmrc_rti.exceptions import ConfigurationError


def _env_flag(name, default='0'):
    return os.environ.get(name, default).lower() in ('true', '1', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev')
    DEBUG = _env_flag('FLASK_DEBUG')
    TESTING = _env_flag('FLASK_TESTING')

    # HMRC OAuth application (one application per deployment)
    HMRC_ENVIRONMENT = os.environ.get('HMRC_ENVIRONMENT', 'sandbox')
    HMRC_CLIENT_ID = os.environ.get('HMRC_CLIENT_ID', '')
    HMRC_CLIENT_SECRET = os.environ.get('HMRC_CLIENT_SECRET', '')
    HMRC_REDIRECT_URI = os.environ.get('HMRC_REDIRECT_URI', 'http://localhost:5173/hmrc-callback')
    HMRC_SCOPE = os.environ.get('HMRC_SCOPE', 'write:paye-employer-paye-employer')

    HMRC_SANDBOX_BASE_URL = os.environ.get('HMRC_SANDBOX_BASE_URL', 'https://test-api.service.hmrc.gov.uk')
    HMRC_PRODUCTION_BASE_URL = os.environ.get('HMRC_PRODUCTION_BASE_URL', 'https://api.service.hmrc.gov.uk')
    HMRC_HTTP_TIMEOUT = int(os.environ.get('HMRC_HTTP_TIMEOUT', '30'))
    HMRC_TOKEN_EXPIRY_BUFFER = int(os.environ.get('HMRC_TOKEN_EXPIRY_BUFFER', '300'))

    # Static sender identity carried in every IRheader
    RTI_SENDER = os.environ.get('RTI_SENDER', 'Software')
    RTI_SENDER_ID = os.environ.get('RTI_SENDER_ID', '1Stop Payroll v5')

    # At-rest encryption for stored OAuth tokens (minimum 32 characters)
    HMRC_TOKEN_ENCRYPTION_KEY = os.environ.get('HMRC_TOKEN_ENCRYPTION_KEY', '')

    # Key-value store for device identifiers and OAuth state
    REDIS_URL = os.environ.get('REDIS_URL', '')
    DISABLE_REDIS = _env_flag('DISABLE_REDIS')
    OAUTH_STATE_TTL = int(os.environ.get('HMRC_OAUTH_STATE_TTL', '300'))

    REQUIRED_SETTINGS = ('HMRC_CLIENT_ID', 'HMRC_CLIENT_SECRET', 'HMRC_REDIRECT_URI')

    @classmethod
    def validate(cls, settings=None):
        """Raise ConfigurationError when the OAuth application is not configured.

        Checks ``settings`` (e.g. a Flask app.config) when given, else the class attributes.
        """
        if settings is None:
            settings = {name: getattr(cls, name) for name in cls.REQUIRED_SETTINGS}
        missing = [name for name in cls.REQUIRED_SETTINGS if not settings.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing HMRC configuration: {', '.join(missing)}",
                missing_fields=missing,
            )
        return True
