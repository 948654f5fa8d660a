import os
from datetime import timedelta

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    """Base configuration for the application."""

    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-please-change-in-production'
    DEBUG = False
    TESTING = False

    # Key for the HMAC applied to every stored secret; defaults to SECRET_KEY
    TOKEN_HASH_KEY = os.environ.get('TOKEN_HASH_KEY')

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///brewlog.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bind address
    HOST = os.environ.get('HOST', '127.0.0.1')
    PORT = int(os.environ.get('PORT', 8000))

    # WebAuthn relying party; changing these invalidates every stored passkey
    WEBAUTHN_RP_ID = os.environ.get('WEBAUTHN_RP_ID', 'localhost')
    WEBAUTHN_RP_NAME = os.environ.get('WEBAUTHN_RP_NAME', 'Brewlog')
    WEBAUTHN_ORIGIN = os.environ.get('WEBAUTHN_ORIGIN', 'http://localhost:8000')
    WEBAUTHN_CHALLENGE_TTL = timedelta(minutes=5)

    # Session cookie
    SESSION_COOKIE_NAME_BREWLOG = 'brewlog_session'
    SESSION_LIFETIME = timedelta(days=30)
    INSECURE_COOKIES = _env_flag('INSECURE_COOKIES')

    # Registration links
    REGISTRATION_TOKEN_TTL = timedelta(hours=1)
    REGISTRATION_TOKEN_MAX_TTL = timedelta(days=7)
    BOOTSTRAP_ON_STARTUP = True

    # Identity resolution order for write requests
    AUTH_ORDER = ('session', 'bearer')

    # Rate limit applied to the ceremony endpoints
    WEBAUTHN_RATE_LIMIT = os.environ.get('WEBAUTHN_RATE_LIMIT', '30 per minute')
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'standard')

    VERSION = '0.4.0'


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True
    INSECURE_COOKIES = _env_flag('INSECURE_COOKIES', 'true')

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or 'sqlite:///brewlog-dev.db'


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for testing
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    INSECURE_COOKIES = True
    BOOTSTRAP_ON_STARTUP = False
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production configuration."""

    # Ensure proper secret key is set
    SECRET_KEY = os.environ.get('SECRET_KEY')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')


# Configuration dictionary
config_dict = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class based on environment."""
    if not config_name:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config_dict.get(config_name, config_dict['default'])
