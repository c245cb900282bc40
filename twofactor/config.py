"""
Configuration
Environment-driven settings loaded into Flask's app.config
"""

import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


# Bounds for the login-challenge retry counter. The counter itself is always on.
MIN_LOGIN_ATTEMPTS = 1
MAX_LOGIN_ATTEMPTS = 10


class Config:
    """Default configuration (reads environment variables at import time)"""

    SECRET_KEY = os.environ.get('SECRET_KEY', 'your-secret-key-change-in-production')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///twofactor.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # JWT settings
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY', 'your-jwt-secret-change-in-production')
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')
    JWT_ACCESS_TOKEN_EXPIRES = _env_int('JWT_ACCESS_TOKEN_EXPIRES', 15)  # minutes

    # 2FA settings
    TWOFA_ISSUER = os.environ.get('TWOFA_ISSUER', 'Pet Care Hotel')
    TWOFA_ENCRYPTION_KEY = os.environ.get('TWOFA_ENCRYPTION_KEY')  # Fernet key, derived from SECRET_KEY if unset
    TWOFA_BACKUP_CODE_PEPPER = os.environ.get('TWOFA_BACKUP_CODE_PEPPER')  # defaults to SECRET_KEY
    TWOFA_BACKUP_CODE_COUNT = _env_int('TWOFA_BACKUP_CODE_COUNT', 10)
    TWOFA_CHALLENGE_TTL_MINUTES = _env_int('TWOFA_CHALLENGE_TTL_MINUTES', 5)
    TWOFA_LOGIN_MAX_ATTEMPTS = _env_int('TWOFA_LOGIN_MAX_ATTEMPTS', 5)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET_KEY = 'test-jwt-secret-key-with-enough-length'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    LOG_LEVEL = 'DEBUG'


def validate_config(config) -> None:
    """Reject settings that would weaken the login challenge"""
    attempts = config.get('TWOFA_LOGIN_MAX_ATTEMPTS')
    if not isinstance(attempts, int) or isinstance(attempts, bool):
        raise ValueError('TWOFA_LOGIN_MAX_ATTEMPTS must be an integer')
    if not MIN_LOGIN_ATTEMPTS <= attempts <= MAX_LOGIN_ATTEMPTS:
        raise ValueError(
            f'TWOFA_LOGIN_MAX_ATTEMPTS must be between {MIN_LOGIN_ATTEMPTS} and {MAX_LOGIN_ATTEMPTS}'
        )

    ttl = config.get('TWOFA_CHALLENGE_TTL_MINUTES')
    if not isinstance(ttl, int) or not 1 <= ttl <= 60:
        raise ValueError('TWOFA_CHALLENGE_TTL_MINUTES must be between 1 and 60')

    count = config.get('TWOFA_BACKUP_CODE_COUNT')
    if not isinstance(count, int) or count < 1:
        raise ValueError('TWOFA_BACKUP_CODE_COUNT must be a positive integer')
