"""
Two-Factor Errors
Typed failures raised by the 2FA core and rendered as JSON by the app
"""

from typing import Any, Dict


class TwoFactorError(Exception):
    """Base class for every failure the 2FA subsystem reports to a caller"""

    code = 'TWO_FACTOR_ERROR'
    status_code = 400
    default_message = 'Two-factor authentication error'

    def __init__(self, message: str = None, **extra: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'error': self.message,
            'code': self.code,
        }
        payload.update(self.extra)
        return payload


class ValidationError(TwoFactorError):
    """Malformed token, code or request body"""
    code = 'VALIDATION_ERROR'
    status_code = 400
    default_message = 'Invalid request'


class InvalidToken(TwoFactorError):
    """Token or backup code failed the cryptographic check"""
    code = 'INVALID_TOKEN'
    status_code = 400
    default_message = 'Invalid verification code'


class InvalidCredentials(TwoFactorError):
    code = 'INVALID_CREDENTIALS'
    status_code = 401
    default_message = 'Invalid credentials'


class AlreadyEnabled(TwoFactorError):
    code = 'ALREADY_ENABLED'
    status_code = 409
    default_message = 'Two-factor authentication is already enabled'


class NotEnabled(TwoFactorError):
    code = 'NOT_ENABLED'
    status_code = 409
    default_message = 'Two-factor authentication is not enabled'


class NoPendingSetup(TwoFactorError):
    code = 'NO_PENDING_SETUP'
    status_code = 409
    default_message = 'Two-factor setup has not been started'


class ChallengeExpired(TwoFactorError):
    code = 'CHALLENGE_EXPIRED'
    status_code = 401
    default_message = 'Login challenge is invalid or has expired. Please log in again.'


class ChallengeExhausted(TwoFactorError):
    code = 'CHALLENGE_EXHAUSTED'
    status_code = 401
    default_message = 'Too many failed attempts. Please log in again.'


class EmailTaken(TwoFactorError):
    code = 'EMAIL_TAKEN'
    status_code = 400
    default_message = 'Email already registered'

