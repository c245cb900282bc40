"""
Request/response schemas
One pydantic model per operation; request bodies are validated here before
anything reaches the lifecycle.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class _Request(BaseModel):
    model_config = {'extra': 'ignore', 'str_strip_whitespace': True}


# ==================== REQUESTS ====================

class RegisterRequest(_Request):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8, max_length=128)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        if '@' not in value:
            raise ValueError('Invalid email address')
        return value.lower()


class LoginRequest(_Request):
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class VerifySetupRequest(_Request):
    token: str = Field(min_length=6, max_length=7)


class DisableRequest(_Request):
    password: str = Field(min_length=1, max_length=128)
    token: str = Field(min_length=6, max_length=9)


class RegenerateBackupCodesRequest(_Request):
    token: str = Field(min_length=6, max_length=7)


class StepUpRequest(_Request):
    token: str = Field(min_length=6, max_length=9)


class VerifyLoginRequest(_Request):
    challenge_id: str = Field(min_length=1, max_length=64)
    token_or_backup_code: str = Field(min_length=6, max_length=9)


# ==================== RESPONSES ====================

class SetupResponse(BaseModel):
    message: str = 'Scan the QR code with your authenticator app, then verify a code.'
    secret: str
    provisioning_uri: str
    qr_code: Optional[str] = None


class BackupCodesResponse(BaseModel):
    message: str
    backup_codes: List[str]
    warning: str = 'SAVE THESE BACKUP CODES! They will not be shown again.'


class StatusResponse(BaseModel):
    enabled: bool
    has_pending_setup: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None


class BackupCodesCountResponse(BaseModel):
    remaining_backup_codes: int


class MessageResponse(BaseModel):
    message: str


class UserResponse(BaseModel):
    id: int
    email: str


class LoginResponse(BaseModel):
    message: str
    two_factor_required: bool = False
    challenge_id: Optional[str] = None
    expires_in: Optional[int] = None
    session: Optional[dict] = None


class SessionResponse(BaseModel):
    message: str = 'Login successful'
    session: dict
