"""
2FA Database Models
SQLAlchemy models for accounts, TOTP configuration, backup codes and login challenges
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


class TwoFactorState(str, enum.Enum):
    DISABLED = 'disabled'
    SETUP_PENDING = 'setup_pending'
    ENABLED = 'enabled'


class User(db.Model):
    """Account owned by the identity collaborator"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    two_factor = relationship('TwoFactorConfig', back_populates='user', uselist=False,
                              cascade='all, delete-orphan')
    backup_codes = relationship('BackupCode', back_populates='user', cascade='all, delete-orphan')

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f'<User {self.email}>'


class TwoFactorConfig(db.Model):
    """
    Per-account 2FA configuration
    Secrets are stored as Fernet tokens, never in plaintext.
    `pending_secret` holds a secret from setup that has not been verified yet,
    so an abandoned setup never touches `secret` or `enabled`.
    """
    __tablename__ = 'two_factor_configs'

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False, index=True)

    secret = Column(Text, nullable=True)
    pending_secret = Column(Text, nullable=True)
    enabled = Column(Boolean, default=False, nullable=False)
    enabled_at = Column(DateTime, nullable=True)
    last_totp_step = Column(Integer, nullable=True)  # Highest accepted time step, for replay rejection

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship('User', back_populates='two_factor')

    @property
    def state(self) -> TwoFactorState:
        if self.enabled:
            return TwoFactorState.ENABLED
        if self.pending_secret:
            return TwoFactorState.SETUP_PENDING
        return TwoFactorState.DISABLED

    def __repr__(self):
        return f'<TwoFactorConfig account={self.account_id} state={self.state.value}>'


class BackupCode(db.Model):
    """Single-use recovery code, stored as a keyed hash"""
    __tablename__ = 'backup_codes'

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    code_hash = Column(String(64), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship('User', back_populates='backup_codes')

    __table_args__ = (
        Index('ix_backup_codes_account_hash', 'account_id', 'code_hash'),
    )

    def __repr__(self):
        return f'<BackupCode {self.id} used={self.used}>'


class PendingLoginChallenge(db.Model):
    """
    Short-lived handle for "password verified, second factor still required"
    Deleted on success, on exhaustion and on expiry.
    """
    __tablename__ = 'pending_login_challenges'

    challenge_id = Column(String(64), primary_key=True)
    account_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def __repr__(self):
        return f'<PendingLoginChallenge account={self.account_id}>'


class TwoFactorAttempt(db.Model):
    """Audit trail of second-factor checks"""
    __tablename__ = 'two_factor_attempts'

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    action = Column(String(20), nullable=False)  # 'verify_setup', 'login', 'disable', 'regenerate'
    method = Column(String(20), nullable=False)  # 'totp', 'backup' or 'password'
    success = Column(Boolean, nullable=False)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f'<TwoFactorAttempt {self.action} account={self.account_id} success={self.success}>'
