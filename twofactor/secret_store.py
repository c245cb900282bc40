"""
Secret Store
Persistence for per-account 2FA configuration, backup-code hashes and the attempt log.
Knows nothing about HTTP; every caller passes the account id explicitly.
"""

import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Optional

from .crypto import SecretCipher
from .models import TwoFactorConfig, BackupCode, TwoFactorAttempt, utcnow

logger = logging.getLogger(__name__)


class SecretStore:
    """
    Stores TOTP secrets encrypted and backup codes hashed.

    Mutations of one account's configuration go through `transaction()`, which
    serializes them with a per-account lock in this process and a
    SELECT ... FOR UPDATE on the config row across processes.
    """

    def __init__(self, session, cipher: SecretCipher):
        self.session = session
        self.cipher = cipher
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ==================== CONFIGURATION ====================

    def create_config(self, account_id: int) -> TwoFactorConfig:
        """Add an empty configuration for a new account (caller commits)"""
        config = TwoFactorConfig(account_id=account_id, enabled=False)
        self.session.add(config)
        return config

    def get_config(self, account_id: int) -> Optional[TwoFactorConfig]:
        return self.session.query(TwoFactorConfig).filter_by(account_id=account_id).first()

    @contextmanager
    def transaction(self, account_id: int) -> Iterator[TwoFactorConfig]:
        """
        Yield the account's config row, locked for the duration of the block.
        Commits when the block exits normally, rolls back on an exception.
        """
        lock = self._account_lock(account_id)
        with lock:
            try:
                config = (
                    self.session.query(TwoFactorConfig)
                    .filter_by(account_id=account_id)
                    .populate_existing()
                    .with_for_update()
                    .first()
                )
                if config is None:
                    config = self.create_config(account_id)
                    self.session.flush()
                yield config
                self.session.commit()
            except Exception:
                self.session.rollback()
                raise

    def _account_lock(self, account_id: int) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[account_id] = lock
            return lock

    # ==================== SECRETS ====================

    def active_secret(self, config: TwoFactorConfig) -> Optional[str]:
        return self.cipher.decrypt(config.secret) if config.secret else None

    def pending_secret(self, config: TwoFactorConfig) -> Optional[str]:
        return self.cipher.decrypt(config.pending_secret) if config.pending_secret else None

    def set_pending_secret(self, config: TwoFactorConfig, secret: str):
        """Overwrite any earlier pending secret; `secret` and `enabled` are untouched"""
        config.pending_secret = self.cipher.encrypt(secret)

    def promote_pending_secret(self, config: TwoFactorConfig, accepted_step: int,
                               now: Optional[datetime] = None):
        if not config.pending_secret:
            raise RuntimeError('No pending secret to promote')
        config.secret = config.pending_secret
        config.pending_secret = None
        config.enabled = True
        config.enabled_at = now or utcnow()
        config.last_totp_step = accepted_step

    def record_totp_step(self, config: TwoFactorConfig, step: int):
        config.last_totp_step = step

    def clear(self, config: TwoFactorConfig):
        """Return the account to DISABLED and drop every backup code"""
        config.secret = None
        config.pending_secret = None
        config.enabled = False
        config.enabled_at = None
        config.last_totp_step = None
        self.delete_backup_codes(config.account_id)

    # ==================== BACKUP CODES ====================

    def replace_backup_codes(self, account_id: int, code_hashes: Iterable[str]):
        """Replace the account's whole batch (caller commits)"""
        self.delete_backup_codes(account_id)
        for code_hash in code_hashes:
            self.session.add(BackupCode(account_id=account_id, code_hash=code_hash))

    def delete_backup_codes(self, account_id: int) -> int:
        return self.session.query(BackupCode).filter_by(account_id=account_id).delete(
            synchronize_session=False
        )

    def mark_backup_code_used(self, account_id: int, code_hash: str,
                              now: Optional[datetime] = None) -> bool:
        """
        Burn an unused code in a single conditional UPDATE.
        Returns True only for the caller whose UPDATE flipped `used`.
        """
        updated = (
            self.session.query(BackupCode)
            .filter_by(account_id=account_id, code_hash=code_hash, used=False)
            .update({'used': True, 'used_at': now or utcnow()}, synchronize_session=False)
        )
        return updated == 1

    def count_unused_backup_codes(self, account_id: int) -> int:
        return self.session.query(BackupCode).filter_by(account_id=account_id, used=False).count()

    def count_backup_codes(self, account_id: int) -> int:
        return self.session.query(BackupCode).filter_by(account_id=account_id).count()

    # ==================== AUDIT ====================

    def record_attempt(self, account_id: int, action: str, method: str, success: bool,
                       ip_address: Optional[str] = None):
        """Log a second-factor check. Never receives the submitted value."""
        self.session.add(TwoFactorAttempt(
            account_id=account_id,
            action=action,
            method=method,
            success=success,
            ip_address=ip_address,
        ))
        self.session.commit()
        logger.info('2FA %s via %s for account %s: %s', action, method, account_id,
                    'success' if success else 'failure')
