"""
Backup Code Manager
Single-use recovery codes: generation, keyed hashing and atomic consumption
"""

import hashlib
import hmac
import re
import secrets
import string
from datetime import datetime
from typing import List, Optional

from .exceptions import ValidationError
from .secret_store import SecretStore

BACKUP_CODE_LENGTH = 8
BACKUP_CODE_ALPHABET = string.ascii_uppercase + string.digits

TOTP_PATTERN = re.compile(r'^\d{6}$')
BACKUP_CODE_PATTERN = re.compile(r'^(?=.*[A-Z])[A-Z0-9]{8}$')

METHOD_TOTP = 'totp'
METHOD_BACKUP = 'backup'


def normalize_submission(value: str) -> str:
    """Remove any spaces/dashes the user might have entered, uppercase the rest"""
    return (value or '').replace(' ', '').replace('-', '').strip().upper()


def classify_submission(value: str) -> str:
    """
    Decide whether a login submission is a TOTP code or a backup code.

    Six digits is a TOTP code. Eight characters from A-Z0-9 with at least one
    letter is a backup code (generated codes always contain a letter, so an
    eight-digit string is never routed to the backup path). Anything else is
    rejected before any cryptographic check runs.
    """
    normalized = normalize_submission(value)
    if TOTP_PATTERN.match(normalized):
        return METHOD_TOTP
    if BACKUP_CODE_PATTERN.match(normalized):
        return METHOD_BACKUP
    raise ValidationError('Enter a 6-digit authenticator code or an 8-character backup code')


class BackupCodeManager:
    """Service for handling backup codes"""

    def __init__(self, store: SecretStore, pepper: str, batch_size: int = 10):
        if not pepper:
            raise ValueError('A backup-code pepper is required')
        self.store = store
        self._pepper = pepper.encode()
        self.batch_size = batch_size

    def generate_batch(self, count: Optional[int] = None) -> List[str]:
        """
        Generate distinct backup codes
        Returns:
            Plaintext codes. Show to the user ONCE; persist only hash_code() values.
        """
        if count is None:
            count = self.batch_size
        codes = []
        seen = set()
        while len(codes) < count:
            code = ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
            if code.isdigit() or code in seen:
                continue
            seen.add(code)
            codes.append(code)
        return codes

    def hash_code(self, code: str) -> str:
        """Keyed SHA-256 of the normalized code, stable across calls"""
        normalized = normalize_submission(code)
        return hmac.new(self._pepper, normalized.encode(), hashlib.sha256).hexdigest()

    def issue_batch(self, account_id: int) -> List[str]:
        """Generate a batch and replace the account's stored hashes with it (caller commits)"""
        codes = self.generate_batch()
        self.store.replace_backup_codes(account_id, [self.hash_code(c) for c in codes])
        return codes

    def consume(self, account_id: int, submitted: str, now: Optional[datetime] = None) -> bool:
        """
        Burn a backup code if it is one of the account's unused codes.
        The conditional UPDATE makes this safe against concurrent use of the
        same code; the caller commits.
        """
        if not BACKUP_CODE_PATTERN.match(normalize_submission(submitted)):
            return False
        return self.store.mark_backup_code_used(account_id, self.hash_code(submitted), now)

    def remaining(self, account_id: int) -> int:
        return self.store.count_unused_backup_codes(account_id)
