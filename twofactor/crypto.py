"""
Secret encryption
Fernet (AES-128-CBC + HMAC) wrapper for TOTP secrets stored at rest
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken as FernetInvalidToken


class SecretCipher:
    """Encrypts and decrypts TOTP secrets before they touch the database"""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_config(cls, encryption_key: Optional[str], secret_key: str) -> 'SecretCipher':
        """Use the configured Fernet key, or derive one from SECRET_KEY"""
        if encryption_key:
            return cls(encryption_key.encode())
        if not secret_key:
            raise RuntimeError('TWOFA_ENCRYPTION_KEY or SECRET_KEY must be set')
        digest = hashlib.sha256(secret_key.encode()).digest()
        return cls(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a stored secret. Raises RuntimeError if the key is wrong."""
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except FernetInvalidToken as e:
            raise RuntimeError('Stored 2FA secret could not be decrypted; check TWOFA_ENCRYPTION_KEY') from e
