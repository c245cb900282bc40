"""
Credential verifier
Primary-credential checks against the users table (werkzeug password hashes)
"""

from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .models import User


class CredentialVerifier:
    """Looks up accounts and checks their passwords"""

    def __init__(self, session):
        self.session = session

    def hash_password(self, password: str) -> str:
        return generate_password_hash(password)

    def get_account(self, account_id: int) -> Optional[User]:
        return self.session.get(User, account_id)

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.query(User).filter_by(email=email.strip().lower()).first()

    def verify_password(self, account_id: int, password: str) -> bool:
        user = self.get_account(account_id)
        if not user or not password:
            return False
        return check_password_hash(user.password_hash, password)

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the active account for email/password, or None. Never says which part failed."""
        user = self.find_by_email(email or '')
        if not user or not password:
            return None
        if not check_password_hash(user.password_hash, password):
            return None
        if not user.is_active:
            return None
        return user
