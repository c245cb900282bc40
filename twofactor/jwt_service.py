"""
JWT Service
Issues the full session once login (including any second factor) is complete
"""

from datetime import timedelta
from typing import Any, Dict, Optional

import jwt

from .models import utcnow


class JWTService:
    """Session token issuer used by the login flow"""

    def __init__(
        self,
        secret_key: str,
        access_token_expires: int = 15,      # 15 minutes
        algorithm: str = 'HS256'
    ):
        self.secret_key = secret_key
        self.access_token_expires = access_token_expires
        self.algorithm = algorithm

    def generate_access_token(self, account_id: int) -> str:
        now = utcnow()
        payload = {
            'sub': str(account_id),
            'type': 'access',
            'iat': now,
            'exp': now + timedelta(minutes=self.access_token_expires),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def issue_session(self, account_id: int) -> Dict[str, Any]:
        return {
            'access_token': self.generate_access_token(account_id),
            'token_type': 'Bearer',
            'expires_in': self.access_token_expires * 60,  # Convert to seconds
        }

    def decode_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Decode and validate a JWT token

        Returns:
            Decoded payload if valid, None otherwise
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.InvalidTokenError:
            return None

        if payload.get('type') != 'access':
            return None
        return payload


def create_jwt_service(app) -> JWTService:
    """Factory function to create JWTService from Flask app config"""
    return JWTService(
        secret_key=app.config.get('JWT_SECRET_KEY', app.config.get('SECRET_KEY')),
        access_token_expires=app.config.get('JWT_ACCESS_TOKEN_EXPIRES', 15),
        algorithm=app.config.get('JWT_ALGORITHM', 'HS256'),
    )
