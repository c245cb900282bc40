"""
Two-factor authentication lifecycle service
TOTP enrollment, login challenges and single-use backup codes for a Flask API
"""

from .app import create_app

__all__ = ['create_app']
