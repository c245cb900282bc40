"""
TOTP Engine
Stateless RFC 6238 code generation and verification (pyotp)
"""

import time
from typing import Optional, Union

import pyotp
from pyotp.utils import strings_equal

Timestamp = Union[int, float]


class TOTPEngine:
    """Generates secrets and checks 6-digit codes against them"""

    def __init__(self, issuer: str = 'Pet Care Hotel', interval: int = 30, digits: int = 6,
                 valid_window: int = 1):
        self.issuer = issuer
        self.interval = interval
        self.digits = digits
        self.valid_window = valid_window  # Allow 1 period before/after for clock drift

    def generate_secret(self) -> str:
        """Generate a new TOTP secret (32 base32 chars = 160 bits)"""
        return pyotp.random_base32()

    def get_totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval)

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """The otpauth:// URI authenticator apps scan"""
        return self.get_totp(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)

    def time_step(self, for_time: Timestamp) -> int:
        return int(for_time) // self.interval

    def current_code(self, secret: str, for_time: Optional[Timestamp] = None) -> str:
        if for_time is None:
            for_time = time.time()
        return self.get_totp(secret).generate_otp(self.time_step(for_time))

    def matching_step(self, secret: str, code: str, for_time: Optional[Timestamp] = None) -> Optional[int]:
        """
        Return the time step `code` belongs to, searching the current step and
        `valid_window` steps on either side. None if it matches none of them.
        """
        if not code or not secret:
            return None

        if not code.isdigit() or len(code) != self.digits:
            return None

        if for_time is None:
            for_time = time.time()

        totp = self.get_totp(secret)
        current = self.time_step(for_time)
        for step in range(current - self.valid_window, current + self.valid_window + 1):
            if strings_equal(code, totp.generate_otp(step)):
                return step
        return None

    def verify(self, secret: str, code: str, for_time: Optional[Timestamp] = None) -> bool:
        """
        Verify a TOTP code
        Args:
            secret: Base32 TOTP secret
            code: 6-digit code from the authenticator app
            for_time: Unix timestamp to verify against (defaults to now)
        Returns:
            True if the code matches the current step or an adjacent one
        """
        return self.matching_step(secret, code, for_time) is not None
