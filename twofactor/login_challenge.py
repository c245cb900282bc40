"""
Login Challenge Coordinator
Turns a successful password check into a short-lived pending-login challenge
when the account has 2FA on, and exchanges the challenge for a session once a
valid TOTP code or backup code is presented.
"""

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from .backup_codes import classify_submission
from .config import MAX_LOGIN_ATTEMPTS, MIN_LOGIN_ATTEMPTS
from .exceptions import ChallengeExhausted, ChallengeExpired, InvalidToken, NotEnabled
from .lifecycle import ACTION_LOGIN, TwoFactorLifecycle
from .models import PendingLoginChallenge, from_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    """Either a full session, or a challenge the client must resolve"""
    session: Optional[Dict[str, Any]] = None
    challenge_id: Optional[str] = None
    expires_in: Optional[int] = None

    @property
    def two_factor_required(self) -> bool:
        return self.challenge_id is not None


class LoginChallengeCoordinator:

    def __init__(
        self,
        session,
        lifecycle: TwoFactorLifecycle,
        token_issuer,
        ttl_minutes: int = 5,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        if not MIN_LOGIN_ATTEMPTS <= max_attempts <= MAX_LOGIN_ATTEMPTS:
            raise ValueError(
                f'max_attempts must be between {MIN_LOGIN_ATTEMPTS} and {MAX_LOGIN_ATTEMPTS}'
            )
        self.session = session
        self.lifecycle = lifecycle
        self.token_issuer = token_issuer
        self.ttl = timedelta(minutes=ttl_minutes)
        self.max_attempts = max_attempts
        self.clock = clock

    def begin_login(self, account_id: int) -> LoginResult:
        """
        Call only after the primary credentials were accepted.
        Returns a session directly when 2FA is off, otherwise a new challenge.
        """
        if not self.lifecycle.is_enabled(account_id):
            return LoginResult(session=self.token_issuer.issue_session(account_id))

        challenge = self.issue_challenge(account_id)
        return LoginResult(
            challenge_id=challenge.challenge_id,
            expires_in=int(self.ttl.total_seconds()),
        )

    def issue_challenge(self, account_id: int) -> PendingLoginChallenge:
        """Create a challenge, replacing any earlier one for the account"""
        now = from_timestamp(self.clock())

        self.session.query(PendingLoginChallenge).filter_by(account_id=account_id).delete(
            synchronize_session=False
        )
        challenge = PendingLoginChallenge(
            challenge_id=secrets.token_urlsafe(32),
            account_id=account_id,
            issued_at=now,
            expires_at=now + self.ttl,
            attempts=0,
        )
        self.session.add(challenge)
        self.session.commit()

        logger.info('Login challenge issued for account %s', account_id)
        return challenge

    def verify_login(self, challenge_id: str, submission: str,
                     ip_address: Optional[str] = None) -> Dict[str, Any]:
        """
        Resolve a challenge with a 6-digit TOTP code or an 8-character backup code.

        Each submission first claims one attempt with a conditional UPDATE, so
        concurrent requests can never run more second-factor checks than the
        retry bound allows.

        Returns:
            The session from the token issuer
        Raises:
            ChallengeExpired: unknown, already used or expired challenge
            ChallengeExhausted: no attempts left on this challenge
            InvalidToken: wrong code; the challenge stays usable
            ValidationError: submission has neither shape (does not count as an attempt)
        """
        classify_submission(submission)
        now = from_timestamp(self.clock())
        challenge = self.session.get(PendingLoginChallenge, challenge_id) if challenge_id else None

        if challenge is None:
            raise ChallengeExpired()

        account_id = challenge.account_id
        self._claim_attempt(challenge_id, now)

        try:
            verified = self.lifecycle.verify_second_factor(account_id, submission, ACTION_LOGIN,
                                                           ip_address)
        except NotEnabled:
            # 2FA was switched off after the challenge was issued
            self._delete(challenge_id)
            raise ChallengeExpired()

        if not verified:
            return self._register_failure(challenge_id, account_id)

        if not self._delete(challenge_id):
            # Resolved by a concurrent request
            raise ChallengeExpired()

        logger.info('Login challenge resolved for account %s', account_id)
        return self.token_issuer.issue_session(account_id)

    def sweep_expired(self) -> int:
        """Delete every expired challenge. Returns how many were removed."""
        now = from_timestamp(self.clock())
        removed = self.session.query(PendingLoginChallenge).filter(
            PendingLoginChallenge.expires_at <= now
        ).delete(synchronize_session=False)
        self.session.commit()

        if removed:
            logger.info('Swept %s expired login challenges', removed)
        return removed

    # ==================== PRIVATE METHODS ====================

    def _claim_attempt(self, challenge_id: str, now: datetime):
        """Spend one attempt, or raise if the challenge can no longer be used"""
        claimed = self.session.query(PendingLoginChallenge).filter(
            PendingLoginChallenge.challenge_id == challenge_id,
            PendingLoginChallenge.attempts < self.max_attempts,
            PendingLoginChallenge.expires_at > now,
        ).update({'attempts': PendingLoginChallenge.attempts + 1}, synchronize_session=False)
        self.session.commit()

        if claimed == 1:
            return

        challenge = self.session.get(PendingLoginChallenge, challenge_id, populate_existing=True)
        if challenge is None:
            raise ChallengeExpired()

        expired = challenge.is_expired(now)
        account_id = challenge.account_id
        self._delete(challenge_id)
        if expired:
            raise ChallengeExpired()
        logger.warning('Login challenge exhausted for account %s', account_id)
        raise ChallengeExhausted()

    def _register_failure(self, challenge_id: str, account_id: int):
        challenge = self.session.get(PendingLoginChallenge, challenge_id, populate_existing=True)
        if challenge is None:
            raise ChallengeExpired()

        remaining = self.max_attempts - challenge.attempts
        if remaining <= 0:
            self._delete(challenge_id)
            logger.warning('Login challenge exhausted for account %s', account_id)
            raise ChallengeExhausted()

        raise InvalidToken(attempts_remaining=remaining)

    def _delete(self, challenge_id: str) -> bool:
        deleted = self.session.query(PendingLoginChallenge).filter_by(
            challenge_id=challenge_id
        ).delete(synchronize_session=False)
        self.session.commit()
        return deleted == 1
