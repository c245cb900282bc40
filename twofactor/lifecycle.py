"""
Two-Factor Lifecycle
The per-account state machine: DISABLED -> SETUP_PENDING -> ENABLED -> DISABLED

Every operation takes the caller's identity explicitly (AuthContext) and runs
its read-check-write sequence inside SecretStore.transaction(), so setup,
verification, disable and regeneration on one account never interleave.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .backup_codes import (
    BackupCodeManager,
    METHOD_TOTP,
    classify_submission,
    normalize_submission,
)
from .credentials import CredentialVerifier
from .exceptions import (
    AlreadyEnabled,
    InvalidCredentials,
    InvalidToken,
    NoPendingSetup,
    NotEnabled,
    ValidationError,
)
from .models import TwoFactorConfig, TwoFactorState, from_timestamp
from .qr import QRRenderer
from .secret_store import SecretStore
from .totp_engine import TOTPEngine

logger = logging.getLogger(__name__)

ACTION_VERIFY_SETUP = 'verify_setup'
ACTION_LOGIN = 'login'
ACTION_DISABLE = 'disable'
ACTION_REGENERATE = 'regenerate'
ACTION_STEP_UP = 'step_up'

METHOD_PASSWORD = 'password'

DISABLE_FAILED_MESSAGE = 'Invalid password or verification code'


@dataclass(frozen=True)
class AuthContext:
    """Identity of an already primary-authenticated caller, scoped to one request"""
    account_id: int
    email: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class SetupResult:
    secret: str
    provisioning_uri: str
    qr_code: Optional[str] = None


@dataclass(frozen=True)
class StatusResult:
    enabled: bool
    has_pending_setup: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None

    @property
    def state(self) -> TwoFactorState:
        if self.enabled:
            return TwoFactorState.ENABLED
        if self.has_pending_setup:
            return TwoFactorState.SETUP_PENDING
        return TwoFactorState.DISABLED


class TwoFactorLifecycle:
    """Orchestrates setup, verification, disable and backup-code regeneration"""

    def __init__(
        self,
        store: SecretStore,
        totp: TOTPEngine,
        backup_codes: BackupCodeManager,
        credentials: CredentialVerifier,
        qr_renderer: Optional[QRRenderer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.totp = totp
        self.backup_codes = backup_codes
        self.credentials = credentials
        self.qr_renderer = qr_renderer
        self.clock = clock

    # ==================== ENROLLMENT ====================

    def setup(self, ctx: AuthContext) -> SetupResult:
        """
        Start (or restart) enrollment.

        Stores a fresh secret in the pending slot, discarding any earlier
        pending secret. `secret` and `enabled` are not touched until
        verify_setup() succeeds.

        Raises:
            AlreadyEnabled: 2FA is already on for this account
        """
        secret = self.totp.generate_secret()

        with self.store.transaction(ctx.account_id) as config:
            if config.enabled:
                raise AlreadyEnabled()
            self.store.set_pending_secret(config, secret)

        uri = self.totp.provisioning_uri(secret, ctx.email or str(ctx.account_id))
        qr_code = self.qr_renderer.render(uri) if self.qr_renderer else None

        logger.info('2FA setup started for account %s', ctx.account_id)
        return SetupResult(secret=secret, provisioning_uri=uri, qr_code=qr_code)

    def verify_setup(self, ctx: AuthContext, token: str) -> List[str]:
        """
        Confirm the pending secret with a code from the authenticator app.

        On success the pending secret becomes the active one, 2FA is enabled
        and a fresh batch of backup codes is returned (the only time their
        plaintext leaves the service). On failure the pending secret survives
        so the user can retry.

        Raises:
            ValidationError: token is not 6 digits
            NoPendingSetup: setup() has not been called, or was already verified
            InvalidToken: token does not match the pending secret
        """
        token = self._require_totp_shape(token)
        now = self.clock()
        codes = None

        with self.store.transaction(ctx.account_id) as config:
            pending = self.store.pending_secret(config)
            if pending is None:
                raise NoPendingSetup()

            step = self.totp.matching_step(pending, token, now)
            if step is not None:
                self.store.promote_pending_secret(config, step, from_timestamp(now))
                codes = self.backup_codes.issue_batch(ctx.account_id)

        self.store.record_attempt(ctx.account_id, ACTION_VERIFY_SETUP, METHOD_TOTP,
                                  codes is not None, ctx.ip_address)
        if codes is None:
            raise InvalidToken()

        logger.info('2FA enabled for account %s', ctx.account_id)
        return codes

    # ==================== STATUS ====================

    def status(self, account_id: int) -> StatusResult:
        """Flags and counts only; never secrets or codes"""
        config = self.store.get_config(account_id)
        if config is None:
            return StatusResult(enabled=False, has_pending_setup=False, backup_codes_remaining=0)

        return StatusResult(
            enabled=config.enabled,
            has_pending_setup=config.pending_secret is not None,
            backup_codes_remaining=self.backup_codes.remaining(account_id) if config.enabled else 0,
            enabled_at=config.enabled_at,
        )

    def backup_codes_remaining(self, account_id: int) -> int:
        return self.status(account_id).backup_codes_remaining

    # ==================== DISABLE / REGENERATE ====================

    def disable(self, ctx: AuthContext, password: str, token_or_backup_code: str):
        """
        Turn 2FA off after re-checking the password and the second factor.

        A backup code is only consumed once the password has been accepted.
        Either failure raises the same InvalidCredentials message.

        Raises:
            ValidationError: second factor is neither a TOTP code nor a backup code
            NotEnabled: 2FA is not on
            InvalidCredentials: password or second factor rejected
        """
        method = classify_submission(token_or_backup_code)
        now = self.clock()
        password_ok = factor_ok = False

        with self.store.transaction(ctx.account_id) as config:
            if not config.enabled:
                raise NotEnabled()

            password_ok = self.credentials.verify_password(ctx.account_id, password)
            if password_ok:
                factor_ok = self._check_second_factor(config, token_or_backup_code, method, now)
            if password_ok and factor_ok:
                self.store.clear(config)

        self.store.record_attempt(
            ctx.account_id,
            ACTION_DISABLE,
            method if password_ok else METHOD_PASSWORD,
            password_ok and factor_ok,
            ctx.ip_address,
        )
        if not (password_ok and factor_ok):
            raise InvalidCredentials(DISABLE_FAILED_MESSAGE)

        logger.info('2FA disabled for account %s', ctx.account_id)

    def regenerate_backup_codes(self, ctx: AuthContext, token: str) -> List[str]:
        """
        Replace the whole backup-code batch, invalidating every earlier code.

        Only a current authenticator code is accepted here; a backup code
        cannot be used to mint a new batch.

        Raises:
            ValidationError: token is not 6 digits
            NotEnabled: 2FA is not on
            InvalidToken: token rejected
        """
        token = self._require_totp_shape(token)
        now = self.clock()
        codes = None

        with self.store.transaction(ctx.account_id) as config:
            if not config.enabled:
                raise NotEnabled()
            if self._check_totp(config, token, now):
                codes = self.backup_codes.issue_batch(ctx.account_id)

        self.store.record_attempt(ctx.account_id, ACTION_REGENERATE, METHOD_TOTP,
                                  codes is not None, ctx.ip_address)
        if codes is None:
            raise InvalidToken()

        logger.info('Backup codes regenerated for account %s', ctx.account_id)
        return codes

    # ==================== LOGIN SUPPORT ====================

    def is_enabled(self, account_id: int) -> bool:
        config = self.store.get_config(account_id)
        return bool(config and config.enabled)

    def verify_second_factor(self, account_id: int, submission: str, action: str = ACTION_LOGIN,
                             ip_address: Optional[str] = None) -> bool:
        """
        Check a TOTP code or burn a backup code for an enabled account.

        Raises:
            ValidationError: submission has neither shape
            NotEnabled: 2FA is not on
        """
        method = classify_submission(submission)
        now = self.clock()

        with self.store.transaction(account_id) as config:
            if not config.enabled:
                raise NotEnabled()
            verified = self._check_second_factor(config, submission, method, now)

        self.store.record_attempt(account_id, action, method, verified, ip_address)
        return verified

    def step_up(self, ctx: AuthContext, token_or_backup_code: str):
        """
        Re-check the second factor of an already signed-in caller.

        Raises:
            ValidationError: submission has neither shape
            NotEnabled: 2FA is not on
            InvalidToken: code rejected
        """
        if not self.verify_second_factor(ctx.account_id, token_or_backup_code, ACTION_STEP_UP,
                                         ctx.ip_address):
            raise InvalidToken()

    # ==================== PRIVATE METHODS ====================

    def _check_second_factor(self, config: TwoFactorConfig, submission: str, method: str,
                             now: float) -> bool:
        if method == METHOD_TOTP:
            return self._check_totp(config, submission, now)
        return self.backup_codes.consume(config.account_id, submission, from_timestamp(now))

    def _check_totp(self, config: TwoFactorConfig, token: str, now: float) -> bool:
        """Accept a code at most once: its time step must be newer than the last one accepted"""
        secret = self.store.active_secret(config)
        step = self.totp.matching_step(secret, normalize_submission(token), now)
        if step is None:
            return False

        if config.last_totp_step is not None and step <= config.last_totp_step:
            logger.warning('Rejected reused TOTP code for account %s', config.account_id)
            return False

        self.store.record_totp_step(config, step)
        return True

    @staticmethod
    def _require_totp_shape(token: str) -> str:
        normalized = normalize_submission(token)
        if classify_submission(normalized) != METHOD_TOTP:
            raise ValidationError('A 6-digit authenticator code is required')
        return normalized
