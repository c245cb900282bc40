"""
Tests for configuration, secret encryption and the CLI.
"""
import pytest
from cryptography.fernet import Fernet

from twofactor.app import create_app
from twofactor.config import TestingConfig, validate_config
from twofactor.crypto import SecretCipher


def settings(**overrides):
    values = {
        'TWOFA_LOGIN_MAX_ATTEMPTS': 5,
        'TWOFA_CHALLENGE_TTL_MINUTES': 5,
        'TWOFA_BACKUP_CODE_COUNT': 10,
    }
    values.update(overrides)
    return values


class TestValidateConfig:

    def test_defaults_are_valid(self):
        validate_config(settings())

    @pytest.mark.parametrize('attempts', [0, -1, 11, None, '5', True])
    def test_login_attempts_must_stay_bounded(self, attempts):
        with pytest.raises(ValueError):
            validate_config(settings(TWOFA_LOGIN_MAX_ATTEMPTS=attempts))

    @pytest.mark.parametrize('ttl', [0, 61])
    def test_challenge_ttl_bounds(self, ttl):
        with pytest.raises(ValueError):
            validate_config(settings(TWOFA_CHALLENGE_TTL_MINUTES=ttl))

    def test_backup_code_count_positive(self):
        with pytest.raises(ValueError):
            validate_config(settings(TWOFA_BACKUP_CODE_COUNT=0))

    def test_create_app_rejects_unbounded_retries(self):
        with pytest.raises(ValueError):
            create_app(config_overrides={'TWOFA_LOGIN_MAX_ATTEMPTS': 0}, config_object=TestingConfig)


class TestSecretCipher:

    def test_roundtrip_with_derived_key(self):
        cipher = SecretCipher.from_config(None, 'some-secret-key')
        token = cipher.encrypt('JBSWY3DPEHPK3PXP')
        assert token != 'JBSWY3DPEHPK3PXP'
        assert cipher.decrypt(token) == 'JBSWY3DPEHPK3PXP'

    def test_explicit_key_takes_precedence(self):
        key = Fernet.generate_key().decode()
        explicit = SecretCipher.from_config(key, 'some-secret-key')
        derived = SecretCipher.from_config(None, 'some-secret-key')
        with pytest.raises(RuntimeError):
            derived.decrypt(explicit.encrypt('JBSWY3DPEHPK3PXP'))

    def test_missing_keys(self):
        with pytest.raises(RuntimeError):
            SecretCipher.from_config(None, '')


def test_sweep_challenges_command(app, services, enabled_account, clock):
    ctx, _, _ = enabled_account
    services.coordinator.issue_challenge(ctx.account_id)
    clock.advance(10 * 60)

    result = app.test_cli_runner().invoke(args=['sweep-challenges'])

    assert result.exit_code == 0
    assert 'Removed 1 expired login challenge(s)' in result.output
