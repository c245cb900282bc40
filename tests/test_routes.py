"""
Tests for the HTTP API.

Covers:
- Register / login with and without 2FA
- The /api/2fa endpoints end to end
- Error bodies and status codes
- Secrets and backup codes never re-exposed
"""
import pytest
from flask import jsonify

from twofactor.decorators import jwt_required, two_factor_required

from conftest import TEST_EMAIL, TEST_PASSWORD


def register_and_login(client, email=TEST_EMAIL, password=TEST_PASSWORD):
    resp = client.post('/api/auth/register', json={'email': email, 'password': password})
    assert resp.status_code == 201
    resp = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status_code == 200
    token = resp.get_json()['session']['access_token']
    return {'Authorization': f'Bearer {token}'}


def enable_2fa(client, services, clock, headers):
    setup = client.post('/api/2fa/setup', headers=headers).get_json()
    code = services.totp.current_code(setup['secret'], clock())
    resp = client.post('/api/2fa/verify-setup', headers=headers, json={'token': code})
    assert resp.status_code == 200
    clock.advance(30)
    return setup['secret'], resp.get_json()['backup_codes']


@pytest.fixture
def headers(client):
    return register_and_login(client)


class TestAuth:

    def test_register_rejects_duplicate_email(self, client, headers):
        resp = client.post('/api/auth/register', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'EMAIL_TAKEN'

    def test_register_race_on_unique_email(self, client, services, headers, monkeypatch):
        # Both requests passed the lookup before either inserted
        monkeypatch.setattr(services.credentials, 'find_by_email', lambda email: None)

        resp = client.post('/api/auth/register', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'EMAIL_TAKEN'

        login = client.post('/api/auth/login', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})
        assert login.status_code == 200

    def test_register_validates_body(self, client):
        resp = client.post('/api/auth/register', json={'email': 'nope', 'password': 'short'})
        assert resp.status_code == 400
        body = resp.get_json()
        assert body['code'] == 'VALIDATION_ERROR'
        assert body['details']

    def test_non_json_body(self, client):
        resp = client.post('/api/auth/login', data='email=x', content_type='text/plain')
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'VALIDATION_ERROR'

    def test_failed_login_does_not_reveal_2fa(self, client, services, clock, headers):
        enable_2fa(client, services, clock, headers)

        wrong_password = client.post('/api/auth/login', json={'email': TEST_EMAIL, 'password': 'wrong'})
        unknown_user = client.post('/api/auth/login', json={'email': 'ghost@pethotel.test', 'password': 'wrong'})

        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.get_json() == unknown_user.get_json()
        assert 'challenge_id' not in wrong_password.get_json()

    def test_protected_route_requires_token(self, client):
        resp = client.get('/api/2fa/status')
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'TOKEN_MISSING'

        resp = client.get('/api/2fa/status', headers={'Authorization': 'Bearer garbage'})
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'TOKEN_INVALID'

    def test_health(self, client):
        assert client.get('/health').get_json() == {'status': 'healthy'}


class TestEnrollment:

    def test_setup_returns_secret_uri_and_qr(self, client, headers):
        resp = client.post('/api/2fa/setup', headers=headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body['secret']
        assert body['provisioning_uri'].startswith('otpauth://totp/')
        assert body['qr_code'].startswith('data:image/png;base64,')

        status = client.get('/api/2fa/status', headers=headers).get_json()
        assert status == {
            'enabled': False,
            'has_pending_setup': True,
            'backup_codes_remaining': 0,
            'enabled_at': None,
        }

    def test_full_enrollment(self, client, services, clock, headers):
        secret, codes = enable_2fa(client, services, clock, headers)

        assert len(codes) == 10
        assert all(len(c) == 8 for c in codes)

        status = client.get('/api/2fa/status', headers=headers).get_json()
        assert status['enabled'] is True
        assert status['has_pending_setup'] is False
        assert status['backup_codes_remaining'] == 10
        assert secret not in str(status)

    def test_setup_when_enabled(self, client, services, clock, headers):
        enable_2fa(client, services, clock, headers)
        resp = client.post('/api/2fa/setup', headers=headers)
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'ALREADY_ENABLED'

    def test_verify_setup_without_setup(self, client, headers):
        resp = client.post('/api/2fa/verify-setup', headers=headers, json={'token': '123456'})
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'NO_PENDING_SETUP'

    def test_verify_setup_rejects_malformed_token(self, client, headers):
        client.post('/api/2fa/setup', headers=headers)
        resp = client.post('/api/2fa/verify-setup', headers=headers, json={'token': 'abcdef'})
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'VALIDATION_ERROR'

    def test_verify_setup_twice(self, client, services, clock, headers):
        setup = client.post('/api/2fa/setup', headers=headers).get_json()
        code = services.totp.current_code(setup['secret'], clock())
        assert client.post('/api/2fa/verify-setup', headers=headers, json={'token': code}).status_code == 200

        resp = client.post('/api/2fa/verify-setup', headers=headers, json={'token': code})
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'NO_PENDING_SETUP'


class TestLoginWithTwoFactor:

    def login(self, client):
        return client.post('/api/auth/login', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})

    def test_login_returns_challenge(self, client, services, clock, headers):
        enable_2fa(client, services, clock, headers)

        body = self.login(client).get_json()
        assert body['two_factor_required'] is True
        assert body['challenge_id']
        assert body['expires_in'] == 300
        assert body['session'] is None

    def test_verify_login_with_totp(self, client, services, clock, headers):
        secret, _ = enable_2fa(client, services, clock, headers)
        challenge_id = self.login(client).get_json()['challenge_id']

        resp = client.post('/api/2fa/verify-login', json={
            'challenge_id': challenge_id,
            'token_or_backup_code': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 200
        token = resp.get_json()['session']['access_token']

        status = client.get('/api/2fa/status', headers={'Authorization': f'Bearer {token}'})
        assert status.get_json()['enabled'] is True

    def test_verify_login_with_backup_code(self, client, services, clock, headers):
        _, codes = enable_2fa(client, services, clock, headers)
        challenge_id = self.login(client).get_json()['challenge_id']

        formatted = f'{codes[0][:4]}-{codes[0][4:]}'
        resp = client.post('/api/2fa/verify-login', json={
            'challenge_id': challenge_id,
            'token_or_backup_code': formatted,
        })
        assert resp.status_code == 200

        count = client.get('/api/2fa/backup-codes-count', headers=headers).get_json()
        assert count == {'remaining_backup_codes': 9}

        challenge_id = self.login(client).get_json()['challenge_id']
        resp = client.post('/api/2fa/verify-login', json={
            'challenge_id': challenge_id,
            'token_or_backup_code': codes[0],
        })
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'INVALID_TOKEN'
        assert resp.get_json()['attempts_remaining'] == 4

    def test_expired_challenge(self, client, services, clock, headers):
        secret, _ = enable_2fa(client, services, clock, headers)
        challenge_id = self.login(client).get_json()['challenge_id']

        clock.advance(6 * 60)
        resp = client.post('/api/2fa/verify-login', json={
            'challenge_id': challenge_id,
            'token_or_backup_code': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'CHALLENGE_EXPIRED'

    def test_exhausted_challenge(self, client, services, clock, headers):
        enable_2fa(client, services, clock, headers)
        challenge_id = self.login(client).get_json()['challenge_id']

        codes = []
        for _ in range(5):
            resp = client.post('/api/2fa/verify-login', json={
                'challenge_id': challenge_id,
                'token_or_backup_code': 'ZZZZ9999',
            })
            codes.append(resp.get_json()['code'])

        assert codes == ['INVALID_TOKEN'] * 4 + ['CHALLENGE_EXHAUSTED']


class TestDisable:

    def test_disable(self, client, services, clock, headers):
        secret, _ = enable_2fa(client, services, clock, headers)
        resp = client.post('/api/2fa/disable', headers=headers, json={
            'password': TEST_PASSWORD,
            'token': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 200

        status = client.get('/api/2fa/status', headers=headers).get_json()
        assert status['enabled'] is False
        assert status['backup_codes_remaining'] == 0

        login = client.post('/api/auth/login', json={'email': TEST_EMAIL, 'password': TEST_PASSWORD})
        assert login.get_json()['two_factor_required'] is False

    def test_wrong_token_and_wrong_password_look_the_same(self, client, services, clock, headers):
        secret, _ = enable_2fa(client, services, clock, headers)

        wrong_token = client.post('/api/2fa/disable', headers=headers, json={
            'password': TEST_PASSWORD,
            'token': 'ZZZZ9999',
        })
        wrong_password = client.post('/api/2fa/disable', headers=headers, json={
            'password': 'not my password',
            'token': services.totp.current_code(secret, clock()),
        })

        assert wrong_token.status_code == wrong_password.status_code == 401
        assert wrong_token.get_json() == wrong_password.get_json()
        assert wrong_token.get_json()['code'] == 'INVALID_CREDENTIALS'
        assert client.get('/api/2fa/status', headers=headers).get_json()['enabled'] is True

    def test_disable_when_not_enabled(self, client, headers):
        resp = client.post('/api/2fa/disable', headers=headers, json={
            'password': TEST_PASSWORD,
            'token': '123456',
        })
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'NOT_ENABLED'


class TestRegenerate:

    def test_regenerate(self, client, services, clock, headers):
        secret, old_codes = enable_2fa(client, services, clock, headers)
        resp = client.post('/api/2fa/regenerate-backup-codes', headers=headers, json={
            'token': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 200
        new_codes = resp.get_json()['backup_codes']
        assert len(new_codes) == 10
        assert not set(new_codes) & set(old_codes)

    def test_regenerate_rejects_backup_code(self, client, services, clock, headers):
        _, codes = enable_2fa(client, services, clock, headers)
        resp = client.post('/api/2fa/regenerate-backup-codes', headers=headers, json={'token': codes[0]})
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'VALIDATION_ERROR'

    def test_regenerate_not_enabled(self, client, headers):
        resp = client.post('/api/2fa/regenerate-backup-codes', headers=headers, json={'token': '123456'})
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'NOT_ENABLED'


class TestStepUp:

    def test_verify_with_totp(self, client, services, clock, headers):
        secret, _ = enable_2fa(client, services, clock, headers)
        resp = client.post('/api/2fa/verify', headers=headers, json={
            'token': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 200

    def test_verify_with_backup_code_burns_it(self, client, services, clock, headers):
        _, codes = enable_2fa(client, services, clock, headers)
        assert client.post('/api/2fa/verify', headers=headers, json={'token': codes[0]}).status_code == 200

        resp = client.post('/api/2fa/verify', headers=headers, json={'token': codes[0]})
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'INVALID_TOKEN'

    def test_verify_not_enabled(self, client, headers):
        resp = client.post('/api/2fa/verify', headers=headers, json={'token': '123456'})
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'NOT_ENABLED'


@pytest.fixture
def guarded_client(app):
    """Client for an app with one extra route protected by a fresh second factor"""
    @app.route('/api/account/email', methods=['PUT'])
    @jwt_required
    @two_factor_required
    def change_email():
        return jsonify({'message': 'Email updated'})

    return app.test_client()


class TestTwoFactorRequired:

    def test_passes_when_2fa_is_off(self, guarded_client):
        headers = register_and_login(guarded_client)
        assert guarded_client.put('/api/account/email', headers=headers, json={}).status_code == 200

    def test_missing_code(self, guarded_client, services, clock):
        headers = register_and_login(guarded_client)
        enable_2fa(guarded_client, services, clock, headers)

        resp = guarded_client.put('/api/account/email', headers=headers, json={})
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'TWO_FACTOR_REQUIRED'
        assert resp.get_json()['requires_2fa'] is True

    def test_code_in_header(self, guarded_client, services, clock):
        headers = register_and_login(guarded_client)
        secret, _ = enable_2fa(guarded_client, services, clock, headers)

        resp = guarded_client.put('/api/account/email', json={}, headers={
            **headers,
            'X-2FA-Token': services.totp.current_code(secret, clock()),
        })
        assert resp.status_code == 200

    def test_backup_code_in_body(self, guarded_client, services, clock):
        headers = register_and_login(guarded_client)
        _, codes = enable_2fa(guarded_client, services, clock, headers)

        resp = guarded_client.put('/api/account/email', headers=headers, json={'two_fa_token': codes[0]})
        assert resp.status_code == 200
        account_id = services.credentials.find_by_email(TEST_EMAIL).id
        assert services.backup_codes.remaining(account_id) == 9

    def test_wrong_code(self, guarded_client, services, clock):
        headers = register_and_login(guarded_client)
        enable_2fa(guarded_client, services, clock, headers)

        resp = guarded_client.put('/api/account/email', headers={**headers, 'X-2FA-Token': 'ZZZZ9999'}, json={})
        assert resp.status_code == 401
        assert resp.get_json()['code'] == 'INVALID_TOKEN'
