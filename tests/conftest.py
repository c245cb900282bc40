"""
Pytest configuration and shared fixtures for the 2FA service tests.

This module provides:
- An app on an in-memory SQLite database with a controllable clock
- The wired 2FA services
- Registered accounts and authenticated test clients
"""
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from twofactor.app import create_app
from twofactor.config import TestingConfig
from twofactor.lifecycle import AuthContext
from twofactor.models import db, User

# Aligned to a 30-second TOTP step boundary
T0 = 1_700_000_010

TEST_EMAIL = 'owner@pethotel.test'
TEST_PASSWORD = 'correct horse battery'


class FakeClock:
    """Callable clock the services read instead of time.time()"""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# ============================================
# Application Fixtures
# ============================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(config_object=TestingConfig, clock=clock)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def services(app):
    return app.extensions['twofactor']


@pytest.fixture
def client(app):
    return app.test_client()


# ============================================
# Account Fixtures
# ============================================

def create_account(services, email=TEST_EMAIL, password=TEST_PASSWORD) -> User:
    user = User(email=email, password_hash=services.credentials.hash_password(password))
    db.session.add(user)
    db.session.flush()
    services.store.create_config(user.id)
    db.session.commit()
    return user


@pytest.fixture
def account(services):
    """AuthContext for a freshly registered account with 2FA off"""
    user = create_account(services)
    return AuthContext(account_id=user.id, email=user.email, ip_address='127.0.0.1')


@pytest.fixture
def enabled_account(services, account, clock):
    """
    Account with 2FA enabled.
    Yields (ctx, secret, backup_codes); the clock is moved to the next
    time step so the setup code is not reused by accident.
    """
    result = services.lifecycle.setup(account)
    code = services.totp.current_code(result.secret, clock())
    backup_codes = services.lifecycle.verify_setup(account, code)
    clock.advance(30)
    return account, result.secret, backup_codes


@pytest.fixture
def auth_headers(services, account):
    session = services.jwt_service.issue_session(account.account_id)
    return {'Authorization': f"Bearer {session['access_token']}"}


@pytest.fixture
def file_app(tmp_path, clock):
    """
    App on a file-backed SQLite database, for tests that use several threads.
    Each thread must push its own app context (and so gets its own session).
    """
    app = create_app(
        config_overrides={'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'threads.db'}"},
        config_object=TestingConfig,
        clock=clock,
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


def run_concurrently(app, *calls):
    """
    Start every call at the same moment, each in its own thread and app context.
    Returns, per call, its return value or the exception it raised.
    """
    barrier = threading.Barrier(len(calls))

    def run(call):
        with app.app_context():
            barrier.wait()
            try:
                return call()
            except Exception as e:
                return e
            finally:
                db.session.remove()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(run, calls))
