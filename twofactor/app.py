"""
Flask App
Application factory wiring the 2FA services, blueprints, error handling and CLI
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import click
from flask import Flask, jsonify, g
from flask_cors import CORS

from .backup_codes import BackupCodeManager
from .config import Config, validate_config
from .credentials import CredentialVerifier
from .crypto import SecretCipher
from .exceptions import TwoFactorError
from .jwt_service import JWTService, create_jwt_service
from .lifecycle import TwoFactorLifecycle
from .login_challenge import LoginChallengeCoordinator
from .models import db
from .qr import QRRenderer
from .routes import auth_bp, twofa_bp
from .secret_store import SecretStore
from .totp_engine import TOTPEngine

logger = logging.getLogger(__name__)


@dataclass
class TwoFactorServices:
    store: SecretStore
    totp: TOTPEngine
    backup_codes: BackupCodeManager
    credentials: CredentialVerifier
    lifecycle: TwoFactorLifecycle
    coordinator: LoginChallengeCoordinator
    jwt_service: JWTService


def build_services(app: Flask, clock: Callable[[], float] = time.time) -> TwoFactorServices:
    """Create the 2FA services from app.config"""
    config = app.config

    cipher = SecretCipher.from_config(config.get('TWOFA_ENCRYPTION_KEY'), config['SECRET_KEY'])
    store = SecretStore(db.session, cipher)
    totp = TOTPEngine(issuer=config['TWOFA_ISSUER'])
    backup_codes = BackupCodeManager(
        store,
        pepper=config.get('TWOFA_BACKUP_CODE_PEPPER') or config['SECRET_KEY'],
        batch_size=config['TWOFA_BACKUP_CODE_COUNT'],
    )
    credentials = CredentialVerifier(db.session)
    lifecycle = TwoFactorLifecycle(
        store,
        totp,
        backup_codes,
        credentials,
        qr_renderer=QRRenderer(),
        clock=clock,
    )
    jwt_service = create_jwt_service(app)
    coordinator = LoginChallengeCoordinator(
        db.session,
        lifecycle,
        jwt_service,
        ttl_minutes=config['TWOFA_CHALLENGE_TTL_MINUTES'],
        max_attempts=config['TWOFA_LOGIN_MAX_ATTEMPTS'],
        clock=clock,
    )

    return TwoFactorServices(
        store=store,
        totp=totp,
        backup_codes=backup_codes,
        credentials=credentials,
        lifecycle=lifecycle,
        coordinator=coordinator,
        jwt_service=jwt_service,
    )


def create_app(config_overrides: Optional[Mapping[str, Any]] = None,
               config_object: Any = Config,
               clock: Callable[[], float] = time.time) -> Flask:
    app = Flask(__name__)

    # Configuration
    app.config.from_object(config_object)
    if config_overrides:
        app.config.update(config_overrides)
    validate_config(app.config)

    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('twofactor').setLevel(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)
    CORS(app)

    services = build_services(app, clock=clock)
    app.extensions['twofactor'] = services

    @app.before_request
    def before_request():
        g.twofactor = services
        g.jwt_service = services.jwt_service

    @app.errorhandler(TwoFactorError)
    def handle_two_factor_error(error: TwoFactorError):
        return jsonify(error.to_dict()), error.status_code

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(twofa_bp)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'healthy'})

    @app.cli.command('sweep-challenges')
    def sweep_challenges():
        """Delete expired pending-login challenges"""
        removed = services.coordinator.sweep_expired()
        click.echo(f'Removed {removed} expired login challenge(s)')

    # Create tables
    with app.app_context():
        db.create_all()

    logger.debug('2FA service configured (issuer=%s)', app.config['TWOFA_ISSUER'])
    return app
