"""
2FA API Endpoints
Flask Blueprints for login and the two-factor lifecycle
"""

import logging
from typing import Type, TypeVar

import pydantic
from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from .decorators import jwt_required
from .exceptions import EmailTaken, InvalidCredentials, ValidationError
from .models import db, User
from .schemas import (
    BackupCodesCountResponse,
    BackupCodesResponse,
    DisableRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegenerateBackupCodesRequest,
    RegisterRequest,
    SessionResponse,
    SetupResponse,
    StatusResponse,
    StepUpRequest,
    UserResponse,
    VerifyLoginRequest,
    VerifySetupRequest,
)

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')
twofa_bp = Blueprint('twofa', __name__, url_prefix='/api/2fa')

RequestModel = TypeVar('RequestModel', bound=pydantic.BaseModel)


def parse_body(schema: Type[RequestModel]) -> RequestModel:
    """Validate the JSON body against a request schema"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as e:
        details = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors(include_url=False, include_context=False)
        ]
        raise ValidationError('Invalid request', details=details)


def respond(model: pydantic.BaseModel, status: int = 200):
    return jsonify(model.model_dump(mode='json')), status


# ==================== AUTHENTICATION ====================

@auth_bp.route('/register', methods=['POST'])
def register():
    """
    Register a new account

    Request body:
        - email
        - password (min 8 characters)
    """
    body = parse_body(RegisterRequest)
    services = g.twofactor

    if services.credentials.find_by_email(body.email):
        raise EmailTaken()

    user = User(email=body.email, password_hash=services.credentials.hash_password(body.password))
    try:
        db.session.add(user)
        db.session.flush()
        services.store.create_config(user.id)
        db.session.commit()
    except IntegrityError:
        # Registered concurrently between the lookup and the insert
        db.session.rollback()
        raise EmailTaken()

    logger.info('Registered account %s', user.id)
    return respond(UserResponse(id=user.id, email=user.email), 201)


@auth_bp.route('/login', methods=['POST'])
def login():
    """
    Login with email/password

    Returns a session when 2FA is off. When 2FA is on, returns a challenge_id
    to be resolved with POST /api/2fa/verify-login. The 2FA state is only
    consulted after the password was accepted.
    """
    body = parse_body(LoginRequest)
    services = g.twofactor

    user = services.credentials.authenticate(body.email, body.password)
    if user is None:
        raise InvalidCredentials('Invalid email or password')

    result = services.coordinator.begin_login(user.id)
    if result.two_factor_required:
        return respond(LoginResponse(
            message='Two-factor verification required',
            two_factor_required=True,
            challenge_id=result.challenge_id,
            expires_in=result.expires_in,
        ))

    return respond(LoginResponse(message='Login successful', session=result.session))


# ==================== TWO-FACTOR LIFECYCLE ====================

@twofa_bp.route('/status', methods=['GET'])
@jwt_required
def status():
    """Flags and counts only, never secrets or codes"""
    result = g.twofactor.lifecycle.status(g.auth_context.account_id)
    return respond(StatusResponse(
        enabled=result.enabled,
        has_pending_setup=result.has_pending_setup,
        backup_codes_remaining=result.backup_codes_remaining,
        enabled_at=result.enabled_at,
    ))


@twofa_bp.route('/setup', methods=['POST'])
@jwt_required
def setup():
    """
    Step 1: generate a secret and QR code

    The secret is returned only here. 2FA stays off until /verify-setup succeeds.
    """
    result = g.twofactor.lifecycle.setup(g.auth_context)
    return respond(SetupResponse(
        secret=result.secret,
        provisioning_uri=result.provisioning_uri,
        qr_code=result.qr_code,
    ))


@twofa_bp.route('/verify-setup', methods=['POST'])
@jwt_required
def verify_setup():
    """
    Step 2: confirm the secret with a code from the authenticator app

    Request body:
        - token: 6-digit TOTP code
    """
    body = parse_body(VerifySetupRequest)
    codes = g.twofactor.lifecycle.verify_setup(g.auth_context, body.token)
    return respond(BackupCodesResponse(
        message='Two-factor authentication has been enabled',
        backup_codes=codes,
    ))


@twofa_bp.route('/disable', methods=['POST'])
@jwt_required
def disable():
    """
    Request body:
        - password: account password
        - token: current TOTP code or an unused backup code
    """
    body = parse_body(DisableRequest)
    g.twofactor.lifecycle.disable(g.auth_context, body.password, body.token)
    return respond(MessageResponse(message='Two-factor authentication has been disabled'))


@twofa_bp.route('/regenerate-backup-codes', methods=['POST'])
@jwt_required
def regenerate_backup_codes():
    """
    Replace every backup code (invalidates all existing ones)

    Request body:
        - token: current TOTP code (backup codes are not accepted)
    """
    body = parse_body(RegenerateBackupCodesRequest)
    codes = g.twofactor.lifecycle.regenerate_backup_codes(g.auth_context, body.token)
    return respond(BackupCodesResponse(
        message='Backup codes regenerated',
        backup_codes=codes,
        warning='SAVE THESE BACKUP CODES! Previous codes are now invalid.',
    ))


@twofa_bp.route('/backup-codes-count', methods=['GET'])
@jwt_required
def backup_codes_count():
    remaining = g.twofactor.lifecycle.backup_codes_remaining(g.auth_context.account_id)
    return respond(BackupCodesCountResponse(remaining_backup_codes=remaining))


@twofa_bp.route('/verify', methods=['POST'])
@jwt_required
def verify():
    """
    Step-up check for a signed-in user

    Request body:
        - token: 6-digit TOTP code or 8-character backup code
    """
    body = parse_body(StepUpRequest)
    g.twofactor.lifecycle.step_up(g.auth_context, body.token)
    return respond(MessageResponse(message='Two-factor verification successful'))


@twofa_bp.route('/verify-login', methods=['POST'])
def verify_login():
    """
    Resolve a login challenge

    Request body:
        - challenge_id: from POST /api/auth/login
        - token_or_backup_code: 6-digit TOTP code or 8-character backup code
    """
    body = parse_body(VerifyLoginRequest)
    session = g.twofactor.coordinator.verify_login(
        body.challenge_id,
        body.token_or_backup_code,
        ip_address=request.remote_addr,
    )
    return respond(SessionResponse(session=session))
