"""
JWT Decorators
Route protection: resolve the bearer token into an explicit AuthContext
"""

from functools import wraps
from typing import Optional

from flask import request, jsonify, g

from .lifecycle import ACTION_STEP_UP, AuthContext
from .models import db, User


def get_token_from_header() -> Optional[str]:
    """Extract JWT from Authorization header"""
    auth_header = request.headers.get('Authorization', '')

    if auth_header.startswith('Bearer '):
        return auth_header[7:]

    return None


def jwt_required(f):
    """
    Decorator: Require valid JWT access token

    Sets:
        g.auth_context  (AuthContext for the request; pass it to the lifecycle)

    Usage:
        @bp.route('/status')
        @jwt_required
        def status():
            result = g.twofactor.lifecycle.status(g.auth_context.account_id)
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        token = get_token_from_header()

        if not token:
            return jsonify({
                'error': 'Missing authorization token',
                'code': 'TOKEN_MISSING'
            }), 401

        payload = g.jwt_service.decode_token(token)

        if not payload:
            return jsonify({
                'error': 'Invalid or expired token',
                'code': 'TOKEN_INVALID'
            }), 401

        user = db.session.get(User, int(payload['sub']))
        if not user or not user.is_active:
            return jsonify({
                'error': 'Invalid or expired token',
                'code': 'TOKEN_INVALID'
            }), 401

        g.auth_context = AuthContext(
            account_id=user.id,
            email=user.email,
            ip_address=request.remote_addr,
        )

        return f(*args, **kwargs)
    return decorated


def two_factor_required(f):
    """
    Decorator: Require a fresh second factor when the account has 2FA on

    Must be stacked under @jwt_required. The code is read from the
    X-2FA-Token header or the `two_fa_token` field of the JSON body.
    Accounts without 2FA pass straight through.

    Usage:
        @bp.route('/account/email', methods=['PUT'])
        @jwt_required
        @two_factor_required
        def change_email():
            ...
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        ctx = g.auth_context
        lifecycle = g.twofactor.lifecycle

        if not lifecycle.is_enabled(ctx.account_id):
            return f(*args, **kwargs)

        token = request.headers.get('X-2FA-Token')
        if not token:
            body = request.get_json(silent=True)
            if isinstance(body, dict):
                token = body.get('two_fa_token')

        if not token:
            return jsonify({
                'error': 'Two-factor code is required',
                'code': 'TWO_FACTOR_REQUIRED',
                'requires_2fa': True
            }), 401

        if not lifecycle.verify_second_factor(ctx.account_id, str(token), ACTION_STEP_UP,
                                              ctx.ip_address):
            return jsonify({
                'error': 'Invalid two-factor code',
                'code': 'INVALID_TOKEN'
            }), 401

        return f(*args, **kwargs)
    return decorated
