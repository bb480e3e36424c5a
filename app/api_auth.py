"""
API Authentication Module

Bearer-token authentication for API endpoints. Tokens are stored hashed;
Flask-Login's request loader resolves a valid token to its user, so API
views can rely on ``current_user`` just like session-authenticated views.
"""

import secrets
import hashlib
import logging
from functools import wraps
from typing import Optional
from flask import request, jsonify
from flask_login import current_user

logger = logging.getLogger(__name__)


class APIToken:
    """API Token management for secure API access."""

    @staticmethod
    def generate_token() -> tuple[str, str]:
        """
        Generate a new API token.
        Returns (token, hashed_token) tuple.
        """
        token = secrets.token_urlsafe(32)
        # Never store plain tokens
        return token, APIToken.hash_token(token)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    @staticmethod
    def verify_token(token: str, hashed_token: str) -> bool:
        """Verify if a token matches its hash."""
        if not token or not hashed_token:
            return False
        return secrets.compare_digest(APIToken.hash_token(token), hashed_token)


def bearer_token_from_request() -> Optional[str]:
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        token = auth_header[len('Bearer '):].strip()
        return token or None
    return None


def load_user_from_request(req):
    """Flask-Login request loader: authenticate a bearer token."""
    auth_header = req.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    token = auth_header[len('Bearer '):].strip()
    if not token:
        return None
    from .services import user_service
    user = user_service.get_user_by_token(token)
    if user is None:
        logger.info(f"Rejected API token for {req.path}")
    return user


def api_token_required(f):
    """
    Decorator for API endpoints that require authentication.

    Accepts a valid bearer token or an authenticated session; answers JSON 401
    otherwise.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user.is_authenticated:
            return f(*args, **kwargs)

        if bearer_token_from_request():
            return jsonify({'status': 'error', 'message': 'Invalid API token'}), 401

        return jsonify({
            'status': 'error',
            'message': 'Provide API token via Authorization header or login via web interface',
            'authentication_methods': [
                'Bearer token in Authorization header',
                'Session-based login via web interface'
            ]
        }), 401

    return decorated_function
