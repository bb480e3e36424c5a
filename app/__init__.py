"""
Flask application factory for Canvas Lite.

Kuzu is the sole data store; it is opened lazily by the SafeKuzuManager on
first use.
"""

import os
import logging
from flask import Flask, request, jsonify, redirect, url_for, session
from flask_login import LoginManager, current_user
from flask_wtf.csrf import CSRFProtect, CSRFError
from flask_session import Session
from werkzeug.exceptions import HTTPException
from config import Config

from .api_auth import load_user_from_request

logger = logging.getLogger(__name__)

login_manager = LoginManager()
csrf = CSRFProtect()
sess = Session()


@login_manager.user_loader
def load_user(user_id):
    """Load user from Kuzu via the user service."""
    from .services import user_service
    user = user_service.get_user_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user


login_manager.request_loader(load_user_from_request)


@login_manager.unauthorized_handler
def unauthorized():
    """Custom unauthorized handler that returns JSON for API requests."""
    if request.path.startswith('/api/'):
        return jsonify({
            'status': 'error',
            'message': 'This API endpoint requires authentication. Provide an API token or login.',
        }), 401
    return redirect(url_for('auth.login', next=request.path))


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Configure Python logging level from LOG_LEVEL (default ERROR)
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'ERROR')).upper(), logging.ERROR)
    logging.getLogger().setLevel(log_level)
    app.logger.setLevel(log_level)

    if not app.config.get('SECRET_KEY'):
        raise RuntimeError("SECRET_KEY must be set in environment or config")

    if app.config.get('KUZU_DB_PATH'):
        os.environ.setdefault('KUZU_DB_PATH', app.config['KUZU_DB_PATH'])

    csrf.init_app(app)
    if app.config.get('SESSION_TYPE'):
        os.makedirs(app.config.get('SESSION_FILE_DIR') or '.', exist_ok=True)
        sess.init_app(app)
    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'  # type: ignore
    login_manager.refresh_view = 'auth.login'  # type: ignore
    login_manager.login_message = 'Please log in to access this page.'
    login_manager.login_message_category = 'info'
    login_manager.needs_refresh_message = 'Please log in again to view this page.'
    login_manager.needs_refresh_message_category = 'info'

    @app.context_processor
    def inject_csrf_token():
        """Make CSRF token available in all templates."""
        from flask_wtf.csrf import generate_csrf
        return dict(csrf_token=generate_csrf)

    @app.context_processor
    def inject_site_name():
        return dict(site_name=app.config.get('SITE_NAME', 'Canvas Lite'))

    @app.context_processor
    def inject_acting_user():
        """Expose masquerade state to the layout."""
        from .auth import get_acting_user, MASQUERADE_SESSION_KEY
        if not current_user.is_authenticated:
            return dict(acting_user=None, masquerading=False)
        acting = get_acting_user()
        return dict(acting_user=acting,
                    masquerading=bool(session.get(MASQUERADE_SESSION_KEY)) and acting.id != current_user.id)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        """Handle CSRF errors with user-friendly messages."""
        app.logger.warning(f"CSRF validation failed for {request.path}: {e.description}")
        if request.path.startswith('/api/') or request.is_json:
            return jsonify({'status': 'error', 'message': 'CSRF token missing or invalid'}), 400
        return redirect(request.referrer or url_for('auth.login'))

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """JSON bodies for API paths; default pages elsewhere."""
        if request.path.startswith('/api/'):
            return jsonify({'status': 'error', 'message': e.description}), e.code
        return e

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return handle_http_exception(e)
        app.logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        if request.path.startswith('/api/'):
            return jsonify({'status': 'error', 'message': 'Internal server error'}), 500
        return "Internal Server Error", 500

    from .routes import register_blueprints
    register_blueprints(app)

    return app
