"""
Routes package initialization.
Registers all blueprint modules for the Canvas Lite application.
"""

import logging
from flask import Blueprint, redirect, url_for
from flask_login import current_user

logger = logging.getLogger(__name__)

# Create a main blueprint that can be registered with the app
main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    """Send authenticated users to their settings, everyone else to login."""
    if current_user.is_authenticated:
        return redirect(url_for('profile.settings'))
    return redirect(url_for('auth.login'))


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    from ..auth import auth
    from ..profile_routes import profile_bp
    from ..outcome_routes import outcomes_bp
    from ..api.users import users_api
    from ..api.admins import admins_api
    from ..api.outcomes import outcomes_api
    from .db_health_routes import db_health
    from .. import csrf

    app.register_blueprint(main_bp)
    app.register_blueprint(auth)
    app.register_blueprint(profile_bp)
    app.register_blueprint(outcomes_bp)

    # JSON APIs authenticate with bearer tokens, not CSRF tokens
    for api_bp in (users_api, admins_api, outcomes_api, db_health):
        csrf.exempt(api_bp)
        app.register_blueprint(api_bp)

    logger.info("All blueprints registered successfully")
