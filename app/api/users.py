"""
User Profile API Endpoints

Read-only JSON views of users and their public profiles.
"""

from flask import Blueprint, jsonify, current_app
import traceback

from ..api_auth import api_token_required
from ..auth import get_acting_user
from ..domain.exceptions import DomainError
from ..services import user_service, profile_service

users_api = Blueprint('users_api', __name__, url_prefix='/api/v1/users')


@users_api.route('/self', methods=['GET'])
@api_token_required
def get_current_user():
    """Get the acting user's settings view."""
    return jsonify(user_service.serialize_user(get_acting_user()))


@users_api.route('/<user_id>/profile', methods=['GET'])
@api_token_required
def get_user_profile(user_id):
    """Profile of a user with the contexts they share with the caller."""
    try:
        return jsonify(profile_service.user_data(get_acting_user(), user_id))
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        current_app.logger.error(f"Error getting profile for user {user_id}: {e}")
        current_app.logger.error(traceback.format_exc())
        return jsonify({
            'status': 'error',
            'message': 'Error retrieving user profile'
        }), 500
