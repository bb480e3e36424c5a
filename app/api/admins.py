"""
Account Admins API Endpoints

Grant, list and revoke account-level admin memberships.
"""

from flask import Blueprint, request, jsonify, current_app
import traceback

from ..api_auth import api_token_required
from ..auth import get_acting_user
from ..domain.exceptions import DomainError
from ..services import account_service

admins_api = Blueprint('admins_api', __name__, url_prefix='/api/v1/accounts')


def _params() -> dict:
    """JSON body merged over form fields, so both encodings work."""
    params = request.form.to_dict()
    params.update(request.get_json(silent=True) or {})
    return params


def _handle_error(e: Exception, action: str):
    if isinstance(e, DomainError):
        return jsonify(e.to_dict()), e.status_code
    current_app.logger.error(f"Error {action}: {e}")
    current_app.logger.error(traceback.format_exc())
    return jsonify({'status': 'error', 'message': f'Error {action}'}), 500


@admins_api.route('/<account_id>/admins', methods=['POST'])
@api_token_required
def create_admin(account_id):
    """Make a user an admin of the account (membership_type defaults to AccountAdmin)."""
    params = _params()
    try:
        membership = account_service.add_admin(
            account_id,
            params.get('user_id'),
            acting_user=get_acting_user(),
            membership_type=params.get('membership_type') or None,
        )
        return jsonify(account_service.serialize_admin(membership))
    except Exception as e:
        return _handle_error(e, 'creating admin')


@admins_api.route('/<account_id>/admins', methods=['GET'])
@api_token_required
def list_admins(account_id):
    user_ids = request.args.getlist('user_id[]') or request.args.getlist('user_id')
    try:
        admins = account_service.list_admins(account_id, acting_user=get_acting_user(), user_ids=user_ids)
        return jsonify([account_service.serialize_admin(a) for a in admins])
    except Exception as e:
        return _handle_error(e, 'listing admins')


@admins_api.route('/<account_id>/admins/<user_id>', methods=['DELETE'])
@api_token_required
def remove_admin(account_id, user_id):
    try:
        membership = account_service.remove_admin(
            account_id, user_id,
            acting_user=get_acting_user(),
            membership_type=request.args.get('membership_type') or None,
        )
        return jsonify(account_service.serialize_admin(membership))
    except Exception as e:
        return _handle_error(e, 'removing admin')
