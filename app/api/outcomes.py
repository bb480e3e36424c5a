"""
Outcome Management API Endpoints

JSON endpoints behind the outcome management panel: the group tree browser,
group detail, edits to groups and outcomes, and the footer selection.
"""

from flask import Blueprint, request, jsonify, current_app, session
import traceback

from ..api_auth import api_token_required
from ..auth import get_acting_user
from ..domain.exceptions import DomainError
from ..domain.models import ContextType
from ..services import outcome_service
from ..services.kuzu_outcome_service import toggle_selection

outcomes_api = Blueprint('outcomes_api', __name__, url_prefix='/api/v1')

CONTEXTS = '<any(accounts, courses):contexts>'


def _params() -> dict:
    params = request.form.to_dict()
    params.update(request.get_json(silent=True) or {})
    return params


def _id_list(params: dict, key: str) -> list:
    values = params.get(key)
    if values is None:
        values = request.args.getlist(f'{key}[]') or request.args.getlist(key)
    if isinstance(values, str):
        values = [v for v in values.split(',') if v]
    return [str(v) for v in values or []]


def _selection_key(context_type: ContextType, context_id: str) -> str:
    return f"outcome_selection:{context_type.value}:{context_id}"


def _get_selection(context_type: ContextType, context_id: str) -> list:
    return list(session.get(_selection_key(context_type, context_id), []))


def _set_selection(context_type: ContextType, context_id: str, selected: list) -> None:
    session[_selection_key(context_type, context_id)] = selected


def _selection_payload(selected: list) -> dict:
    return {'selected': selected, 'count': len(selected)}


def _handle_error(e: Exception, action: str):
    if isinstance(e, DomainError):
        return jsonify(e.to_dict()), e.status_code
    current_app.logger.error(f"Error {action}: {e}")
    current_app.logger.error(traceback.format_exc())
    return jsonify({'status': 'error', 'message': f'Error {action}'}), 500


@outcomes_api.route(f'/{CONTEXTS}/<context_id>/outcome_groups', methods=['GET'])
@api_token_required
def get_collections(contexts, context_id):
    """Root group and its direct children for the tree browser."""
    try:
        return jsonify(outcome_service.collections(get_acting_user(), ContextType.from_path(contexts), context_id))
    except Exception as e:
        return _handle_error(e, 'loading outcome groups')


@outcomes_api.route(f'/{CONTEXTS}/<context_id>/outcome_groups', methods=['POST'])
@api_token_required
def create_group(contexts, context_id):
    params = _params()
    try:
        group = outcome_service.create_group(
            get_acting_user(), ContextType.from_path(contexts), context_id,
            title=params.get('title'),
            description=params.get('description'),
            parent_id=params.get('parent_id') or None,
        )
        return jsonify(outcome_service.serialize_group(group)), 201
    except Exception as e:
        return _handle_error(e, 'creating outcome group')


@outcomes_api.route('/outcome_groups/<group_id>/subgroups', methods=['GET'])
@api_token_required
def get_subgroups(group_id):
    try:
        return jsonify(outcome_service.subgroups(get_acting_user(), group_id))
    except Exception as e:
        return _handle_error(e, 'loading subgroups')


@outcomes_api.route('/outcome_groups/<group_id>/outcomes', methods=['GET'])
@api_token_required
def get_group_detail(group_id):
    per_page = request.args.get('per_page', type=int) or current_app.config.get('OUTCOMES_PAGE_SIZE', 10)
    try:
        return jsonify(outcome_service.group_detail(
            get_acting_user(), group_id,
            search=request.args.get('search') or None,
            cursor=request.args.get('cursor') or None,
            per_page=per_page,
        ))
    except Exception as e:
        return _handle_error(e, 'loading outcome group')


@outcomes_api.route('/outcome_groups/<group_id>/outcomes', methods=['POST'])
@api_token_required
def create_outcome(group_id):
    params = _params()
    try:
        outcome = outcome_service.create_outcome(
            get_acting_user(), group_id,
            title=params.get('title'),
            description=params.get('description'),
            display_name=params.get('display_name'),
        )
        return jsonify(outcome_service.serialize_outcome(outcome)), 201
    except Exception as e:
        return _handle_error(e, 'creating outcome')


@outcomes_api.route('/outcome_groups/<group_id>', methods=['PUT'])
@api_token_required
def move_group(group_id):
    try:
        group = outcome_service.move_group(get_acting_user(), group_id, _params().get('parent_id'))
        return jsonify(outcome_service.serialize_group(group))
    except Exception as e:
        return _handle_error(e, 'moving outcome group')


@outcomes_api.route('/outcome_groups/<group_id>', methods=['DELETE'])
@api_token_required
def remove_group(group_id):
    try:
        removed = outcome_service.remove_group(get_acting_user(), group_id)
        return jsonify({'status': 'deleted', 'removed': removed})
    except Exception as e:
        return _handle_error(e, 'removing outcome group')


@outcomes_api.route('/outcome_groups/<group_id>/outcomes/<outcome_id>', methods=['DELETE'])
@api_token_required
def remove_outcome(group_id, outcome_id):
    try:
        outcome_service.remove_outcome(get_acting_user(), group_id, outcome_id)
        return jsonify({'status': 'deleted', 'id': outcome_id})
    except Exception as e:
        return _handle_error(e, 'removing outcome')


@outcomes_api.route('/outcome_groups/<group_id>/outcomes', methods=['DELETE'])
@api_token_required
def remove_outcomes(group_id):
    """Detach the given outcomes, or the current selection when none are given."""
    try:
        group = outcome_service.require_group(group_id)
        context_type, context_id = ContextType(group.context_type), group.context_id
        outcome_ids = _id_list(_params(), 'outcome_ids') or _get_selection(context_type, context_id)
        removed = outcome_service.remove_outcomes(get_acting_user(), group_id, outcome_ids)
        remaining = [s for s in _get_selection(context_type, context_id) if s not in removed]
        _set_selection(context_type, context_id, remaining)
        return jsonify({'status': 'deleted', 'removed': removed})
    except Exception as e:
        return _handle_error(e, 'removing outcomes')


@outcomes_api.route('/outcome_groups/<group_id>/outcomes/move', methods=['PUT'])
@api_token_required
def move_outcomes(group_id):
    params = _params()
    try:
        group = outcome_service.require_group(group_id)
        context_type, context_id = ContextType(group.context_type), group.context_id
        outcome_ids = _id_list(params, 'outcome_ids') or _get_selection(context_type, context_id)
        outcomes = outcome_service.move_outcomes(get_acting_user(), outcome_ids, params.get('target_group_id'))
        return jsonify({'outcomes': [outcome_service.serialize_outcome(o) for o in outcomes]})
    except Exception as e:
        return _handle_error(e, 'moving outcomes')


@outcomes_api.route('/outcome_groups/<group_id>/move_targets', methods=['GET'])
@api_token_required
def move_targets(group_id):
    try:
        return jsonify(outcome_service.move_targets(get_acting_user(), group_id,
                                                    outcome_id=request.args.get('outcome_id') or None))
    except Exception as e:
        return _handle_error(e, 'loading move targets')


def _unauthorized():
    return jsonify({'status': 'error', 'message': 'user not authorized to perform that action'}), 401


@outcomes_api.route(f'/{CONTEXTS}/<context_id>/outcome_selection', methods=['GET'])
@api_token_required
def get_selection(contexts, context_id):
    context_type = ContextType.from_path(contexts)
    try:
        if not outcome_service.can_read(get_acting_user(), context_type, context_id):
            return _unauthorized()
        return jsonify(_selection_payload(_get_selection(context_type, context_id)))
    except Exception as e:
        return _handle_error(e, 'loading selection')


@outcomes_api.route(f'/{CONTEXTS}/<context_id>/outcome_selection/<outcome_id>', methods=['POST'])
@api_token_required
def toggle_outcome_selection(contexts, context_id, outcome_id):
    context_type = ContextType.from_path(contexts)
    try:
        if not outcome_service.can_read(get_acting_user(), context_type, context_id):
            return _unauthorized()
        selected = toggle_selection(_get_selection(context_type, context_id), outcome_id)
        _set_selection(context_type, context_id, selected)
        return jsonify(_selection_payload(selected))
    except Exception as e:
        return _handle_error(e, 'updating selection')


@outcomes_api.route(f'/{CONTEXTS}/<context_id>/outcome_selection', methods=['DELETE'])
@api_token_required
def clear_selection(contexts, context_id):
    context_type = ContextType.from_path(contexts)
    try:
        if not outcome_service.can_read(get_acting_user(), context_type, context_id):
            return _unauthorized()
        _set_selection(context_type, context_id, [])
        return jsonify(_selection_payload([]))
    except Exception as e:
        return _handle_error(e, 'clearing selection')
