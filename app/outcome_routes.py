from flask import Blueprint, render_template, abort, current_app
from flask_login import login_required

from .auth import get_acting_user
from .domain.exceptions import NotFoundError, AuthorizationError, DomainError
from .domain.models import ContextType
from .services import outcome_service

outcomes_bp = Blueprint('outcomes', __name__)

BILLBOARD_COPY = {
    ContextType.COURSE: (
        'Outcomes have not been added to this course yet.',
        'Get started by finding, importing or creating your course outcomes.',
    ),
    ContextType.ACCOUNT: (
        'Outcomes have not been added to this account yet.',
        'Get started by finding, importing or creating your account outcomes.',
    ),
}


def load_error_message(context_type: ContextType, error) -> str:
    noun = 'course' if context_type is ContextType.COURSE else 'account'
    return f"An error occurred while loading {noun} outcomes: {error}"


@outcomes_bp.route('/<any(accounts, courses):contexts>/<context_id>/outcomes')
@login_required
def management(contexts, context_id):
    """Outcome management panel; shows a billboard while the context has no groups."""
    context_type = ContextType.from_path(contexts)
    user = get_acting_user()
    error = None
    data = {'rootId': None, 'collections': {}}
    try:
        data = outcome_service.collections(user, context_type, context_id)
    except NotFoundError:
        abort(404)
    except AuthorizationError:
        abort(401)
    except DomainError as e:
        error = load_error_message(context_type, e.message)
    except Exception as e:
        current_app.logger.error(f"Error loading outcomes for {context_type.value} {context_id}: {e}")
        error = load_error_message(context_type, e)

    # Only the root group exists until something is added
    has_outcomes = len(data['collections']) > 1
    heading, message = BILLBOARD_COPY[context_type]
    return render_template(
        'outcomes/management.html',
        title='Outcomes',
        context_type=context_type.value,
        context_id=context_id,
        root_id=data['rootId'],
        collections=data['collections'],
        has_outcomes=has_outcomes,
        can_manage=not error and outcome_service.can_manage(user, context_type, context_id),
        billboard_heading=heading,
        billboard_message=message,
        error=error,
    )
