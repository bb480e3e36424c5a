from flask import Blueprint, render_template, redirect, url_for, flash, request, session, abort
from flask_login import login_user, logout_user, login_required, current_user

from app.domain.models import EnrollmentType
from app.services import user_service, account_service, course_service
from app.utils.log_sanitizer import log
from .forms import LoginForm

auth = Blueprint('auth', __name__)

MASQUERADE_SESSION_KEY = 'become_user_id'


def can_masquerade(real_user, target) -> bool:
    """
    Whether ``real_user`` may act as ``target``.

    Account admins may become users of their accounts; teachers may become
    the student-view student of a course they teach.
    """
    if target is None or real_user is None or target.id == real_user.id:
        return False
    if account_service.is_account_admin(real_user.id, target.account_id):
        return True
    if target.is_fake_student:
        fake_courses = {e.course_id for e in course_service.active_enrollments(target.id)
                        if e.enrollment_type is EnrollmentType.STUDENT_VIEW}
        return any(course_service.can_manage_course(real_user.id, course_id) for course_id in fake_courses)
    return False


def get_real_user():
    """The authenticated user, ignoring masquerading."""
    if not current_user.is_authenticated:
        return None
    return current_user._get_current_object()


def get_acting_user():
    """The user the request acts as: the masquerade target when one is active."""
    real_user = get_real_user()
    if real_user is None:
        return None
    become_id = session.get(MASQUERADE_SESSION_KEY)
    if not become_id:
        return real_user
    target = user_service.get_user_by_id(become_id)
    if not can_masquerade(real_user, target):
        session.pop(MASQUERADE_SESSION_KEY, None)
        return real_user
    return target


@auth.route('/login', methods=['GET', 'POST'])
def login():
    # A remembered (non-fresh) session still sees the form to re-authenticate
    if current_user.is_authenticated and session.get('_fresh'):
        return redirect(url_for('profile.settings'))

    form = LoginForm()
    if form.validate_on_submit():
        user = user_service.authenticate(form.username.data, form.password.data)
        if user is None:
            log('info', 'Failed login for username=%s', form.username.data)
            flash('Invalid username or password', 'error')
            return render_template('auth/login.html', title='Log In', form=form)

        session.permanent = bool(form.remember_me.data)
        login_user(user, remember=form.remember_me.data)
        log('info', 'User %s logged in', user.id)

        next_page = request.args.get('next')
        if not next_page or not next_page.startswith('/'):
            next_page = url_for('profile.settings')
        return redirect(next_page)

    return render_template('auth/login.html', title='Log In', form=form)


@auth.route('/logout')
@login_required
def logout():
    session.clear()
    logout_user()
    flash('You have been logged out.', 'info')
    return redirect(url_for('auth.login'))


@auth.route('/users/<user_id>/masquerade', methods=['POST'])
@login_required
def masquerade(user_id):
    target = user_service.get_user_by_id(user_id)
    if target is None:
        abort(404)
    if not can_masquerade(get_real_user(), target):
        abort(401)
    session[MASQUERADE_SESSION_KEY] = target.id
    log('info', 'User %s is acting as %s', current_user.id, target.id)
    return redirect(url_for('profile.settings'))


@auth.route('/users/masquerade/stop', methods=['POST'])
@login_required
def stop_masquerade():
    session.pop(MASQUERADE_SESSION_KEY, None)
    return redirect(url_for('profile.settings'))
