"""
Profile and user settings pages.

Self-service settings require a fresh login; remembered sessions are sent
back to the login form first.
"""

import traceback

from flask import Blueprint, render_template, redirect, url_for, flash, request, jsonify, abort, current_app
from flask_login import login_required, fresh_login_required, current_user

from .auth import get_acting_user
from .domain.exceptions import DomainError, AuthorizationError, NotFoundError
from .forms import ProfileSettingsForm, UserProfileForm, CommunicationChannelForm
from .services import user_service, profile_service

profile_bp = Blueprint('profile', __name__)


def _wants_json() -> bool:
    if request.args.get('format') == 'json':
        return True
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'application/json' and request.accept_mimetypes[best] > request.accept_mimetypes['text/html']


def _error_response(error: DomainError):
    return jsonify(error.to_dict()), error.status_code


def _request_params() -> dict:
    return request.get_json(silent=True) or {}


def _render_settings(user, settings_form=None, profile_form=None, channel_form=None):
    channels = user_service.channels_for_user(user.id)
    profile = profile_service.get_profile(user.id)
    pronoun_options = profile_service.pronoun_options(user)

    settings_form = settings_form or ProfileSettingsForm(
        formdata=None, name=user.name, short_name=user.short_name,
        sortable_name=user.sortable_name, time_zone=user.time_zone,
        pronouns=user.display_pronouns or '',
        default_email_id=channels[0].id if channels else '')
    settings_form.pronouns.choices = [('', 'None')] + [(p, p) for p in pronoun_options]
    settings_form.default_email_id.choices = [
        (c.id, c.path) for c in channels if c.path_type == 'email' and c.is_active
    ]
    profile_form = profile_form or UserProfileForm(
        formdata=None, short_name=user.short_name, title=profile.title, bio=profile.bio)

    return render_template(
        'profile/profile.html',
        title='User Settings',
        user=user,
        email=user_service.primary_email(user.id),
        channels=channels,
        profile=profile,
        user_services=profile_service.user_services(user.id),
        pronoun_options=pronoun_options,
        settings_form=settings_form,
        profile_form=profile_form,
        channel_form=channel_form or CommunicationChannelForm(formdata=None),
    )


@profile_bp.route('/profile', methods=['GET'])
@fresh_login_required
def settings():
    return _render_settings(get_acting_user())


@profile_bp.route('/about/<user_id>', methods=['GET'])
@login_required
def show(user_id):
    viewer = get_acting_user()
    if user_id == viewer.id and not _wants_json():
        return redirect(url_for('profile.settings'))
    try:
        user_data = profile_service.user_data(viewer, user_id)
    except NotFoundError:
        abort(404)
    except AuthorizationError:
        abort(401)
    if _wants_json():
        return jsonify(user_data)
    return render_template('profile/show.html', title=user_data['short_name'], user_data=user_data)


@profile_bp.route('/profile', methods=['PUT'])
@login_required
def update():
    try:
        user = profile_service.update_settings(get_acting_user(), _request_params())
        return jsonify(user_service.serialize_user(user))
    except DomainError as e:
        return _error_response(e)
    except Exception as e:
        current_app.logger.error(f"Error updating settings for user {current_user.id}: {e}")
        current_app.logger.error(traceback.format_exc())
        return jsonify({'status': 'error', 'message': 'Failed to update settings'}), 500


@profile_bp.route('/profile', methods=['POST'])
@fresh_login_required
def update_form():
    user = get_acting_user()
    form = ProfileSettingsForm()
    form.pronouns.choices = [('', 'None')] + [(p, p) for p in profile_service.pronoun_options(user)]
    if not form.validate_on_submit():
        return _render_settings(user, settings_form=form), 400
    try:
        profile_service.update_settings(user, form.to_params())
    except AuthorizationError:
        abort(401)
    flash('Settings updated.', 'success')
    return redirect(url_for('profile.settings'))


@profile_bp.route('/profile/update_profile', methods=['PUT'])
@login_required
def update_profile():
    try:
        return jsonify(profile_service.update_profile(get_acting_user(), _request_params()))
    except DomainError as e:
        return _error_response(e)
    except Exception as e:
        current_app.logger.error(f"Error updating profile for user {current_user.id}: {e}")
        current_app.logger.error(traceback.format_exc())
        return jsonify({'status': 'error', 'message': 'Failed to update profile'}), 500


@profile_bp.route('/profile/update_profile', methods=['POST'])
@fresh_login_required
def update_profile_form():
    user = get_acting_user()
    form = UserProfileForm()
    if not form.validate_on_submit():
        return _render_settings(user, profile_form=form), 400
    try:
        profile_service.update_profile(user, form.to_params())
    except AuthorizationError:
        abort(401)
    flash('Profile updated.', 'success')
    return redirect(url_for('profile.settings'))


@profile_bp.route('/profile/communication_channels', methods=['POST'])
@fresh_login_required
def add_communication_channel():
    user = get_acting_user()
    form = CommunicationChannelForm()
    if not form.validate_on_submit():
        return _render_settings(user, channel_form=form), 400
    user_service.add_channel(user.id, form.address.data.strip(), 'email', workflow_state='unconfirmed')
    flash('Email registered. Confirm it to make it your default.', 'info')
    return redirect(url_for('profile.settings'))


@profile_bp.route('/profile/communication', methods=['GET'])
@login_required
def communication():
    user = get_acting_user()
    channels = profile_service.communication(user)
    if _wants_json():
        return jsonify({'channels': channels})
    return render_template('profile/communication.html', title='Notification Preferences', channels=channels)


@profile_bp.route('/profile/content_shares', methods=['GET'])
@login_required
def content_shares():
    user = get_acting_user()
    if not profile_service.content_shares_enabled(user):
        abort(404)
    js_env = {'COMMON_CARTRIDGE_VIEWER_URL': current_app.config.get('COMMON_CARTRIDGE_VIEWER_URL')}
    return render_template('profile/content_shares.html', title='Shared Content', js_env=js_env)


@profile_bp.route('/profile/qr_mobile_login', methods=['GET'])
@login_required
def qr_mobile_login():
    user = get_acting_user()
    if not profile_service.qr_mobile_login_enabled(user, current_app.config.get('MOBILE_QR_PLUGIN_AVAILABLE', False)):
        abort(404)
    return render_template('profile/qr_mobile_login.html', title='QR for Mobile Login', bare_layout=True)
