"""Tests for domain model helpers."""
import pytest

from app.domain.models import (
    Account, User, CommunicationChannel, ContextType, EnrollmentType, LearningOutcome, pronoun_key,
)


def test_pronoun_key_normalizes_display_form():
    """Default pronouns are stored under lower-case keys."""
    assert pronoun_key('He/Him') == 'he_him'
    assert pronoun_key('  They / Them ') == 'they_them'


def test_user_set_pronouns_maps_defaults_and_keeps_custom():
    user = User(name='Jane Doe')
    user.set_pronouns('she/her')
    assert user.pronouns == 'she_her'
    assert user.display_pronouns == 'She/Her'

    user.set_pronouns('Ze/Zir')
    assert user.pronouns == 'Ze/Zir'
    assert user.display_pronouns == 'Ze/Zir'

    user.set_pronouns('   ')
    assert user.pronouns is None
    assert user.display_pronouns is None


def test_user_name_defaults():
    """Short and sortable names derive from the full name when not given."""
    user = User(name='Jane Q Doe')
    assert user.short_name == 'Jane Q Doe'
    assert user.sortable_name == 'Doe, Jane Q'
    assert User(name='Cher').sortable_name == 'Cher'


def test_user_password_hashing():
    user = User(name='Jane Doe')
    assert not user.check_password('anything')
    user.set_password('s3cret')
    assert user.password_hash != 's3cret'
    assert user.check_password('s3cret')
    assert not user.check_password('wrong')


def test_communication_channel_maps_stored_path():
    channel = CommunicationChannel(user_id='u1', path='jane@example.com', position=2)
    stored = channel.to_dict()
    assert stored['channel_path'] == 'jane@example.com'
    assert 'path' not in stored

    loaded = CommunicationChannel.from_dict(dict(stored, _id={'offset': 0}, _label='CommunicationChannel'))
    assert loaded.path == 'jane@example.com'
    assert loaded.position == 2


def test_account_settings_round_trip_through_node_properties():
    account = Account(name='A', settings={'can_add_pronouns': True, 'pronouns': ['Ze/Zir']},
                      features={'direct_share'})
    loaded = Account.from_dict(account.to_dict())
    assert loaded.can_add_pronouns
    assert loaded.can_change_pronouns
    assert loaded.approved_pronouns == ['Ze/Zir']
    assert loaded.feature_enabled('direct_share')
    assert loaded.users_can_edit_name


def test_account_defaults():
    account = Account(name='A')
    assert not account.can_add_pronouns
    assert account.approved_pronouns == ['She/Her', 'He/Him', 'They/Them']
    assert not account.mobile_qr_login_is_enabled
    assert not account.enable_profiles
    assert not Account(settings={'users_can_edit_name': False}).users_can_edit_name


def test_context_type_from_path():
    assert ContextType.from_path('accounts') is ContextType.ACCOUNT
    assert ContextType.from_path('courses') is ContextType.COURSE
    with pytest.raises(ValueError):
        ContextType.from_path('groups')


def test_enrollment_type_roles():
    assert EnrollmentType.STUDENT_VIEW.is_student
    assert EnrollmentType.STUDENT_VIEW.role_name == 'Student'
    assert EnrollmentType.TA.can_manage_course
    assert not EnrollmentType.OBSERVER.can_manage_course
    assert not EnrollmentType.OBSERVER.is_student


def test_learning_outcome_matches_search():
    outcome = LearningOutcome(title='Photosynthesis', display_name='Plants',
                              description='Converts light into energy')
    assert outcome.matches(None)
    assert outcome.matches('photo')
    assert outcome.matches('PLANTS')
    assert outcome.matches('light')
    assert not outcome.matches('mitosis')


def test_learning_outcome_search_does_not_span_fields():
    outcome = LearningOutcome(title='Cell', display_name='Division', description=None)
    assert outcome.matches('cell')
    assert not outcome.matches('cell division')
    assert not outcome.matches('l d')
